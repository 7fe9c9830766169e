from pydantic_ai import Agent
from loguru import logger
from src.config import get_settings
from src.models.feedback import FeedbackSignal
from src.models.llm_responses import SuggestionDraft
from src.models.post import Board
from src.utils.llm_client import build_chat_model, parse_json_output, run_agent_with_retry

SUGGESTION_INSTRUCTIONS = """
You turn one extracted customer need into a new post for a public feedback board.

Return JSON only:
{"title": "<concise title, max 80 chars>", "body": "<2-4 sentences in the customer's terms>",
"boardId": "<id of the best board from the list>", "reasoning": "<why this board and wording>"}

Write the title as the need, not the complaint ("Export reports to CSV",
not "Cannot export"). Never invent details that are not in the evidence.
"""


class SuggestionAgent:
    """Drafts the title/body/board of a create-post suggestion."""

    def __init__(self, model_override: str | None = None):
        self.model_name = model_override or get_settings().suggestion_model

        self.agent: Agent[None, str] = Agent(
            build_chat_model(self.model_name),
            output_type=str,
            instructions=SUGGESTION_INSTRUCTIONS,
        )
        logger.info(f"SuggestionAgent initialized with model: {self.model_name}")

    async def draft(self, signal: FeedbackSignal, boards: list[Board]) -> SuggestionDraft:
        completion = await run_agent_with_retry(
            self.agent,
            build_suggestion_prompt(signal, boards),
            stage="suggestion_draft",
            model=self.model_name,
            signal_id=signal.id,
        )
        return parse_json_output(completion.text, SuggestionDraft)


def build_suggestion_prompt(signal: FeedbackSignal, boards: list[Board]) -> str:
    board_lines = "\n".join(f"- {b.id}: {b.name}" for b in boards)
    evidence = "\n".join(f'- "{quote}"' for quote in signal.evidence)
    return (
        f"SIGNAL TYPE: {signal.signal_type}\n"
        f"SUMMARY: {signal.summary}\n"
        f"IMPLICIT NEED: {signal.implicit_need or '(none)'}\n"
        f"EVIDENCE:\n{evidence or '(none)'}\n\n"
        f"BOARDS:\n{board_lines or '(none)'}\n"
    )
