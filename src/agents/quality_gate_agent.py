from pydantic_ai import Agent
from loguru import logger
from src.config import get_settings
from src.models.feedback import ThreadMessage
from src.models.llm_responses import QualityGateDecision
from src.utils.llm_client import build_chat_model, parse_json_output, run_agent_with_retry

QUALITY_GATE_RUBRIC = """
You decide whether a piece of customer communication contains product feedback
worth analysing. Answer with JSON only: {"extract": true|false, "reason": "<short reason>"}.

ACCEPT when the customer expresses any of:
- a feature request or a missing capability
- a bug or broken behaviour
- a usability complaint (confusing, slow, hard to find)
- a churn signal (cancelling, switching to a competitor, frustration with value)
- specific praise about a concrete part of the product

REJECT when the text is only:
- a routine support, billing, refund or account-access request
- pleasantries, thanks, greetings or scheduling
- spam or automated notifications
- internal notes written by support agents
- off-topic chat
"""


class QualityGateAgent:
    """
    Cheap classifier deciding whether a raw item deserves an extraction call.
    One attempt only: callers fail open on any error.
    """

    def __init__(self, model_override: str | None = None):
        self.model_name = model_override or get_settings().quality_gate_model

        self.agent: Agent[None, str] = Agent(
            build_chat_model(self.model_name),
            output_type=str,
            instructions=QUALITY_GATE_RUBRIC,
        )
        logger.info(f"QualityGateAgent initialized with model: {self.model_name}")

    async def decide(
        self,
        source_type: str,
        content: str,
        customer_messages: list[ThreadMessage],
        item_id: str | None = None,
    ) -> QualityGateDecision:
        prompt = build_quality_gate_prompt(source_type, content, customer_messages)
        completion = await run_agent_with_retry(
            self.agent,
            prompt,
            max_retries=1,
            stage="quality_gate",
            model=self.model_name,
            item_id=item_id,
        )
        return parse_json_output(completion.text, QualityGateDecision)


def build_quality_gate_prompt(
    source_type: str,
    content: str,
    customer_messages: list[ThreadMessage],
) -> str:
    # Agent-authored messages are filtered out before they get here
    thread = "\n".join(f"CUSTOMER: {m.text}" for m in customer_messages)
    return (
        f"SOURCE: {source_type}\n\n"
        f"CONTENT:\n{content}\n\n"
        f"RECENT CUSTOMER MESSAGES:\n{thread or '(none)'}\n"
    )
