import json
from pydantic_ai import Agent
from loguru import logger
from src.config import get_settings
from src.models.feedback import RawFeedbackItem, SignalType
from src.models.llm_responses import ExtractionResult
from src.utils.llm_client import (
    LLMCompletion,
    build_chat_model,
    parse_json_output,
    run_agent_with_retry,
)

# Stored on every signal; bump whenever the instructions below change
EXTRACTION_PROMPT_VERSION = "extraction-v1"

EXTRACTION_INSTRUCTIONS = f"""
You are a product analyst. Read one piece of customer feedback and extract the
distinct customer needs it expresses.

Return JSON only, exactly in this shape:
{{"signals": [{{"signalType": "<type>", "summary": "<one sentence>",
"implicitNeed": "<the underlying need, optional>", "evidence": ["<verbatim quote>", ...],
"confidence": <0.0-1.0>, "sentiment": "positive|neutral|negative", "urgency": "low|medium|high"}}]}}

Rules:
- signalType is one of: {", ".join(t.value for t in SignalType)}
- evidence must be verbatim quotes from the customer, never from support agents
- prefer one strong signal over several weak ones; return at most 5
- confidence reflects how clearly the customer expressed the need
- return {{"signals": []}} when there is no product feedback
"""


class ExtractionAgent:
    """Pulls confidence-scored signals out of one raw feedback item."""

    prompt_version = EXTRACTION_PROMPT_VERSION

    def __init__(self, model_override: str | None = None):
        self.model_name = model_override or get_settings().extraction_model

        self.agent: Agent[None, str] = Agent(
            build_chat_model(self.model_name),
            output_type=str,
            instructions=EXTRACTION_INSTRUCTIONS,
        )
        logger.info(f"ExtractionAgent initialized with model: {self.model_name}")

    async def extract(self, item: RawFeedbackItem) -> tuple[ExtractionResult, LLMCompletion]:
        """
        Raises:
            LLMError: transport failure after retries
            LLMResponseFormatError: empty or malformed response, missing `signals`
        """
        completion = await run_agent_with_retry(
            self.agent,
            build_extraction_prompt(item),
            stage="extraction",
            model=self.model_name,
            item_id=item.id,
        )
        return parse_json_output(completion.text, ExtractionResult), completion


def build_extraction_prompt(item: RawFeedbackItem) -> str:
    envelope = item.context_envelope
    thread = "\n".join(f"{m.role.upper()}: {m.text}" for m in envelope.thread[-20:])
    metadata = json.dumps(envelope.metadata, default=str) if envelope.metadata else "{}"

    return (
        f"SOURCE TYPE: {item.source_type}\n"
        f"SUBJECT: {item.content.subject or '(none)'}\n\n"
        f"TEXT:\n{item.content.text}\n\n"
        f"CONVERSATION:\n{thread or '(none)'}\n\n"
        f"METADATA: {metadata}\n"
    )
