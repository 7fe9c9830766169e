"""
LLM Client with Retry Logic & Error Handling
Provides resilient model execution with exponential backoff, token accounting
and strict JSON parsing of model output.
"""
import asyncio
import random
import re
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Type, TypeVar

from loguru import logger
from pydantic import BaseModel, ValidationError
from pydantic_ai import Agent
from pydantic_ai.models.openai import OpenAIChatModel
from pydantic_ai.providers.openai import OpenAIProvider

from src.config import get_settings
from src.utils.observability import log_llm_call

T = TypeVar('T')
M = TypeVar('M', bound=BaseModel)


class LLMError(Exception):
    """Recoverable LLM errors that should trigger retries."""
    pass


class LLMCriticalError(Exception):
    """Non-recoverable errors (auth failure, invalid prompt, etc.)."""
    pass


class LLMResponseFormatError(LLMCriticalError):
    """The model answered, but not with the JSON shape we asked for."""
    pass


@dataclass
class LLMCompletion:
    """Raw text output of one agent run plus its token usage."""
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0
    duration_ms: float = 0.0


def build_chat_model(model_name: str) -> OpenAIChatModel:
    """
    Build an OpenAI chat model bound to the configured API key.

    Accepts both "openai:gpt-4o" and bare "gpt-4o" names.
    """
    settings = get_settings()
    if not settings.openai_api_key:
        raise LLMCriticalError("OPENAI_API_KEY is not configured")

    name = model_name.split(":", 1)[1] if model_name.startswith("openai:") else model_name
    return OpenAIChatModel(name, provider=OpenAIProvider(api_key=settings.openai_api_key))


async def run_with_retry(
    func: Callable[[], Awaitable[T]],
    max_retries: int | None = None,
    operation: str = "LLM"
) -> T:
    """
    Executes an async provider call with exponential backoff retry logic.

    Args:
        func: Zero-argument coroutine factory making the call
        max_retries: Override default retry count from settings
        operation: Label used in logs

    Returns:
        Whatever `func` returns

    Raises:
        LLMCriticalError: For non-recoverable failures
        LLMError: After max retries exhausted
    """
    settings = get_settings()
    max_attempts = max_retries or settings.max_retries
    min_wait = settings.retry_min_wait_seconds
    max_wait = settings.retry_max_wait_seconds

    last_error = None

    for attempt in range(1, max_attempts + 1):
        try:
            logger.debug(f"{operation} attempt {attempt}/{max_attempts}")
            return await func()

        except LLMCriticalError:
            raise

        except Exception as e:
            last_error = e
            error_msg = str(e).lower()

            # Categorize the error
            if "rate" in error_msg and "limit" in error_msg:
                logger.warning(f"⏱️ Rate limit hit (attempt {attempt}/{max_attempts})")
                error_type = "rate_limit"

            elif "timeout" in error_msg or "timed out" in error_msg:
                logger.warning(f"⏱️ Timeout (attempt {attempt}/{max_attempts})")
                error_type = "timeout"

            elif any(code in error_msg for code in ["500", "502", "503", "504"]):
                logger.warning(f"🔧 Server error (attempt {attempt}/{max_attempts})")
                error_type = "server_error"

            elif "authentication" in error_msg or "api key" in error_msg or "401" in error_msg:
                logger.error(f"🚨 Authentication failure: {e}")
                raise LLMCriticalError(f"Authentication failed: {e}") from e

            elif "invalid" in error_msg and "request" in error_msg:
                logger.error(f"🚨 Invalid request: {e}")
                raise LLMCriticalError(f"Invalid request: {e}") from e

            else:
                logger.warning(f"⚠️ Unknown error (attempt {attempt}/{max_attempts}): {e}")
                error_type = "unknown"

            if attempt == max_attempts:
                logger.error(f"❌ Max retries ({max_attempts}) exhausted. Last error: {e}")
                raise LLMError(f"Failed after {max_attempts} attempts: {e}") from e

            wait_time = min(min_wait * (2 ** (attempt - 1)), max_wait)
            # 20% jitter so parallel workers do not retry in lockstep
            wait_time = wait_time * (0.8 + 0.4 * random.random())

            logger.info(f"⏳ Retrying in {wait_time:.1f}s... (error: {error_type})")
            await asyncio.sleep(wait_time)

    raise LLMError(f"Unexpected retry loop exit. Last error: {last_error}")


async def run_agent_with_retry(
    agent: Agent,
    prompt: str,
    deps: Any = None,
    max_retries: int | None = None,
    stage: str = "llm",
    model: str | None = None,
    **log_context: Any
) -> LLMCompletion:
    """
    Runs a text-output agent with retries and returns its output and usage.

    Example:
        >>> agent = Agent(build_chat_model("openai:gpt-4o"), output_type=str)
        >>> completion = await run_agent_with_retry(agent, "Extract signals", stage="extraction")
        >>> result = parse_json_output(completion.text, ExtractionResult)
    """
    model_name = model or str(getattr(agent, "name", None) or stage)
    started = time.perf_counter()

    async def execute():
        if deps is not None:
            return await agent.run(prompt, deps=deps)
        return await agent.run(prompt)

    try:
        result = await run_with_retry(execute, max_retries=max_retries, operation=stage)
    except (LLMError, LLMCriticalError) as e:
        log_llm_call(stage, model_name, 0, 0, (time.perf_counter() - started) * 1000,
                     success=False, error=str(e), **log_context)
        raise

    input_tokens, output_tokens = _usage_tokens(result)
    completion = LLMCompletion(
        text="" if result.output is None else str(result.output),
        model=model_name,
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        duration_ms=(time.perf_counter() - started) * 1000,
    )
    log_llm_call(stage, model_name, input_tokens, output_tokens, completion.duration_ms, **log_context)
    return completion


def _usage_tokens(result: Any) -> tuple[int, int]:
    usage_fn = getattr(result, "usage", None)
    if not callable(usage_fn):
        return 0, 0
    usage = usage_fn()
    input_tokens = getattr(usage, "input_tokens", 0)
    output_tokens = getattr(usage, "output_tokens", 0)
    return (
        input_tokens if isinstance(input_tokens, int) else 0,
        output_tokens if isinstance(output_tokens, int) else 0,
    )


_CODE_FENCE = re.compile(r"^\s*```[a-zA-Z0-9_-]*\s*\n?(.*?)\n?\s*```\s*$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a markdown code fence wrapping the whole response, if any."""
    match = _CODE_FENCE.match(text or "")
    return match.group(1).strip() if match else (text or "").strip()


def parse_json_output(text: str, model_cls: Type[M]) -> M:
    """
    Parse a strict JSON model response into `model_cls`.

    Raises:
        LLMResponseFormatError: Empty response, invalid JSON or schema mismatch
    """
    cleaned = strip_code_fences(text)
    if not cleaned:
        raise LLMResponseFormatError("Empty response from model")

    try:
        return model_cls.model_validate_json(cleaned)
    except ValidationError as e:
        raise LLMResponseFormatError(
            f"Model response does not match {model_cls.__name__}: {e.error_count()} error(s): "
            f"{e.errors()[0]['msg']} at {'.'.join(str(p) for p in e.errors()[0]['loc'])}"
        ) from e
