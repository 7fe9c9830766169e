"""
Tests for the LLM client helpers: retry policy, usage accounting and strict
JSON parsing of model output.
"""
import pytest
from types import SimpleNamespace
from unittest.mock import AsyncMock

from src.config import settings
from src.models.llm_responses import ExtractionResult, QualityGateDecision
from src.utils.llm_client import (
    LLMCriticalError,
    LLMError,
    LLMResponseFormatError,
    build_chat_model,
    parse_json_output,
    run_agent_with_retry,
    run_with_retry,
    strip_code_fences,
)


def agent_result(output: str, input_tokens: int = 10, output_tokens: int = 5):
    usage = SimpleNamespace(input_tokens=input_tokens, output_tokens=output_tokens)
    return SimpleNamespace(output=output, usage=lambda: usage)


class TestRunWithRetry:

    async def test_returns_first_success(self):
        func = AsyncMock(return_value="done")

        assert await run_with_retry(func) == "done"
        func.assert_awaited_once()

    async def test_retries_transient_errors(self):
        func = AsyncMock(side_effect=[TimeoutError("timed out"), RuntimeError("503 Service Unavailable"), "done"])

        assert await run_with_retry(func, max_retries=3) == "done"
        assert func.await_count == 3

    async def test_raises_llm_error_when_exhausted(self):
        func = AsyncMock(side_effect=RuntimeError("Rate limit reached"))

        with pytest.raises(LLMError, match="Failed after 2 attempts"):
            await run_with_retry(func, max_retries=2)
        assert func.await_count == 2

    async def test_authentication_failure_is_critical(self):
        func = AsyncMock(side_effect=RuntimeError("401 Unauthorized: invalid api key"))

        with pytest.raises(LLMCriticalError):
            await run_with_retry(func, max_retries=3)
        func.assert_awaited_once()

    async def test_critical_errors_are_not_retried(self):
        func = AsyncMock(side_effect=LLMCriticalError("No embedding provider configured"))

        with pytest.raises(LLMCriticalError):
            await run_with_retry(func, max_retries=3)
        func.assert_awaited_once()


class TestRunAgentWithRetry:

    async def test_returns_text_and_usage(self):
        agent = SimpleNamespace(run=AsyncMock(return_value=agent_result('{"extract": true}', 120, 8)))

        completion = await run_agent_with_retry(agent, "prompt", stage="quality_gate", model="gpt-4o-mini")

        assert completion.text == '{"extract": true}'
        assert completion.model == "gpt-4o-mini"
        assert completion.input_tokens == 120
        assert completion.output_tokens == 8
        agent.run.assert_awaited_once_with("prompt")

    async def test_passes_deps_when_given(self):
        agent = SimpleNamespace(run=AsyncMock(return_value=agent_result("ok")))

        await run_agent_with_retry(agent, "prompt", deps={"x": 1})

        agent.run.assert_awaited_once_with("prompt", deps={"x": 1})

    async def test_missing_usage_counts_as_zero(self):
        agent = SimpleNamespace(run=AsyncMock(return_value=SimpleNamespace(output="ok")))

        completion = await run_agent_with_retry(agent, "prompt")

        assert (completion.input_tokens, completion.output_tokens) == (0, 0)

    async def test_failure_propagates(self):
        agent = SimpleNamespace(run=AsyncMock(side_effect=RuntimeError("connection reset")))

        with pytest.raises(LLMError):
            await run_agent_with_retry(agent, "prompt", max_retries=2)


class TestJsonParsing:

    def test_strips_json_code_fence(self):
        assert strip_code_fences('```json\n{"extract": false}\n```') == '{"extract": false}'

    def test_strips_bare_code_fence(self):
        assert strip_code_fences('```\n{"a": 1}\n```') == '{"a": 1}'

    def test_leaves_plain_text_alone(self):
        assert strip_code_fences('  {"a": 1} ') == '{"a": 1}'

    def test_parses_fenced_response(self):
        decision = parse_json_output(
            '```json\n{"extract": true, "reason": "feature request"}\n```',
            QualityGateDecision,
        )

        assert decision.extract is True
        assert decision.reason == "feature request"

    def test_empty_response_is_format_error(self):
        with pytest.raises(LLMResponseFormatError, match="Empty"):
            parse_json_output("   ", QualityGateDecision)

    def test_invalid_json_is_format_error(self):
        with pytest.raises(LLMResponseFormatError):
            parse_json_output("Sure! Here are the signals you asked for.", ExtractionResult)

    def test_missing_signals_array_is_format_error(self):
        with pytest.raises(LLMResponseFormatError):
            parse_json_output('{"items": []}', ExtractionResult)

    def test_format_error_is_critical(self):
        assert issubclass(LLMResponseFormatError, LLMCriticalError)


class TestBuildChatModel:

    def test_requires_api_key(self):
        with pytest.raises(LLMCriticalError):
            build_chat_model("openai:gpt-4o")

    def test_strips_provider_prefix(self, monkeypatch):
        monkeypatch.setattr(settings, "openai_api_key", "sk-test")

        model = build_chat_model("openai:gpt-4o-mini")

        assert model.model_name == "gpt-4o-mini"
