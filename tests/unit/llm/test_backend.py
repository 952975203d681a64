"""
Unit tests for the LiteLLM text-generation backend.

``acompletion`` is patched at its import site; retry waits are zeroed so
retried calls do not sleep.
"""

import json
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from litellm.exceptions import RateLimitError

from loremaster.config.settings import LLMSettings
from loremaster.llm.backend import LiteLLMBackend, build_messages, to_openai_tools
from loremaster.llm.models import LLMError
from loremaster.tools.manual_search import MANUAL_SEARCH_TOOLS


# ---------------------------------------------------------------------------
# Helpers for building mock LiteLLM responses
# ---------------------------------------------------------------------------

def _make_text_response(text: str | None) -> MagicMock:
    choice = MagicMock()
    choice.message.content = text
    choice.message.tool_calls = None

    response = MagicMock()
    response.choices = [choice]
    response.usage.prompt_tokens = 100
    response.usage.completion_tokens = 50
    return response


def _make_tool_call_response(calls: list[tuple[str, str]], text: str | None = None) -> MagicMock:
    tool_calls = []
    for name, raw_arguments in calls:
        tool_call = MagicMock()
        tool_call.function.name = name
        tool_call.function.arguments = raw_arguments
        tool_calls.append(tool_call)

    choice = MagicMock()
    choice.message.content = text
    choice.message.tool_calls = tool_calls

    response = MagicMock()
    response.choices = [choice]
    response.usage.prompt_tokens = 120
    response.usage.completion_tokens = 30
    return response


def _rate_limit_error() -> RateLimitError:
    return RateLimitError(
        message="429 quota exhausted", llm_provider="gemini", model="gemini/gemini-2.0-flash"
    )


@pytest.fixture
def settings():
    return LLMSettings(
        model="gemini/gemini-2.0-flash",
        max_tokens=1024,
        temperature=0.3,
        api_key="test-api-key",
        max_retries=3,
        retry_backoff_seconds=0,
    )


class TestMessageHelpers:
    """build_messages / to_openai_tools"""

    def test_history_alternates_user_first(self):
        messages = build_messages("now?", ["hi", "hello", "rules?"])

        assert [m["role"] for m in messages] == ["user", "assistant", "user", "user"]
        assert messages[-1] == {"role": "user", "content": "now?"}

    def test_no_history(self):
        assert build_messages("hi", None) == [{"role": "user", "content": "hi"}]

    def test_tool_format(self):
        tools = to_openai_tools(MANUAL_SEARCH_TOOLS)

        assert tools[0]["type"] == "function"
        assert tools[0]["function"]["name"] == "search_player_manual"
        assert tools[1]["function"]["parameters"]["required"] == ["searchQuery"]


class TestGenerate:
    """generate()"""

    @pytest.mark.asyncio
    async def test_returns_text(self, settings):
        backend = LiteLLMBackend(settings)

        with patch("loremaster.llm.backend.acompletion", new=AsyncMock(return_value=_make_text_response("Roll a d20."))) as mock_call:
            text = await backend.generate("How do I attack?", history=["hi", "hello"])

        assert text == "Roll a d20."
        kwargs = mock_call.call_args.kwargs
        assert kwargs["model"] == "gemini/gemini-2.0-flash"
        assert kwargs["api_key"] == "test-api-key"
        assert kwargs["max_tokens"] == 1024
        assert len(kwargs["messages"]) == 3
        assert "response_format" not in kwargs

    @pytest.mark.asyncio
    async def test_schema_sets_response_format(self, settings):
        backend = LiteLLMBackend(settings)
        schema = {"type": "array", "items": {"type": "string"}}

        with patch("loremaster.llm.backend.acompletion", new=AsyncMock(return_value=_make_text_response("[]"))) as mock_call:
            await backend.generate("rank", schema=schema)

        response_format = mock_call.call_args.kwargs["response_format"]
        assert response_format["type"] == "json_schema"
        assert response_format["json_schema"]["schema"] == schema

    @pytest.mark.asyncio
    async def test_empty_text_raises(self, settings):
        backend = LiteLLMBackend(settings)

        with patch("loremaster.llm.backend.acompletion", new=AsyncMock(return_value=_make_text_response(None))):
            with pytest.raises(LLMError, match="No text generated"):
                await backend.generate("hello")

    @pytest.mark.asyncio
    async def test_api_key_omitted_when_blank(self, settings):
        backend = LiteLLMBackend(settings.model_copy(update={"api_key": ""}))

        with patch("loremaster.llm.backend.acompletion", new=AsyncMock(return_value=_make_text_response("ok"))) as mock_call:
            await backend.generate("hello")

        assert "api_key" not in mock_call.call_args.kwargs


class TestRetries:
    """Bounded retry policy."""

    @pytest.mark.asyncio
    async def test_transient_failure_retried(self, settings, caplog):
        caplog.set_level(logging.WARNING)
        backend = LiteLLMBackend(settings)
        mock_call = AsyncMock(side_effect=[_rate_limit_error(), _make_text_response("ok")])

        with patch("loremaster.llm.backend.acompletion", new=mock_call):
            assert await backend.generate("hello") == "ok"

        assert mock_call.await_count == 2
        assert "retrying" in caplog.text

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self, settings):
        backend = LiteLLMBackend(settings)
        cause = _rate_limit_error()
        mock_call = AsyncMock(side_effect=cause)

        with patch("loremaster.llm.backend.acompletion", new=mock_call):
            with pytest.raises(LLMError, match="LLM API call failed") as exc_info:
                await backend.generate("hello")

        assert mock_call.await_count == 3
        assert exc_info.value.cause is cause

    @pytest.mark.asyncio
    async def test_permanent_failure_not_retried(self, settings):
        backend = LiteLLMBackend(settings)
        cause = Exception("401 invalid key")
        mock_call = AsyncMock(side_effect=cause)

        with patch("loremaster.llm.backend.acompletion", new=mock_call):
            with pytest.raises(LLMError, match="401 invalid key") as exc_info:
                await backend.generate("hello")

        assert mock_call.await_count == 1
        assert exc_info.value.cause is cause


class TestGenerateWithTools:
    """generate_with_tools()"""

    @pytest.mark.asyncio
    async def test_parses_function_calls(self, settings):
        backend = LiteLLMBackend(settings)
        response = _make_tool_call_response([
            ("search_gm_manual", json.dumps({"searchQuery": "warforged"})),
            ("search_player_manual", json.dumps({"searchQuery": "grapple"})),
        ])

        with patch("loremaster.llm.backend.acompletion", new=AsyncMock(return_value=response)) as mock_call:
            turn = await backend.generate_with_tools("Who runs Sharn?", MANUAL_SEARCH_TOOLS)

        assert [(c.name, c.args) for c in turn.function_calls] == [
            ("search_gm_manual", {"searchQuery": "warforged"}),
            ("search_player_manual", {"searchQuery": "grapple"}),
        ]
        assert turn.response == ""
        assert turn.usage.total_tokens == 150
        assert mock_call.call_args.kwargs["tools"][0]["type"] == "function"

    @pytest.mark.asyncio
    async def test_text_only_turn(self, settings):
        backend = LiteLLMBackend(settings)

        with patch("loremaster.llm.backend.acompletion", new=AsyncMock(return_value=_make_text_response("Done."))):
            turn = await backend.generate_with_tools("hi", MANUAL_SEARCH_TOOLS)

        assert turn.response == "Done."
        assert turn.function_calls == []

    @pytest.mark.asyncio
    async def test_malformed_arguments(self, settings):
        backend = LiteLLMBackend(settings)
        response = _make_tool_call_response([("search_gm_manual", "{not json")])

        with patch("loremaster.llm.backend.acompletion", new=AsyncMock(return_value=response)):
            with pytest.raises(LLMError, match="malformed arguments"):
                await backend.generate_with_tools("hi", MANUAL_SEARCH_TOOLS)

    @pytest.mark.asyncio
    async def test_empty_arguments(self, settings):
        backend = LiteLLMBackend(settings)
        response = _make_tool_call_response([("search_gm_manual", "")])

        with patch("loremaster.llm.backend.acompletion", new=AsyncMock(return_value=response)):
            turn = await backend.generate_with_tools("hi", MANUAL_SEARCH_TOOLS)

        assert turn.function_calls[0].args == {}
