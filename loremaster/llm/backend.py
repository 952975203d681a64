"""
Text-generation backends.

TextGenerationBackend is the interface the searcher (for reranking) and the
RAG orchestrator (for the tool loop) depend on. LiteLLMBackend implements it
over ``litellm.acompletion`` so the provider is chosen by a model string:
``gemini/gemini-2.0-flash``, ``openai/gpt-4o``, ``ollama/llama3``...

Transient provider failures (rate limits, timeouts, connection and server
errors) are retried a bounded number of times with exponential backoff.
Other failures, and transient ones once attempts run out, surface as
LLMError.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Any

from litellm import acompletion
from litellm.exceptions import (
    APIConnectionError,
    InternalServerError,
    RateLimitError,
    ServiceUnavailableError,
    Timeout,
)
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from loremaster.config.settings import LLMSettings
from loremaster.llm.models import FunctionCall, LLMError, TokenUsage, ToolTurn

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (
    RateLimitError,
    Timeout,
    APIConnectionError,
    InternalServerError,
    ServiceUnavailableError,
)


class TextGenerationBackend(ABC):
    """Abstract tool-capable text generator."""

    @abstractmethod
    async def generate(
        self,
        prompt: str,
        history: list[str] | None = None,
        schema: dict[str, Any] | None = None,
    ) -> str:
        """
        Single-shot generation.

        Args:
            prompt: The new user message
            history: Earlier messages, alternating user/assistant, user first
            schema: Optional JSON schema the reply must conform to

        Returns:
            The reply text (a JSON document when ``schema`` is given)

        Raises:
            LLMError: If generation fails or produces no text
        """
        pass

    @abstractmethod
    async def generate_with_tools(
        self,
        prompt: str,
        tools: list[dict[str, Any]],
        history: list[str] | None = None,
    ) -> ToolTurn:
        """
        Generation that may request tool calls instead of (or besides) text.

        Args:
            prompt: The new user message
            tools: Declarations with ``name``, ``description`` and ``input_schema``
            history: Earlier messages, alternating user/assistant, user first

        Raises:
            LLMError: If generation fails
        """
        pass


def build_messages(prompt: str, history: list[str] | None) -> list[dict[str, Any]]:
    """Map a flat history onto chat roles (even index user, odd assistant)."""
    messages = [
        {"role": "user" if i % 2 == 0 else "assistant", "content": text}
        for i, text in enumerate(history or [])
    ]
    messages.append({"role": "user", "content": prompt})
    return messages


def to_openai_tools(tools: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """Wrap flat tool declarations in the OpenAI format LiteLLM expects."""
    return [
        {
            "type": "function",
            "function": {
                "name": tool["name"],
                "description": tool["description"],
                "parameters": tool["input_schema"],
            },
        }
        for tool in tools
    ]


class LiteLLMBackend(TextGenerationBackend):
    """
    TextGenerationBackend over LiteLLM.

    Args:
        settings: Model, sampling, credentials and retry policy
    """

    def __init__(self, settings: LLMSettings):
        self._settings = settings

    async def _complete(self, **kwargs: Any) -> Any:
        call_kwargs: dict[str, Any] = {
            "model": self._settings.model,
            "temperature": self._settings.temperature,
            "max_tokens": self._settings.max_tokens,
            **kwargs,
        }
        if self._settings.api_key:
            call_kwargs["api_key"] = self._settings.api_key

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_retries),
            wait=wait_exponential(multiplier=self._settings.retry_backoff_seconds, max=30),
            retry=retry_if_exception_type(TRANSIENT_ERRORS),
            before_sleep=lambda state: logger.warning(
                f"LLM call failed (attempt {state.attempt_number}/{self._settings.max_retries}), "
                f"retrying: {state.outcome.exception()}"
            ),
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await acompletion(**call_kwargs)
        except Exception as e:
            raise LLMError(f"LLM API call failed: {e}", cause=e)

    async def generate(
        self,
        prompt: str,
        history: list[str] | None = None,
        schema: dict[str, Any] | None = None,
    ) -> str:
        kwargs: dict[str, Any] = {"messages": build_messages(prompt, history)}
        if schema is not None:
            kwargs["response_format"] = {
                "type": "json_schema",
                "json_schema": {"name": "response", "schema": schema},
            }

        response = await self._complete(**kwargs)
        text = response.choices[0].message.content
        if not text:
            raise LLMError("No text generated")
        return text

    async def generate_with_tools(
        self,
        prompt: str,
        tools: list[dict[str, Any]],
        history: list[str] | None = None,
    ) -> ToolTurn:
        response = await self._complete(
            messages=build_messages(prompt, history),
            tools=to_openai_tools(tools),
        )
        message = response.choices[0].message

        calls = []
        for tool_call in message.tool_calls or []:
            raw_args = tool_call.function.arguments or "{}"
            try:
                args = json.loads(raw_args)
            except json.JSONDecodeError as e:
                raise LLMError(
                    f"Model returned malformed arguments for {tool_call.function.name}: {raw_args!r}",
                    cause=e,
                )
            calls.append(FunctionCall(name=tool_call.function.name, args=args))

        usage = getattr(response, "usage", None)
        return ToolTurn(
            response=message.content or "",
            function_calls=calls,
            usage=TokenUsage(
                prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
                completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
            ),
        )
