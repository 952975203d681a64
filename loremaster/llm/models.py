"""
Data models and errors for the LLM layer.
"""

from typing import Any

from pydantic import BaseModel, Field

from loremaster.rag.base import ManualSearchResult


class LLMError(Exception):
    """Raised when a generation call fails after retries."""

    def __init__(self, message: str, cause: Exception | None = None):
        super().__init__(message)
        self.cause = cause


class RAGIterationLimitError(LLMError):
    """Raised when the model keeps requesting tools past the iteration budget."""


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def total_tokens(self) -> int:
        return self.prompt_tokens + self.completion_tokens


class FunctionCall(BaseModel):
    """A tool invocation requested by the model."""

    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ToolTurn(BaseModel):
    """One model turn in a tool-calling conversation."""

    response: str = Field(default="", description="Text the model produced this turn")
    function_calls: list[FunctionCall] = Field(default_factory=list)
    usage: TokenUsage = Field(default_factory=TokenUsage)


class RAGResponse(BaseModel):
    """Final answer of a RAG generation plus everything looked up on the way."""

    final_response: str
    search_results: list[ManualSearchResult] = Field(default_factory=list)
    function_calls_used: list[FunctionCall] = Field(default_factory=list)
