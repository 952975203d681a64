"""
LLM Orchestration Layer.

Text generation through LiteLLM (provider-agnostic) and the tool-calling
loop that lets the model search the campaign manuals before answering:

    orchestrator.RAGOrchestrator.generate_with_rag(prompt, setting, campaign, history)
                        ↓
    TextGenerationBackend.generate_with_tools()  ←→  ManualSearchTool
                        ↓
                   RAGResponse
"""

from loremaster.llm.backend import LiteLLMBackend, TextGenerationBackend
from loremaster.llm.models import (
    FunctionCall,
    LLMError,
    RAGIterationLimitError,
    RAGResponse,
    TokenUsage,
    ToolTurn,
)

__all__ = [
    "FunctionCall",
    "LiteLLMBackend",
    "LLMError",
    "RAGIterationLimitError",
    "RAGResponse",
    "TextGenerationBackend",
    "TokenUsage",
    "ToolTurn",
]
