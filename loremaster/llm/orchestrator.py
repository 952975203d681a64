"""
RAG Orchestrator: lets the model consult the manuals while it answers.

Data flow per ``generate_with_rag`` call:

    prompt + history → TextGenerationBackend.generate_with_tools()
                             ↓ function calls?
              yes → ManualSearchTool → results appended to history → ask again
              no  → RAGResponse(final_response, search_results, function_calls_used)

Each model turn that requests tools uses one iteration. If the budget runs
out before the model answers without tools, RAGIterationLimitError is
raised. A failing tool call is reported back to the model as text
("Function X failed: ..."); a failing generation call propagates.
"""

import json
import logging
from typing import Any

from loremaster.config.settings import RAGSettings
from loremaster.llm.backend import TextGenerationBackend
from loremaster.llm.models import FunctionCall, RAGIterationLimitError, RAGResponse
from loremaster.rag.base import ManualSearchResult
from loremaster.rag.searcher import ManualSearcher
from loremaster.tools.manual_search import MANUAL_SEARCH_TOOLS, ManualSearchTool

logger = logging.getLogger(__name__)

CONTINUATION_PROMPT = (
    "Based on the search results above, continue the conversation. "
    "Don't say things out of character, just use the information to inform your next response."
)
EMPTY_RESPONSE_FALLBACK = "I couldn't generate a response."


class RAGOrchestrator:
    """
    Drives the tool-calling loop between a generation backend and the manuals.

    Args:
        backend: Tool-capable text generator
        searcher: Manual searcher the tools delegate to
        settings: Supplies ``max_iterations`` (default 5)
    """

    def __init__(
        self,
        backend: TextGenerationBackend,
        searcher: ManualSearcher,
        settings: RAGSettings | None = None,
    ):
        self._backend = backend
        self._searcher = searcher
        self._max_iterations = (settings or RAGSettings()).max_iterations

    def tools(self) -> list[dict[str, Any]]:
        """Tool declarations offered to the model."""
        return MANUAL_SEARCH_TOOLS

    async def execute_function_call(
        self, call: FunctionCall, setting: str, campaign: str
    ) -> ManualSearchResult:
        """
        Run one requested manual search outside the loop.

        Raises:
            ValueError: If the function name is unknown or arguments are invalid
        """
        return await ManualSearchTool(self._searcher, setting, campaign).search(call.name, call.args)

    async def generate_with_rag(
        self,
        prompt: str,
        setting: str,
        campaign: str,
        history: list[str] | None = None,
    ) -> RAGResponse:
        """
        Answer ``prompt``, letting the model search the campaign's manuals first.

        Args:
            prompt: The user's message
            setting: Setting the campaign belongs to
            campaign: Campaign whose manuals are searched
            history: Prior conversation turns, user first

        Returns:
            The final answer with every search result and function call used

        Raises:
            LLMError: If the generation backend fails
            RAGIterationLimitError: If the model is still requesting tools
                after ``max_iterations`` rounds
        """
        tool = ManualSearchTool(self._searcher, setting, campaign)
        declarations = await tool.list_tools()

        conversation = list(history or [])
        search_results: list[ManualSearchResult] = []
        calls_used: list[FunctionCall] = []

        for iteration in range(1, self._max_iterations + 1):
            turn = await self._backend.generate_with_tools(prompt, declarations, conversation)

            if not turn.function_calls:
                logger.debug(f"RAG loop finished after {iteration} model turns")
                return RAGResponse(
                    final_response=turn.response or EMPTY_RESPONSE_FALLBACK,
                    search_results=search_results,
                    function_calls_used=calls_used,
                )

            logger.info(f"RAG: Executing {len(turn.function_calls)} function calls")

            responses = []
            for call in turn.function_calls:
                calls_used.append(call)
                try:
                    result = await tool.call(call.name, call.args)
                except Exception as e:
                    logger.warning(f"Error executing function {call.name}: {e}")
                    responses.append(f"Function {call.name} failed: {e}")
                    continue

                search_results.append(result["result"])
                responses.append(f"Function {call.name} returned:\n{result['text']}")

            calls_text = "\n".join(
                f"Function Call: {call.name}({json.dumps(call.args, separators=(',', ':'))})"
                for call in turn.function_calls
            )
            results_text = "\n\n".join(responses)
            conversation.append(f"Assistant: {calls_text} {results_text}")

            prompt = CONTINUATION_PROMPT

        logger.error(f"RAG loop still requesting tools after {self._max_iterations} iterations")
        raise RAGIterationLimitError("RAG generation exceeded maximum iterations")
