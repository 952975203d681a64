"""
Base class for tool adapters.

A tool adapter exposes one or more named, schema-described capabilities
that a tool-calling model can invoke while composing an answer.
"""

from abc import ABC, abstractmethod
from typing import Any


class ToolAdapter(ABC):
    """
    Abstract base class for tool adapters.

    Adapters that hold no external resources can leave ``initialize`` and
    ``shutdown`` as the default no-ops.
    """

    async def initialize(self) -> None:
        """Acquire whatever the adapter needs before the first call."""

    async def shutdown(self) -> None:
        """Release resources acquired in ``initialize``."""

    @abstractmethod
    async def call(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Call a tool with the given arguments.

        Args:
            tool_name: Name of the tool to invoke
            arguments: Tool-specific arguments

        Returns:
            Result dictionary; ``"text"`` holds what is shown to the model

        Raises:
            ValueError: If tool_name is unknown or arguments are invalid
        """
        pass

    @abstractmethod
    async def list_tools(self) -> list[dict[str, Any]]:
        """
        Declarations of every tool this adapter serves.

        Each declaration has ``name``, ``description`` and ``input_schema``
        (a JSON schema object):

            {
                "name": "search_player_manual",
                "description": "Search through the player manual for rules...",
                "input_schema": {
                    "type": "object",
                    "properties": {"searchQuery": {"type": "string", "description": "..."}},
                    "required": ["searchQuery"]
                }
            }
        """
        pass

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False
