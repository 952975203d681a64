"""
Manual search tools for the RAG loop.

Exposes ``search_player_manual`` and ``search_gm_manual`` to a tool-calling
model, backed by a ManualSearcher for one campaign.
"""

import logging
from typing import Any

from loremaster.rag.base import ManualKind, ManualSearchResult
from loremaster.rag.searcher import ManualSearcher
from loremaster.tools.base import ToolAdapter

logger = logging.getLogger(__name__)

SEARCH_PLAYER_MANUAL = "search_player_manual"
SEARCH_GM_MANUAL = "search_gm_manual"

TOOL_KINDS: dict[str, ManualKind] = {
    SEARCH_PLAYER_MANUAL: "player",
    SEARCH_GM_MANUAL: "gm",
}

MANUAL_SEARCH_TOOLS: list[dict[str, Any]] = [
    {
        "name": SEARCH_PLAYER_MANUAL,
        "description": (
            "Search through the player manual for rules, character creation, spells, equipment, "
            "classes, races, and other player-facing content. Use this when you need information "
            "that would be in a player handbook or manual."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "searchQuery": {
                    "type": "string",
                    "description": (
                        "The search query describing what information you need from the player "
                        "manual. Be specific and include relevant keywords."
                    ),
                },
            },
            "required": ["searchQuery"],
        },
    },
    {
        "name": SEARCH_GM_MANUAL,
        "description": (
            "Search through the GM manual for running the game, NPCs, monsters, adventures, "
            "campaign advice, and other GM-facing content. Use this when you need information "
            "that would be in a dungeon master's guide or GM manual."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "searchQuery": {
                    "type": "string",
                    "description": (
                        "The search query describing what information you need from the GM "
                        "manual. Be specific and include relevant keywords."
                    ),
                },
            },
            "required": ["searchQuery"],
        },
    },
]


def format_search_result(result: ManualSearchResult) -> str:
    """Render a search result as the text block the model reads."""
    if not result.chunks:
        return (
            f"No relevant information found in the {result.manual_type} manual "
            f'for query: "{result.search_query}"'
        )

    parts = [
        f"Found {result.total_matches} relevant sections in the {result.manual_type} manual "
        f'for query: "{result.search_query}"\n\n'
    ]
    for i, chunk in enumerate(result.chunks):
        pages = str(chunk.start_page)
        if chunk.end_page != chunk.start_page:
            pages += f"-{chunk.end_page}"

        parts.append(f"## {chunk.title}\n")
        parts.append(f"**Path:** {' > '.join(chunk.path)}\n")
        parts.append(f"**Page:** {pages}\n\n")
        parts.append(chunk.content + "\n\n")
        if i < len(result.chunks) - 1:
            parts.append("---\n\n")

    return "".join(parts)


class ManualSearchTool(ToolAdapter):
    """
    Tool adapter answering manual searches for one (setting, campaign).

    Example:
        >>> tool = ManualSearchTool(searcher, "Eberron", "Sharn Nights")
        >>> result = await tool.call("search_gm_manual", {"searchQuery": "warforged NPCs"})
        >>> print(result["text"])
    """

    def __init__(self, searcher: ManualSearcher, setting: str, campaign: str):
        self.searcher = searcher
        self.setting = setting
        self.campaign = campaign

    async def list_tools(self) -> list[dict[str, Any]]:
        return MANUAL_SEARCH_TOOLS

    async def search(self, tool_name: str, arguments: dict[str, Any]) -> ManualSearchResult:
        """
        Run the manual search named by ``tool_name``.

        Raises:
            ValueError: For an unknown tool or a missing/invalid ``searchQuery``
        """
        kind = TOOL_KINDS.get(tool_name)
        if kind is None:
            raise ValueError(f"Unknown function: {tool_name}")

        query = arguments.get("searchQuery")
        if not isinstance(query, str) or not query.strip():
            raise ValueError(f"{tool_name} requires a non-empty 'searchQuery' string")

        return await self.searcher.search(query, self.setting, self.campaign, kind)

    async def call(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        result = await self.search(tool_name, arguments)
        return {"text": format_search_result(result), "result": result}
