"""
Derived search index for a chunked manual.

Built once per chunking run and stored next to the manual, the index gives
cheap non-vector lookups without rescanning chunk content:

- byTitle: lowercased chunk title -> chunk id
- byLevel: heading level -> chunk ids
- byType: content category -> chunk ids
- byPageRange: (id, startPage, endPage, title) per chunk
- keywords: significant term -> chunk ids

The module also carries the classification and keyword helpers used by the
index and by the per-chunk files, plus small query helpers over a
ChunkedManual.
"""

import re
from typing import Literal

from pydantic import Field

from loremaster.rag.base import CamelModel, ChunkedManual, ManualKind, PdfChunk

ChunkType = Literal["character", "combat", "magic", "equipment", "gm", "rules", "other"]

MAX_KEYWORDS = 20

# Checked in this order; the first category with a matching pattern wins.
CHUNK_TYPE_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "character": [
        re.compile(r"character\s*(creation|building|generation)", re.IGNORECASE),
        re.compile(r"creating\s*characters?", re.IGNORECASE),
        re.compile(r"abilities", re.IGNORECASE),
        re.compile(r"attributes", re.IGNORECASE),
        re.compile(r"skills?", re.IGNORECASE),
        re.compile(r"stats", re.IGNORECASE),
    ],
    "combat": [
        re.compile(r"combat", re.IGNORECASE),
        re.compile(r"fighting", re.IGNORECASE),
        re.compile(r"battle", re.IGNORECASE),
        re.compile(r"attack", re.IGNORECASE),
        re.compile(r"damage", re.IGNORECASE),
        re.compile(r"initiative", re.IGNORECASE),
        re.compile(r"armor", re.IGNORECASE),
    ],
    "magic": [
        re.compile(r"magic", re.IGNORECASE),
        re.compile(r"spell", re.IGNORECASE),
        re.compile(r"arcane", re.IGNORECASE),
        re.compile(r"divine", re.IGNORECASE),
        re.compile(r"casting", re.IGNORECASE),
        re.compile(r"enchant", re.IGNORECASE),
    ],
    "equipment": [
        re.compile(r"equipment", re.IGNORECASE),
        re.compile(r"gear", re.IGNORECASE),
        re.compile(r"items?", re.IGNORECASE),
        re.compile(r"weapons?", re.IGNORECASE),
        re.compile(r"armor", re.IGNORECASE),
        re.compile(r"tools?", re.IGNORECASE),
    ],
    "gm": [
        re.compile(r"game\s*master", re.IGNORECASE),
        re.compile(r"gm", re.IGNORECASE),
        re.compile(r"running", re.IGNORECASE),
        re.compile(r"npcs?", re.IGNORECASE),
        re.compile(r"adventures?", re.IGNORECASE),
        re.compile(r"scenarios?", re.IGNORECASE),
        re.compile(r"encounters?", re.IGNORECASE),
    ],
    "rules": [
        re.compile(r"rules?", re.IGNORECASE),
        re.compile(r"mechanics?", re.IGNORECASE),
        re.compile(r"system", re.IGNORECASE),
        re.compile(r"basic", re.IGNORECASE),
        re.compile(r"core", re.IGNORECASE),
    ],
}

STOP_WORDS = frozenset({
    "the", "a", "an", "and", "or", "but", "in", "on", "at", "to", "for", "of", "with",
    "by", "is", "are", "was", "were", "be", "been", "being", "have", "has", "had",
    "do", "does", "did", "will", "would", "could", "should", "may", "might", "must",
    "this", "that", "these", "those", "i", "you", "he", "she", "it", "we", "they",
    "me", "him", "her", "us", "them", "my", "your", "his", "its", "our", "their",
})


def _matches_type(chunk: PdfChunk, patterns: list[re.Pattern[str]]) -> bool:
    title = chunk.title.lower()
    path = " ".join(chunk.path).lower()
    content_start = chunk.content[:500].lower()
    return any(
        pattern.search(title) or pattern.search(path) or pattern.search(content_start)
        for pattern in patterns
    )


def classify_chunk(chunk: PdfChunk) -> ChunkType:
    """Classify a chunk from its title, path and first 500 characters."""
    for chunk_type, patterns in CHUNK_TYPE_PATTERNS.items():
        if _matches_type(chunk, patterns):
            return chunk_type
    return "other"


def extract_keywords(text: str, limit: int = MAX_KEYWORDS) -> list[str]:
    """First ``limit`` distinct significant words (longer than 2 chars, not stop words)."""
    words = re.sub(r"[^\w\s]", " ", text.lower()).split()
    keywords: list[str] = []
    seen: set[str] = set()
    for word in words:
        if len(word) <= 2 or word in STOP_WORDS or word in seen:
            continue
        seen.add(word)
        keywords.append(word)
        if len(keywords) >= limit:
            break
    return keywords


class IndexedDocument(CamelModel):
    # "filename" is lowercase in stored indexes, not "fileName"
    file_name: str = Field(alias="filename")
    total_pages: int
    total_chunks: int
    extracted_at: str
    type: ManualKind


class PageRangeEntry(CamelModel):
    id: str
    start_page: int
    end_page: int
    title: str


def _empty_types() -> dict[str, list[str]]:
    return {name: [] for name in (*CHUNK_TYPE_PATTERNS, "other")}


class IndexTables(CamelModel):
    by_title: dict[str, str] = Field(default_factory=dict)
    by_level: dict[int, list[str]] = Field(default_factory=dict)
    by_type: dict[str, list[str]] = Field(default_factory=_empty_types)
    by_page_range: list[PageRangeEntry] = Field(default_factory=list)
    keywords: dict[str, list[str]] = Field(default_factory=dict)


class SearchIndex(CamelModel):
    """Serialized as ``<kind>-manual-search-index.json``."""

    document: IndexedDocument
    index: IndexTables

    def find_page_range(self, chunk_id: str) -> PageRangeEntry | None:
        return next((e for e in self.index.by_page_range if e.id == chunk_id), None)


def build_search_index(manual: ChunkedManual, kind: ManualKind) -> SearchIndex:
    """Build the derived index for one chunked manual."""
    tables = IndexTables()

    for chunk in manual.chunks:
        tables.by_title[chunk.title.lower()] = chunk.id
        tables.by_level.setdefault(chunk.level, []).append(chunk.id)
        tables.by_type[classify_chunk(chunk)].append(chunk.id)
        tables.by_page_range.append(PageRangeEntry(
            id=chunk.id,
            start_page=chunk.start_page,
            end_page=chunk.end_page,
            title=chunk.title,
        ))
        for keyword in extract_keywords(chunk.content):
            tables.keywords.setdefault(keyword, []).append(chunk.id)

    return SearchIndex(
        document=IndexedDocument(
            file_name=manual.file_name,
            total_pages=manual.total_pages,
            total_chunks=len(manual.chunks),
            extracted_at=manual.metadata.extracted_at,
            type=kind,
        ),
        index=tables,
    )


# ---------------------------------------------------------------------------
# Query helpers over a loaded manual
# ---------------------------------------------------------------------------

def get_chunks_by_type(manual: ChunkedManual, chunk_type: str) -> list[PdfChunk]:
    """
    Chunks matching a category's patterns.

    Unlike ``classify_chunk`` this is not exclusive: a chunk about spell
    damage is returned for both "combat" and "magic".
    """
    patterns = CHUNK_TYPE_PATTERNS.get(chunk_type)
    if not patterns:
        return []
    return [chunk for chunk in manual.chunks if _matches_type(chunk, patterns)]


def get_chunks_by_level(manual: ChunkedManual, level: int) -> list[PdfChunk]:
    return [chunk for chunk in manual.chunks if chunk.level == level]


def get_top_level_sections(manual: ChunkedManual) -> list[PdfChunk]:
    return get_chunks_by_level(manual, 1)


def get_chunks_by_page_range(
    manual: ChunkedManual,
    start_page: int,
    end_page: int | None = None,
) -> list[PdfChunk]:
    """Chunks overlapping ``[start_page, end_page]`` (a single page when end is omitted)."""
    end = end_page if end_page is not None else start_page
    return [
        chunk for chunk in manual.chunks
        if chunk.start_page <= end and chunk.end_page >= start_page
    ]
