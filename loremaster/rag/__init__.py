"""
Manual retrieval layer.

Chunks uploaded rulebooks, persists them with a derived search index,
embeds them, and searches them by vector similarity or keywords.

Only the data models are re-exported here; import components from their
modules (``loremaster.rag.searcher``, ``loremaster.rag.components``...).
"""

from loremaster.rag.base import (
    MANUAL_KINDS,
    ChunkedManual,
    ChunkEmbedding,
    DocumentFetcher,
    DocumentPages,
    ManualKind,
    ManualSearchResult,
    PdfChunk,
    VectorSearchResult,
)

__all__ = [
    "MANUAL_KINDS",
    "ChunkedManual",
    "ChunkEmbedding",
    "DocumentFetcher",
    "DocumentPages",
    "ManualKind",
    "ManualSearchResult",
    "PdfChunk",
    "VectorSearchResult",
]
