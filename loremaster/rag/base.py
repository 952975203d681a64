"""
Base classes and data structures for the manual retrieval system.

This module defines the records that flow through ingestion and search:
- PdfChunk: a titled, page-bounded excerpt of a rulebook
- ChunkedManual: the persisted result of chunking one rulebook
- ChunkEmbedding: a chunk paired with its embedding vector
- VectorSearchResult: one hit from the vector index
- ManualSearchResult: what a manual search hands back to the LLM loop
- DocumentPages / DocumentFetcher: raw per-page text and its source

Persisted JSON uses camelCase keys (``startPage``, ``chunkId``...) so that
manuals chunked by earlier versions of the tool load unchanged. Python code
uses the snake_case attribute names; always dump with ``by_alias=True``.
"""

from abc import ABC, abstractmethod
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

ManualKind = Literal["player", "gm"]
MANUAL_KINDS: tuple[ManualKind, ...] = ("player", "gm")


class CamelModel(BaseModel):
    """Base model that reads and writes camelCase JSON keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PdfChunk(CamelModel):
    """
    A contiguous, titled excerpt of a source document.

    Chunks are immutable; derived chunks (page splits) are new instances.

    Example:
        >>> chunk = PdfChunk(
        ...     id="section:3",
        ...     title="Chapter 2: Combat",
        ...     content="Initiative determines the order of turns...",
        ...     level=1,
        ...     path=["Chapter 2: Combat"],
        ...     start_page=14,
        ...     end_page=22,
        ...     token_estimate=1830,
        ...     chunk_index=3,
        ...     source_file="players-guide.pdf",
        ... )
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(description="'section:<n>' or 'section:<n>:p<page>' for page splits")
    title: str = Field(description="Detected heading text or a synthetic placeholder")
    content: str = Field(description="Raw text belonging to this chunk")
    level: int = Field(ge=1, description="Heading depth: 1 chapter, 2 section, 3 subsection")
    path: list[str] = Field(min_length=1, description="Ancestor titles down to this chunk")
    start_page: int = Field(ge=1, description="First page covered (1-based, inclusive)")
    end_page: int = Field(ge=1, description="Last page covered (1-based, inclusive)")
    token_estimate: int = Field(ge=0, description="Word count x 1.3, rounded")
    chunk_index: int = Field(ge=0, description="Position in the final chunk list")
    source_file: str = Field(description="Originating document filename")

    @model_validator(mode="after")
    def _check_page_range(self) -> "PdfChunk":
        if self.start_page > self.end_page:
            raise ValueError(
                f"startPage ({self.start_page}) must not exceed endPage ({self.end_page})"
            )
        return self


class ChunkedManualMetadata(CamelModel):
    """Bookkeeping recorded alongside a chunked manual."""

    extracted_at: str = Field(description="ISO-8601 timestamp of the chunking run")
    total_chunks: int = Field(ge=0)


class ChunkedManual(CamelModel):
    """The full chunk list for one uploaded manual."""

    file_name: str
    total_pages: int = Field(ge=0)
    chunks: list[PdfChunk]
    metadata: ChunkedManualMetadata

    @model_validator(mode="after")
    def _check_unique_ids(self) -> "ChunkedManual":
        ids = [chunk.id for chunk in self.chunks]
        if len(ids) != len(set(ids)):
            raise ValueError("Chunk ids must be unique within a manual")
        return self


class ChunkEmbedding(CamelModel):
    """
    An embedding vector for one chunk.

    The chunk payload is duplicated here so vector search results are
    self-contained and never need a join against the chunk list.
    """

    chunk_id: str
    embedding: list[float]
    chunk: PdfChunk


class VectorSearchResult(BaseModel):
    """A single vector-index hit."""

    chunk: PdfChunk
    similarity: float
    embedding: list[float] | None = None


class ManualSearchResult(CamelModel):
    """Chunks found for one manual search, in ranked order."""

    chunks: list[PdfChunk] = Field(default_factory=list)
    total_matches: int = 0
    search_query: str
    manual_type: ManualKind

    @classmethod
    def empty(cls, query: str, kind: ManualKind) -> "ManualSearchResult":
        return cls(chunks=[], total_matches=0, search_query=query, manual_type=kind)


class DocumentPages(BaseModel):
    """Raw extracted text, one string per page, in page order."""

    file_name: str
    pages: list[str]

    @property
    def total_pages(self) -> int:
        return len(self.pages)


class DocumentFetcher(ABC):
    """
    Abstract source of per-page document text.

    Implementations wrap whatever text-extraction library is in use. A
    fetcher must return every page (empty strings for blank pages) so that
    page numbers line up with the original document.
    """

    @abstractmethod
    async def fetch(self, path: str) -> DocumentPages:
        """
        Extract per-page text from the document at ``path``.

        Raises:
            FileNotFoundError: If the document doesn't exist
            ValueError: If the document can't be parsed
        """
        pass
