"""
Unit tests for the RAG data models.

Focus is on the persisted JSON shape (camelCase keys) and the validators
that keep page ranges and chunk ids consistent.
"""

import pytest
from pydantic import ValidationError

from loremaster.rag.base import (
    ChunkedManual,
    ChunkedManualMetadata,
    ChunkEmbedding,
    DocumentPages,
    ManualSearchResult,
    PdfChunk,
)


def _chunk(**overrides) -> PdfChunk:
    """Helper to build a valid PdfChunk with sensible defaults."""
    defaults = dict(
        id="section:0",
        title="Chapter 1: Intro",
        content="Welcome to the game.",
        level=1,
        path=["Chapter 1: Intro"],
        start_page=1,
        end_page=2,
        token_estimate=5,
        chunk_index=0,
        source_file="players-guide.pdf",
    )
    defaults.update(overrides)
    return PdfChunk(**defaults)


class TestPdfChunk:
    """PdfChunk validation and serialisation."""

    def test_dumps_camel_case_keys(self):
        data = _chunk().model_dump(mode="json", by_alias=True)

        assert data["startPage"] == 1
        assert data["endPage"] == 2
        assert data["tokenEstimate"] == 5
        assert data["chunkIndex"] == 0
        assert data["sourceFile"] == "players-guide.pdf"
        assert "start_page" not in data

    def test_loads_camel_case_json(self):
        chunk = _chunk()

        restored = PdfChunk.model_validate_json(chunk.model_dump_json(by_alias=True))

        assert restored == chunk

    def test_accepts_snake_case_names(self):
        assert _chunk(start_page=3, end_page=3).start_page == 3

    def test_rejects_inverted_page_range(self):
        with pytest.raises(ValidationError, match="must not exceed"):
            _chunk(start_page=5, end_page=4)

    def test_rejects_empty_path(self):
        with pytest.raises(ValidationError):
            _chunk(path=[])

    def test_is_frozen(self):
        chunk = _chunk()

        with pytest.raises(ValidationError):
            chunk.title = "Other"


class TestChunkedManual:
    """ChunkedManual invariants."""

    def _manual(self, chunks):
        return ChunkedManual(
            file_name="players-guide.pdf",
            total_pages=2,
            chunks=chunks,
            metadata=ChunkedManualMetadata(
                extracted_at="2024-01-01T00:00:00+00:00", total_chunks=len(chunks)
            ),
        )

    def test_rejects_duplicate_ids(self):
        with pytest.raises(ValidationError, match="unique"):
            self._manual([_chunk(), _chunk(chunk_index=1)])

    def test_metadata_keys(self):
        data = self._manual([_chunk()]).model_dump(mode="json", by_alias=True)

        assert data["fileName"] == "players-guide.pdf"
        assert data["totalPages"] == 2
        assert data["metadata"] == {
            "extractedAt": "2024-01-01T00:00:00+00:00",
            "totalChunks": 1,
        }


class TestOtherModels:
    """Smaller records."""

    def test_chunk_embedding_keys(self):
        record = ChunkEmbedding(chunk_id="section:0", embedding=[0.1, 0.2], chunk=_chunk())

        data = record.model_dump(mode="json", by_alias=True)

        assert data["chunkId"] == "section:0"
        assert data["chunk"]["startPage"] == 1

    def test_empty_search_result(self):
        result = ManualSearchResult.empty("grappling", "player")

        assert result.chunks == []
        assert result.total_matches == 0
        assert result.model_dump(mode="json", by_alias=True)["searchQuery"] == "grappling"
        assert result.model_dump(mode="json", by_alias=True)["manualType"] == "player"

    def test_document_pages_total(self):
        assert DocumentPages(file_name="x.pdf", pages=["a", "", "c"]).total_pages == 3
