"""
Unit tests for ManualSearcher and the keyword/rerank helpers.

Chunked manuals are written to a temporary LocalBlobStore; the text
backend used for reranking is an AsyncMock.
"""

import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from loremaster.config.settings import RAGSettings
from loremaster.rag.base import ChunkedManual, ChunkedManualMetadata, ManualSearchResult, PdfChunk
from loremaster.rag.embedding_pipeline import EmbeddingPipeline
from loremaster.rag.embeddings import EmbeddingBackend
from loremaster.rag.searcher import (
    ManualSearcher,
    build_rerank_prompt,
    filter_chunks_by_keywords,
    format_chunks_for_context,
    keyword_score,
    parse_ranked_ids,
)
from loremaster.rag.store import ChunkStore
from loremaster.rag.vector_index import VectorIndex
from loremaster.storage.local import LocalBlobStore

SETTING = "Eberron"
CAMPAIGN = "Sharn"


class SpellEmbedder(EmbeddingBackend):
    """Vectors of (mentions fireball, mentions anything else)."""

    def __init__(self):
        self.calls = []
        self.error = None

    async def embed_batch(self, texts):
        self.calls.append(list(texts))
        if self.error:
            raise self.error
        return [[1.0, 0.0] if "fireball" in t.lower() else [0.0, 1.0] for t in texts]

    def dimension(self):
        return 2


def _chunk(index: int, title: str, content: str, path: list[str] | None = None) -> PdfChunk:
    return PdfChunk(
        id=f"section:{index}",
        title=title,
        content=content,
        level=1,
        path=path or [title],
        start_page=index + 1,
        end_page=index + 1,
        token_estimate=10,
        chunk_index=index,
        source_file="gm-guide.pdf",
    )


def _manual(chunks) -> ChunkedManual:
    return ChunkedManual(
        file_name="gm-guide.pdf",
        total_pages=len(chunks),
        chunks=chunks,
        metadata=ChunkedManualMetadata(extracted_at="2024-01-01T00:00:00+00:00", total_chunks=len(chunks)),
    )


def _spell_manual() -> ChunkedManual:
    return _manual([
        _chunk(0, "Introduction", "Welcome to the world of adventure."),
        _chunk(1, "Spellcasting", "Fireball is loud. A fireball explodes. Every fireball burns."),
        _chunk(2, "Equipment", "Swords and shields."),
    ])


@pytest.fixture
def store(tmp_path):
    return ChunkStore(LocalBlobStore(tmp_path))


@pytest.fixture
def text_backend():
    backend = MagicMock()
    backend.generate = AsyncMock(return_value="[]")
    return backend


class TestKeywordScoring:
    """keyword_score / filter_chunks_by_keywords"""

    def test_counts_each_query_word(self):
        chunk = _spell_manual().chunks[1]

        assert keyword_score(chunk, "fireball damage") == 3

    def test_title_bonus(self):
        chunk = _chunk(0, "Grappling Rules", "Grab a foe.")

        # "grappling" appears in title and path, plus the whole-query bonus
        assert keyword_score(chunk, "Grappling") == 2 + 10

    def test_blank_query_scores_zero(self):
        assert keyword_score(_spell_manual().chunks[1], "   ") == 0

    def test_filter_drops_zero_and_sorts(self):
        chunks = [
            _chunk(0, "A", "goblin"),
            _chunk(1, "B", "nothing here"),
            _chunk(2, "C", "goblin goblin"),
        ]

        assert [c.id for c in filter_chunks_by_keywords(chunks, "goblin")] == ["section:2", "section:0"]


class TestRerankHelpers:
    """Prompt building and reply parsing."""

    def test_prompt_contains_previews(self):
        chunk = _chunk(0, "Grappling", "x" * 300, path=["Combat", "Grappling"])

        prompt = build_rerank_prompt([chunk], "grapple")

        assert 'Search Query: "grapple"' in prompt
        assert "1. ID: section:0" in prompt
        assert "Path: Combat > Grappling" in prompt
        assert "x" * 200 + "..." in prompt
        assert "x" * 201 not in prompt

    def test_parse_plain_array(self):
        assert parse_ranked_ids('["section:2", "section:0"]') == ["section:2", "section:0"]

    def test_parse_fenced_array(self):
        assert parse_ranked_ids('```json\n["section:1"]\n```') == ["section:1"]

    def test_parse_rejects_non_list(self):
        with pytest.raises(ValueError):
            parse_ranked_ids('{"ids": ["section:1"]}')


class TestKeywordSearch:
    """Keyword path of ManualSearcher."""

    @pytest.mark.asyncio
    async def test_fireball_found_without_embeddings(self, store, text_backend):
        await store.save_manual(SETTING, CAMPAIGN, "gm", _spell_manual())
        searcher = ManualSearcher(store, text_backend)

        result = await searcher.search_gm_manual("fireball damage", SETTING, CAMPAIGN)

        assert [c.title for c in result.chunks] == ["Spellcasting"]
        assert result.total_matches == 1
        assert result.manual_type == "gm"
        assert result.search_query == "fireball damage"
        text_backend.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_missing_manual_is_empty(self, store, text_backend):
        searcher = ManualSearcher(store, text_backend)

        result = await searcher.search_player_manual("anything", SETTING, CAMPAIGN)

        assert result.chunks == []
        assert result.total_matches == 0
        assert result == ManualSearchResult.empty("anything", "player")

    @pytest.mark.asyncio
    async def test_no_matching_chunks_is_empty(self, store, text_backend):
        await store.save_manual(SETTING, CAMPAIGN, "gm", _spell_manual())
        searcher = ManualSearcher(store, text_backend)

        result = await searcher.search_gm_manual("warforged", SETTING, CAMPAIGN)

        assert result == ManualSearchResult.empty("warforged", "gm")
        text_backend.generate.assert_not_called()

    @pytest.mark.asyncio
    async def test_large_match_set_is_reranked(self, store, text_backend):
        chunks = [_chunk(i, f"Part {i}", "grapple rules apply here.") for i in range(25)]
        await store.save_manual(SETTING, CAMPAIGN, "player", _manual(chunks))
        text_backend.generate.return_value = '["section:24", "section:3", "section:24", "bogus"]'
        searcher = ManualSearcher(store, text_backend)

        result = await searcher.search_player_manual("grapple", SETTING, CAMPAIGN)

        ids = [c.id for c in result.chunks]
        assert ids[:3] == ["section:24", "section:3", "section:0"]
        assert len(ids) == 10
        assert len(set(ids)) == 10
        text_backend.generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_rerank_failure_keeps_keyword_order(self, store, text_backend, caplog):
        caplog.set_level(logging.WARNING)
        chunks = [_chunk(i, f"Part {i}", "grapple") for i in range(25)]
        await store.save_manual(SETTING, CAMPAIGN, "player", _manual(chunks))
        text_backend.generate.return_value = "I think section 3 is best"
        searcher = ManualSearcher(store, text_backend)

        result = await searcher.search_player_manual("grapple", SETTING, CAMPAIGN)

        assert [c.id for c in result.chunks] == [f"section:{i}" for i in range(10)]
        assert "Failed to rank chunks" in caplog.text

    @pytest.mark.asyncio
    async def test_rerank_backend_error_is_not_fatal(self, store, text_backend):
        chunks = [_chunk(i, f"Part {i}", "grapple") for i in range(25)]
        await store.save_manual(SETTING, CAMPAIGN, "player", _manual(chunks))
        text_backend.generate.side_effect = RuntimeError("backend down")
        searcher = ManualSearcher(store, text_backend)

        result = await searcher.search_player_manual("grapple", SETTING, CAMPAIGN)

        assert len(result.chunks) == 10

    @pytest.mark.asyncio
    async def test_small_match_set_not_reranked(self, store, text_backend):
        chunks = [_chunk(i, f"Part {i}", "grapple") for i in range(20)]
        await store.save_manual(SETTING, CAMPAIGN, "player", _manual(chunks))
        searcher = ManualSearcher(store, text_backend)

        result = await searcher.search_player_manual("grapple", SETTING, CAMPAIGN)

        assert len(result.chunks) == 10
        text_backend.generate.assert_not_called()


class TestVectorSearch:
    """Vector path and its fallbacks."""

    async def _pipeline(self, store, embed=True) -> EmbeddingPipeline:
        pipeline = EmbeddingPipeline(SpellEmbedder(), VectorIndex(store, SETTING, CAMPAIGN, "gm"))
        if embed:
            await pipeline.create_embeddings_for_manual()
            pipeline.backend.calls.clear()
        return pipeline

    @pytest.mark.asyncio
    async def test_uses_vector_results_when_embedded(self, store, text_backend):
        await store.save_manual(SETTING, CAMPAIGN, "gm", _spell_manual())
        pipeline = await self._pipeline(store)
        searcher = ManualSearcher(store, text_backend, {"gm": pipeline})

        result = await searcher.search("fireball", SETTING, CAMPAIGN, "gm")

        assert [c.id for c in result.chunks] == ["section:1"]
        assert pipeline.backend.calls == [["fireball"]]

    @pytest.mark.asyncio
    async def test_no_embeddings_skips_backend_and_matches_keyword_path(self, store, text_backend):
        await store.save_manual(SETTING, CAMPAIGN, "gm", _spell_manual())
        pipeline = await self._pipeline(store, embed=False)
        searcher = ManualSearcher(store, text_backend, {"gm": pipeline})

        result = await searcher.search("fireball damage", SETTING, CAMPAIGN, "gm")
        keyword_only = await searcher.keyword_search("fireball damage", SETTING, CAMPAIGN, "gm")

        assert pipeline.backend.calls == []
        assert result.chunks == keyword_only

    @pytest.mark.asyncio
    async def test_pipeline_for_other_campaign_ignored(self, store, text_backend):
        await store.save_manual(SETTING, "Droaam", "gm", _spell_manual())
        await store.save_manual(SETTING, CAMPAIGN, "gm", _spell_manual())
        pipeline = await self._pipeline(store)
        searcher = ManualSearcher(store, text_backend, {"gm": pipeline})

        await searcher.search("fireball", SETTING, "Droaam", "gm")

        assert pipeline.backend.calls == []

    @pytest.mark.asyncio
    async def test_vector_error_falls_back(self, store, text_backend):
        await store.save_manual(SETTING, CAMPAIGN, "gm", _spell_manual())
        pipeline = await self._pipeline(store)
        pipeline.backend.error = RuntimeError("model crashed")
        searcher = ManualSearcher(store, text_backend, {"gm": pipeline})

        result = await searcher.search("fireball damage", SETTING, CAMPAIGN, "gm")

        assert [c.title for c in result.chunks] == ["Spellcasting"]

    @pytest.mark.asyncio
    async def test_no_vector_hits_falls_back(self, store, text_backend):
        await store.save_manual(SETTING, CAMPAIGN, "gm", _spell_manual())
        pipeline = await self._pipeline(store)
        searcher = ManualSearcher(
            store, text_backend, {"gm": pipeline}, RAGSettings(vector_threshold=1.5)
        )

        result = await searcher.search("swords", SETTING, CAMPAIGN, "gm")

        assert [c.title for c in result.chunks] == ["Equipment"]

    def test_set_pipeline(self, store, text_backend):
        searcher = ManualSearcher(store, text_backend)
        pipeline = MagicMock()

        searcher.set_pipeline("player", pipeline)
        assert searcher.pipelines["player"] is pipeline

        searcher.set_pipeline("player", None)
        assert "player" not in searcher.pipelines


class TestFormatChunksForContext:
    """format_chunks_for_context()"""

    def test_with_metadata(self):
        chunks = [
            _chunk(0, "Grappling", "Grab.", path=["Combat", "Grappling"]),
            _chunk(1, "Magic", "Cast."),
        ]

        text = format_chunks_for_context(chunks)

        assert text == (
            "## Grappling (gm-guide.pdf, p.1-1)\n\n"
            "**Section Path:** Combat → Grappling\n\n"
            "Grab."
            "\n\n---\n\n"
            "## Magic (gm-guide.pdf, p.2-2)\n\n"
            "Cast."
        )

    def test_without_metadata(self):
        text = format_chunks_for_context([_chunk(0, "Magic", "Cast.")], include_metadata=False)

        assert text == "## Magic\n\nCast."
