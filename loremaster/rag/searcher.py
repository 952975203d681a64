"""
Manual search: vector retrieval with a keyword + LLM-rerank fallback.

Search strategy for one (setting, campaign, kind):

1. If an embedding pipeline serves this manual and holds embeddings, embed
   the query and run a vector search. A non-empty result is returned as-is.
2. Otherwise (no pipeline, no embeddings, vector error or no hits), score
   every stored chunk by keyword occurrences. More than ``rerank_trigger``
   matches are narrowed by asking the LLM to order the top
   ``rerank_candidates``; at most ``result_limit`` chunks are returned.

A manual that has not been chunked yet yields an empty result, not an
error. Vector and rerank failures are logged and degrade to the next best
ordering; they never reach the caller.
"""

import json
import logging

from loremaster.config.settings import RAGSettings
from loremaster.llm.backend import TextGenerationBackend
from loremaster.rag.base import ManualKind, ManualSearchResult, PdfChunk
from loremaster.rag.embedding_pipeline import EmbeddingPipeline
from loremaster.rag.store import ChunkStore

logger = logging.getLogger(__name__)

TITLE_MATCH_BONUS = 10
PREVIEW_CHARS = 200


def keyword_score(chunk: PdfChunk, query: str) -> int:
    """
    Occurrences of each query word in the chunk's title, path and content.

    Words are matched as plain substrings, case-insensitively. A chunk whose
    title contains the whole query gets a bonus.
    """
    query = query.strip().lower()
    if not query:
        return 0

    searchable = f"{chunk.title} {' '.join(chunk.path)} {chunk.content}".lower()
    score = sum(searchable.count(word) for word in query.split())
    if query in chunk.title.lower():
        score += TITLE_MATCH_BONUS
    return score


def filter_chunks_by_keywords(chunks: list[PdfChunk], query: str) -> list[PdfChunk]:
    """Chunks with a positive keyword score, best first (ties keep input order)."""
    scored = [(keyword_score(chunk, query), chunk) for chunk in chunks]
    scored = [item for item in scored if item[0] > 0]
    scored.sort(key=lambda item: item[0], reverse=True)
    return [chunk for _, chunk in scored]


def build_rerank_prompt(chunks: list[PdfChunk], query: str) -> str:
    summaries = []
    for position, chunk in enumerate(chunks, start=1):
        preview = chunk.content[:PREVIEW_CHARS]
        if len(chunk.content) > PREVIEW_CHARS:
            preview += "..."
        summaries.append(
            f"{position}. ID: {chunk.id}\n"
            f"   Title: {chunk.title}\n"
            f"   Path: {' > '.join(chunk.path)}\n"
            f"   Preview: {preview}"
        )

    return (
        "Given the following search query and list of document chunks, rank them by relevance to the query.\n"
        "Return only the chunk IDs in order of relevance (most relevant first).\n"
        "\n"
        f'Search Query: "{query}"\n'
        "\n"
        "Chunks to rank:\n"
        + "\n\n".join(summaries)
        + "\n\nReturn the chunk IDs as a JSON array of strings, ordered by relevance:\n"
    )


def parse_ranked_ids(text: str) -> list[str]:
    """
    Parse the reranker's reply into a list of ids.

    Tolerates a Markdown code fence around the JSON array.

    Raises:
        ValueError: If the reply is not a JSON array of strings
    """
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.strip("`").removeprefix("json").strip()

    ranked = json.loads(cleaned)
    if not isinstance(ranked, list) or not all(isinstance(item, str) for item in ranked):
        raise ValueError(f"Expected a JSON array of chunk ids, got: {text[:100]!r}")
    return ranked


def format_chunks_for_context(chunks: list[PdfChunk], include_metadata: bool = True) -> str:
    """
    Render chunks as Markdown sections for a prompt.

    Example:
        >>> print(format_chunks_for_context([chunk]))
        ## Grappling (players-guide.pdf, p.12-13)

        **Section Path:** Combat → Grappling

        A grapple is an attempt to...
    """
    sections = []
    for chunk in chunks:
        if include_metadata:
            header = f"## {chunk.title} ({chunk.source_file}, p.{chunk.start_page}-{chunk.end_page})"
        else:
            header = f"## {chunk.title}"

        path_info = ""
        if include_metadata and len(chunk.path) > 1:
            path_info = f"**Section Path:** {' → '.join(chunk.path)}\n\n"

        sections.append(f"{header}\n\n{path_info}{chunk.content}")
    return "\n\n---\n\n".join(sections)


class ManualSearcher:
    """
    Finds the chunks of a player or GM manual most relevant to a query.

    Args:
        store: Where chunked manuals are read from
        text_backend: Generator used to rerank large keyword result sets
        pipelines: Optional embedding pipeline per manual kind
        settings: Retrieval tuning (thresholds, limits)
    """

    def __init__(
        self,
        store: ChunkStore,
        text_backend: TextGenerationBackend,
        pipelines: dict[ManualKind, EmbeddingPipeline] | None = None,
        settings: RAGSettings | None = None,
    ):
        self.store = store
        self.text_backend = text_backend
        self.pipelines: dict[ManualKind, EmbeddingPipeline] = dict(pipelines or {})
        self.settings = settings or RAGSettings()

    def set_pipeline(self, kind: ManualKind, pipeline: EmbeddingPipeline | None) -> None:
        """Attach (or with None, detach) the embedding pipeline for a kind."""
        if pipeline is None:
            self.pipelines.pop(kind, None)
        else:
            self.pipelines[kind] = pipeline

    async def search_player_manual(self, query: str, setting: str, campaign: str) -> ManualSearchResult:
        return await self.search(query, setting, campaign, "player")

    async def search_gm_manual(self, query: str, setting: str, campaign: str) -> ManualSearchResult:
        return await self.search(query, setting, campaign, "gm")

    async def search(
        self,
        query: str,
        setting: str,
        campaign: str,
        kind: ManualKind,
    ) -> ManualSearchResult:
        chunks = await self._vector_search(query, setting, campaign, kind)
        if chunks:
            logger.info(f"Vector search found {len(chunks)} {kind} chunks for '{query}'")
        else:
            chunks = await self.keyword_search(query, setting, campaign, kind)

        if not chunks:
            logger.info(f"No {kind} chunks matched '{query}'")
            return ManualSearchResult.empty(query, kind)

        return ManualSearchResult(
            chunks=chunks,
            total_matches=len(chunks),
            search_query=query,
            manual_type=kind,
        )

    async def _vector_search(
        self, query: str, setting: str, campaign: str, kind: ManualKind
    ) -> list[PdfChunk]:
        pipeline = self.pipelines.get(kind)
        if pipeline is None or not pipeline.serves(setting, campaign):
            logger.debug(f"No embedding pipeline for {kind} manual, using keyword search")
            return []
        if not pipeline.has_embeddings():
            logger.info(f"No {kind} embeddings stored yet, using keyword search")
            return []

        try:
            results = await pipeline.search_relevant_chunks(
                query,
                top_k=self.settings.vector_top_k,
                threshold=self.settings.vector_threshold,
            )
        except Exception as e:
            logger.warning(f"Vector search failed for {kind} manual, falling back to keywords: {e}")
            return []

        if not results:
            logger.info(f"Vector search returned nothing for '{query}', falling back to keywords")
        return [result.chunk for result in results]

    async def keyword_search(
        self,
        query: str,
        setting: str,
        campaign: str,
        kind: ManualKind,
    ) -> list[PdfChunk]:
        """Keyword scoring over the stored chunk list, reranked by the LLM when large."""
        manual = await self.store.load_manual(setting, campaign, kind)
        if manual is None:
            logger.info(f"No {kind} manual chunked for {setting}/{campaign}")
            return []

        matches = filter_chunks_by_keywords(manual.chunks, query)
        logger.debug(f"Keyword pass matched {len(matches)} {kind} chunks")

        if len(matches) > self.settings.rerank_trigger:
            candidates = matches[:self.settings.rerank_candidates]
            matches = await self.rerank(candidates, query)

        return matches[:self.settings.result_limit]

    async def rerank(self, chunks: list[PdfChunk], query: str) -> list[PdfChunk]:
        """
        Ask the LLM to order ``chunks`` by relevance.

        Ids the model returns come first, in its order; chunks it left out
        follow in their original order. On any failure the input order is
        kept.
        """
        try:
            reply = await self.text_backend.generate(build_rerank_prompt(chunks, query))
            ranked_ids = parse_ranked_ids(reply)
        except Exception as e:
            logger.warning(f"Failed to rank chunks with LLM, falling back to keyword ranking: {e}")
            return chunks

        by_id = {chunk.id: chunk for chunk in chunks}
        ranked: list[PdfChunk] = []
        seen: set[str] = set()
        for chunk_id in ranked_ids:
            if chunk_id in by_id and chunk_id not in seen:
                ranked.append(by_id[chunk_id])
                seen.add(chunk_id)

        ranked.extend(chunk for chunk in chunks if chunk.id not in seen)
        return ranked
