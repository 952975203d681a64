"""
Embedding job and semantic search for one manual.

An EmbeddingPipeline pairs an EmbeddingBackend with the VectorIndex of a
single (setting, campaign, kind). Embedding a manual is a separate, possibly
slow step after chunking; until it has run, ``has_embeddings()`` is False
and searches fall back to keyword matching.
"""

from collections.abc import Callable

from pydantic import BaseModel

from loremaster.config.logging import get_logger
from loremaster.rag.base import ChunkEmbedding, ManualKind, PdfChunk, VectorSearchResult
from loremaster.rag.embeddings import EmbeddingBackend
from loremaster.rag.store import ChunkStore
from loremaster.rag.vector_index import VectorIndex

logger = get_logger(__name__)


class EmbeddingJobStatus(BaseModel):
    total: int
    completed: int = 0
    in_progress: bool = True
    error: str | None = None


class EmbeddingStats(BaseModel):
    count: int
    dimension: int


ProgressCallback = Callable[[EmbeddingJobStatus], None]


def embedding_text(chunk: PdfChunk) -> str:
    return f"{chunk.title}\n\n{chunk.content}"


class EmbeddingPipeline:
    """
    Creates, stores and queries embeddings for one manual.

    Example:
        >>> pipeline = EmbeddingPipeline(backend, VectorIndex(store, "Eberron", "Sharn", "player"))
        >>> await pipeline.index.load()
        >>> await pipeline.create_embeddings_for_manual(on_progress=print)
        >>> hits = await pipeline.search_relevant_chunks("grappling rules")
    """

    def __init__(self, backend: EmbeddingBackend, index: VectorIndex):
        self.backend = backend
        self.index = index

    @property
    def store(self) -> ChunkStore:
        return self.index.store

    @property
    def kind(self) -> ManualKind:
        return self.index.kind

    def serves(self, setting: str, campaign: str) -> bool:
        """Whether this pipeline's index belongs to the given campaign."""
        return ChunkStore.campaign_directory(setting, campaign) == ChunkStore.campaign_directory(
            self.index.setting, self.index.campaign
        )

    async def create_embeddings_for_manual(
        self, on_progress: ProgressCallback | None = None
    ) -> EmbeddingJobStatus:
        """
        Embed every chunk of the stored manual and upsert into the index.

        ``on_progress`` receives a status snapshot when the job starts and
        when it finishes or fails.

        Raises:
            FileNotFoundError: If no chunked manual is stored for this index
        """
        index = self.index
        manual = await self.store.load_manual(index.setting, index.campaign, index.kind)
        if manual is None:
            raise FileNotFoundError(
                f"Manual chunks not found: {self.store.manual_path(index.setting, index.campaign, index.kind)}"
            )

        chunks = manual.chunks
        logger.info(f"Creating embeddings for {len(chunks)} {index.kind} manual chunks")

        status = EmbeddingJobStatus(total=len(chunks))
        if on_progress:
            on_progress(status.model_copy())

        try:
            vectors = await self.backend.embed_batch([embedding_text(c) for c in chunks]) if chunks else []
            await index.upsert([
                ChunkEmbedding(chunk_id=chunk.id, embedding=vector, chunk=chunk)
                for chunk, vector in zip(chunks, vectors, strict=True)
            ])
        except Exception as e:
            status.in_progress = False
            status.error = str(e)
            if on_progress:
                on_progress(status.model_copy())
            logger.error(f"Error creating embeddings: {e}")
            raise

        status.completed = len(chunks)
        status.in_progress = False
        if on_progress:
            on_progress(status.model_copy())

        logger.info(f"Successfully created embeddings for {len(chunks)} chunks")
        return status

    async def search_relevant_chunks(
        self,
        query: str,
        top_k: int = 10,
        threshold: float = 0.3,
    ) -> list[VectorSearchResult]:
        logger.info(f'Searching {self.kind} embeddings for: "{query}"')
        query_embedding = await self.backend.embed(query)
        results = self.index.search(query_embedding.vector, top_k=top_k, threshold=threshold)
        logger.info(f"Found {len(results)} relevant chunks")
        return results

    def has_embeddings(self) -> bool:
        return self.index.count() > 0

    async def clear_embeddings(self) -> None:
        await self.index.clear()
        logger.info(f"Cleared all {self.kind} embeddings")

    def stats(self) -> EmbeddingStats:
        return EmbeddingStats(count=self.index.count(), dimension=self.backend.dimension())
