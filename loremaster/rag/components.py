"""
Component factory.

Centralises the construction of storage, retrieval and generation
components from settings, so the CLI, tests and any host application wire
them the same way. Backends are built once here and passed down; nothing
below this layer constructs its own clients.
"""

from __future__ import annotations

from loremaster.config.logging import get_logger
from loremaster.config.settings import Settings
from loremaster.llm.backend import LiteLLMBackend, TextGenerationBackend
from loremaster.llm.orchestrator import RAGOrchestrator
from loremaster.rag.base import MANUAL_KINDS, ManualKind
from loremaster.rag.chunking import DocumentChunker
from loremaster.rag.embedding_pipeline import EmbeddingPipeline, ProgressCallback
from loremaster.rag.embeddings import EmbeddingBackend, create_embedding_backend
from loremaster.rag.loaders.pdf_loader import PDFLoader
from loremaster.rag.pipeline import IngestionPipeline
from loremaster.rag.searcher import ManualSearcher
from loremaster.rag.store import ChunkStore
from loremaster.rag.vector_index import VectorIndex
from loremaster.storage.local import LocalBlobStore

logger = get_logger(__name__)


class RAGComponents:
    """
    Factory for building components from settings.

    Example::

        factory = RAGComponents(settings)
        store = factory.create_chunk_store()
        async with factory.create_embedding_backend() as embedder:
            searcher = await factory.create_searcher(
                store, factory.create_text_backend(), "Eberron", "Sharn Nights", embedder
            )
            orchestrator = factory.create_orchestrator(factory.create_text_backend(), searcher)
            answer = await orchestrator.generate_with_rag(prompt, "Eberron", "Sharn Nights")
    """

    def __init__(self, settings: Settings):
        self.settings = settings

    def create_chunk_store(self) -> ChunkStore:
        return ChunkStore(LocalBlobStore(self.settings.storage.root))

    def create_chunker(self) -> DocumentChunker:
        rag = self.settings.rag
        return DocumentChunker(
            max_tokens=rag.max_chunk_tokens,
            similarity_threshold=rag.heading_similarity,
            min_page_distance=rag.heading_page_distance,
        )

    def create_ingestion_pipeline(self, store: ChunkStore) -> IngestionPipeline:
        return IngestionPipeline(fetcher=PDFLoader(), chunker=self.create_chunker(), store=store)

    def create_embedding_backend(self) -> EmbeddingBackend:
        """Create the configured embedding backend (not yet initialized)."""
        return create_embedding_backend(self.settings.embedding)

    def create_text_backend(self) -> TextGenerationBackend:
        return LiteLLMBackend(self.settings.llm)

    async def create_embedding_pipeline(
        self,
        backend: EmbeddingBackend,
        store: ChunkStore,
        setting: str,
        campaign: str,
        kind: ManualKind,
    ) -> EmbeddingPipeline:
        """Create a pipeline whose vector index is loaded from the store."""
        index = VectorIndex(store, setting, campaign, kind)
        await index.load()
        return EmbeddingPipeline(backend, index)

    async def create_searcher(
        self,
        store: ChunkStore,
        text_backend: TextGenerationBackend,
        setting: str,
        campaign: str,
        embedding_backend: EmbeddingBackend | None = None,
    ) -> ManualSearcher:
        """
        Create a searcher for one campaign.

        Without an embedding backend the searcher only uses keyword search.
        """
        pipelines = {}
        if embedding_backend is not None:
            for kind in MANUAL_KINDS:
                pipelines[kind] = await self.create_embedding_pipeline(
                    embedding_backend, store, setting, campaign, kind
                )
        return ManualSearcher(store, text_backend, pipelines, self.settings.rag)

    def create_orchestrator(
        self, text_backend: TextGenerationBackend, searcher: ManualSearcher
    ) -> RAGOrchestrator:
        return RAGOrchestrator(text_backend, searcher, self.settings.rag)

    async def ensure_embeddings(
        self,
        backend: EmbeddingBackend,
        store: ChunkStore,
        setting: str,
        campaign: str,
        on_progress: ProgressCallback | None = None,
    ) -> list[ManualKind]:
        """
        Embed every chunked manual of a campaign that has no embeddings yet.

        Returns:
            The manual kinds that were embedded by this call
        """
        embedded: list[ManualKind] = []
        for kind in MANUAL_KINDS:
            if not await store.exists(setting, campaign, kind):
                logger.debug(f"No {kind} manual for {setting}/{campaign}, skipping embeddings")
                continue

            pipeline = await self.create_embedding_pipeline(backend, store, setting, campaign, kind)
            if pipeline.has_embeddings():
                logger.info(f"{kind} manual already has {pipeline.index.count()} embeddings")
                continue

            await pipeline.create_embeddings_for_manual(on_progress)
            embedded.append(kind)

        return embedded
