"""
Persistence for chunked manuals, their search indexes and embeddings.

Every artifact for one (setting, campaign) pair lives under a single
campaign directory in the blob store:

    settings/<setting>/<campaign>/
        player-manual-chunks.json          full ChunkedManual
        player-manual-chunks/001-Intro.json  one file per chunk, with RAG extras
        player-manual-search-index.json    derived SearchIndex
        player-manual-vectors.json         list of ChunkEmbedding

Missing artifacts load as ``None``. Stored JSON is validated on the way in,
so a corrupt file raises ``pydantic.ValidationError`` instead of handing
half-typed dicts to callers.
"""

import re

from pydantic import TypeAdapter

from loremaster.config.logging import get_logger
from loremaster.rag.base import ChunkedManual, ChunkEmbedding, ManualKind, PdfChunk
from loremaster.rag.search_index import SearchIndex, build_search_index, extract_keywords
from loremaster.storage.base import BlobStore

logger = get_logger(__name__)

_EMBEDDINGS_ADAPTER = TypeAdapter(list[ChunkEmbedding])


class StoredChunk(PdfChunk):
    """A chunk as written to its individual file, with search-friendly extras."""

    word_count: int
    character_count: int
    extracted_at: str
    source_document: str
    searchable_text: str
    keywords: list[str]


def campaign_key(name: str) -> str:
    """Directory-safe form of a setting or campaign name."""
    return re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE)


def sanitize_filename(name: str) -> str:
    """Turn a chunk title into a filename stem (max 100 chars)."""
    name = re.sub(r'[<>:"/\\|?*]', "-", name)
    name = re.sub(r"\s+", "-", name)
    name = re.sub(r"-+", "-", name)
    return name.strip("-")[:100]


def chunk_filename(ordinal: int, title: str) -> str:
    """``NNN-<title>.json`` for the 1-based position of a chunk."""
    return f"{sanitize_filename(f'{ordinal:03d}-{title}')}.json"


class ChunkStore:
    """
    Reads and writes manual artifacts through a BlobStore.

    Example:
        >>> store = ChunkStore(LocalBlobStore("./data"))
        >>> await store.save_manual("Eberron", "Sharn Nights", "gm", manual)
        >>> manual = await store.load_manual("Eberron", "Sharn Nights", "gm")
    """

    def __init__(self, blob_store: BlobStore):
        self.blob_store = blob_store

    # ------------------------------------------------------------------
    # Paths
    # ------------------------------------------------------------------

    @staticmethod
    def campaign_directory(setting: str, campaign: str) -> str:
        return f"settings/{campaign_key(setting)}/{campaign_key(campaign)}"

    def manual_path(self, setting: str, campaign: str, kind: ManualKind) -> str:
        return f"{self.campaign_directory(setting, campaign)}/{kind}-manual-chunks.json"

    def chunk_directory(self, setting: str, campaign: str, kind: ManualKind) -> str:
        return f"{self.campaign_directory(setting, campaign)}/{kind}-manual-chunks"

    def index_path(self, setting: str, campaign: str, kind: ManualKind) -> str:
        return f"{self.campaign_directory(setting, campaign)}/{kind}-manual-search-index.json"

    def vectors_path(self, setting: str, campaign: str, kind: ManualKind) -> str:
        return f"{self.campaign_directory(setting, campaign)}/{kind}-manual-vectors.json"

    # ------------------------------------------------------------------
    # Chunked manuals
    # ------------------------------------------------------------------

    async def save_manual(
        self,
        setting: str,
        campaign: str,
        kind: ManualKind,
        manual: ChunkedManual,
    ) -> SearchIndex:
        """
        Persist a chunked manual, its per-chunk files and its search index.

        Returns:
            The search index that was written
        """
        manual_path = self.manual_path(setting, campaign, kind)
        await self.blob_store.save(manual_path, manual.model_dump_json(by_alias=True, indent=2))
        logger.info(f"Saved complete chunk metadata to: {manual_path}")

        chunk_dir = self.chunk_directory(setting, campaign, kind)
        for ordinal, chunk in enumerate(manual.chunks, start=1):
            stored = self._to_stored_chunk(chunk, manual)
            await self.blob_store.save(
                f"{chunk_dir}/{chunk_filename(ordinal, chunk.title)}",
                stored.model_dump_json(by_alias=True, indent=2),
            )
        logger.info(f"Saved {len(manual.chunks)} individual chunk files to: {chunk_dir}")

        index = build_search_index(manual, kind)
        index_path = self.index_path(setting, campaign, kind)
        await self.blob_store.save(index_path, index.model_dump_json(by_alias=True, indent=2))
        logger.info(f"Saved search index to: {index_path}")
        return index

    @staticmethod
    def _to_stored_chunk(chunk: PdfChunk, manual: ChunkedManual) -> StoredChunk:
        searchable = f"{chunk.title} {' '.join(chunk.path)} {chunk.content}".lower()
        return StoredChunk(
            **chunk.model_dump(),
            word_count=len(chunk.content.split()),
            character_count=len(chunk.content),
            extracted_at=manual.metadata.extracted_at,
            source_document=manual.file_name,
            searchable_text=searchable,
            keywords=extract_keywords(chunk.content),
        )

    async def load_manual(
        self, setting: str, campaign: str, kind: ManualKind
    ) -> ChunkedManual | None:
        raw = await self.blob_store.load(self.manual_path(setting, campaign, kind))
        if raw is None:
            return None
        return ChunkedManual.model_validate_json(raw)

    async def exists(self, setting: str, campaign: str, kind: ManualKind) -> bool:
        """Whether a chunked manual has been stored for this campaign and kind."""
        return await self.blob_store.exists(self.manual_path(setting, campaign, kind))

    async def load_search_index(
        self, setting: str, campaign: str, kind: ManualKind
    ) -> SearchIndex | None:
        raw = await self.blob_store.load(self.index_path(setting, campaign, kind))
        if raw is None:
            return None
        return SearchIndex.model_validate_json(raw)

    async def load_chunk(
        self, setting: str, campaign: str, kind: ManualKind, chunk_id: str
    ) -> StoredChunk | None:
        """
        Load one chunk's individual file by chunk id.

        The file ordinal is the chunk's position in the stored index, which
        matches the order the files were written in.
        """
        index = await self.load_search_index(setting, campaign, kind)
        if index is None:
            return None

        for ordinal, entry in enumerate(index.index.by_page_range, start=1):
            if entry.id == chunk_id:
                path = f"{self.chunk_directory(setting, campaign, kind)}/{chunk_filename(ordinal, entry.title)}"
                raw = await self.blob_store.load(path)
                if raw is None:
                    logger.warning(f"Chunk {chunk_id} is indexed but {path} is missing")
                    return None
                return StoredChunk.model_validate_json(raw)

        return None

    async def list_campaigns(self, setting: str) -> list[str]:
        """Campaign directory names stored under a setting."""
        return await self.blob_store.list_directories(f"settings/{campaign_key(setting)}")

    # ------------------------------------------------------------------
    # Embeddings
    # ------------------------------------------------------------------

    async def save_embeddings(
        self,
        setting: str,
        campaign: str,
        kind: ManualKind,
        embeddings: list[ChunkEmbedding],
    ) -> None:
        payload = _EMBEDDINGS_ADAPTER.dump_json(embeddings, by_alias=True)
        await self.blob_store.save(self.vectors_path(setting, campaign, kind), payload.decode("utf-8"))

    async def load_embeddings(
        self, setting: str, campaign: str, kind: ManualKind
    ) -> list[ChunkEmbedding] | None:
        raw = await self.blob_store.load(self.vectors_path(setting, campaign, kind))
        if raw is None:
            return None
        return _EMBEDDINGS_ADAPTER.validate_json(raw)
