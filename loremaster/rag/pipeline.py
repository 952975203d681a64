"""
Manual ingestion pipeline.

Turns an uploaded rulebook into a stored ChunkedManual:
1. Fetch per-page text from the document
2. Detect headings and build page-bounded chunks
3. Persist the manual, per-chunk files and the search index

The full chunk list is computed before anything is written, so a failed
ingestion never leaves a partial manual behind. Embedding is a separate
step (see EmbeddingPipeline).

Example:
    >>> pipeline = IngestionPipeline(PDFLoader(), DocumentChunker(), ChunkStore(blob_store))
    >>> manual = await pipeline.ingest_manual(
    ...     Path("uploads/players-guide.pdf"), "Eberron", "Sharn Nights", "player"
    ... )
    >>> print(f"Ingested {len(manual.chunks)} chunks")
"""

from collections.abc import Callable
from pathlib import Path

from loremaster.config.logging import get_logger
from loremaster.rag.base import ChunkedManual, DocumentFetcher, ManualKind
from loremaster.rag.chunking import DocumentChunker
from loremaster.rag.store import ChunkStore

logger = get_logger(__name__)


class IngestionError(Exception):
    """Raised when a document cannot be fetched, parsed or chunked."""


class IngestionPipeline:
    """
    Orchestrates fetch → chunk → persist for one manual.

    Args:
        fetcher: Source of per-page document text
        chunker: Heading-aware chunker
        store: Destination for the chunked manual and its index
    """

    def __init__(self, fetcher: DocumentFetcher, chunker: DocumentChunker, store: ChunkStore):
        self.fetcher = fetcher
        self.chunker = chunker
        self.store = store

    async def ingest_manual(
        self,
        path: str | Path,
        setting: str,
        campaign: str,
        kind: ManualKind,
        progress_callback: Callable[[str], None] | None = None,
    ) -> ChunkedManual:
        """
        Ingest a document as the ``kind`` manual of a campaign.

        Re-ingesting replaces the stored manual and index.

        Returns:
            The chunked manual that was stored

        Raises:
            IngestionError: If fetching or chunking fails (nothing is stored)
        """
        name = Path(path).name
        logger.info(f"Starting ingestion of {kind} manual: {path}")
        if progress_callback:
            progress_callback(f"Loading: {name}")

        try:
            document = await self.fetcher.fetch(str(path))
            if progress_callback:
                progress_callback(f"Loaded: {document.total_pages} pages")

            manual = self.chunker.build_manual(document)
        except Exception as e:
            logger.error(f"Failed to ingest {path}: {e}")
            raise IngestionError(f"Ingestion failed for '{path}': {e}") from e

        logger.info(f"Created {len(manual.chunks)} chunks from {manual.total_pages} pages")
        if progress_callback:
            progress_callback(f"Chunked: {len(manual.chunks)} sections")

        await self.store.save_manual(setting, campaign, kind, manual)

        logger.info(f"Successfully ingested: {name} ({len(manual.chunks)} chunks)")
        if progress_callback:
            progress_callback(f"Completed: {name}")
        return manual
