"""
In-memory vector index over chunk embeddings for one manual.

Search is a linear cosine-similarity scan. Manuals run to hundreds or low
thousands of chunks, so no approximate-nearest-neighbour structure is used.
The index is persisted to ``<kind>-manual-vectors.json`` through the
ChunkStore after every mutation.

Example:
    >>> index = VectorIndex(chunk_store, "Eberron", "Sharn Nights", "gm")
    >>> await index.load()
    >>> await index.upsert(embeddings)
    >>> hits = index.search(query_vector, top_k=5, threshold=0.3)
"""

from collections.abc import Iterable, Sequence

import numpy as np

from loremaster.config.logging import get_logger
from loremaster.rag.base import ChunkEmbedding, ManualKind, VectorSearchResult
from loremaster.rag.store import ChunkStore

logger = get_logger(__name__)


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    """
    Cosine similarity of two vectors.

    Returns 0.0 when either vector has zero magnitude.

    Raises:
        ValueError: If the vectors differ in length
    """
    if len(a) != len(b):
        raise ValueError(f"Vectors must have the same length ({len(a)} != {len(b)})")

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(va, vb) / (norm_a * norm_b))


class VectorIndex:
    """
    chunkId -> ChunkEmbedding map with persistence.

    The index is the only writer of the stored embedding collection for its
    (setting, campaign, kind).
    """

    def __init__(self, store: ChunkStore, setting: str, campaign: str, kind: ManualKind):
        self.store = store
        self.setting = setting
        self.campaign = campaign
        self.kind = kind
        self._embeddings: dict[str, ChunkEmbedding] = {}

    @property
    def dimension(self) -> int | None:
        """Shared vector length, or None while empty."""
        first = next(iter(self._embeddings.values()), None)
        return len(first.embedding) if first else None

    def count(self) -> int:
        return len(self._embeddings)

    def get(self, chunk_id: str) -> ChunkEmbedding | None:
        return self._embeddings.get(chunk_id)

    async def load(self) -> None:
        """Replace in-memory state with the persisted collection, if any."""
        stored = await self.store.load_embeddings(self.setting, self.campaign, self.kind)
        self._embeddings = {e.chunk_id: e for e in stored or []}
        logger.debug(f"Loaded {len(self._embeddings)} {self.kind} embeddings")

    async def save(self) -> None:
        await self.store.save_embeddings(
            self.setting, self.campaign, self.kind, list(self._embeddings.values())
        )

    async def upsert(self, embeddings: Iterable[ChunkEmbedding]) -> None:
        """
        Insert or replace embeddings by chunk id, then persist.

        The batch is applied all-or-nothing: a rejected batch leaves the
        index untouched.

        Raises:
            ValueError: If an embedding's length differs from the index's
        """
        batch = list(embeddings)
        dimension = self.dimension
        for embedding in batch:
            if dimension is None:
                dimension = len(embedding.embedding)
            elif len(embedding.embedding) != dimension:
                raise ValueError(
                    f"Embedding for {embedding.chunk_id} has dimension "
                    f"{len(embedding.embedding)}, expected {dimension}"
                )

        for embedding in batch:
            self._embeddings[embedding.chunk_id] = embedding
        await self.save()

    def search(
        self,
        query: Sequence[float],
        top_k: int = 10,
        threshold: float = 0.3,
    ) -> list[VectorSearchResult]:
        """
        Rank stored chunks by cosine similarity to ``query``.

        Returns at most ``top_k`` results with similarity >= ``threshold``,
        highest first.

        Raises:
            ValueError: On a dimension mismatch with any stored vector
        """
        results = []
        for embedding in self._embeddings.values():
            similarity = cosine_similarity(query, embedding.embedding)
            if similarity >= threshold:
                results.append(VectorSearchResult(
                    chunk=embedding.chunk,
                    similarity=similarity,
                    embedding=embedding.embedding,
                ))

        results.sort(key=lambda r: r.similarity, reverse=True)
        return results[:top_k]

    async def remove(self, chunk_ids: Iterable[str]) -> None:
        for chunk_id in chunk_ids:
            self._embeddings.pop(chunk_id, None)
        await self.save()

    async def clear(self) -> None:
        self._embeddings.clear()
        await self.save()
