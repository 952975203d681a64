"""
Embedding backends.

Two implementations of the EmbeddingBackend interface:

- SentenceTransformerBackend: runs a Sentence Transformers model locally
  (no API key required).
- LiteLLMEmbeddingBackend: calls a hosted embedding API through LiteLLM,
  in small sequential batches with a pause between them to stay under
  provider rate limits.

Example:
    >>> async with SentenceTransformerBackend("all-mpnet-base-v2") as backend:
    ...     result = await backend.embed("Fireball deals 8d6 fire damage")
    ...     result.dimension
    768
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Literal

import litellm
from pydantic import BaseModel
from sentence_transformers import SentenceTransformer

from loremaster.config.logging import get_logger
from loremaster.config.settings import EmbeddingSettings

logger = get_logger(__name__)

DEFAULT_REMOTE_DIMENSION = 768


class EmbeddingResult(BaseModel):
    vector: list[float]
    dimension: int


class EmbeddingBackend(ABC):
    """
    Abstract text embedding backend.

    All vectors produced by one backend instance share ``dimension()``.
    """

    async def initialize(self) -> None:
        """Load models or open connections. No-op by default."""

    async def shutdown(self) -> None:
        """Release resources. No-op by default."""

    @abstractmethod
    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        """
        Embed many texts, preserving order.

        Raises:
            ValueError: If texts is empty
            RuntimeError: If the backend fails
        """
        pass

    @abstractmethod
    def dimension(self) -> int:
        pass

    async def embed(self, text: str) -> EmbeddingResult:
        vectors = await self.embed_batch([text])
        return EmbeddingResult(vector=vectors[0], dimension=len(vectors[0]))

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False


class SentenceTransformerBackend(EmbeddingBackend):
    """
    Local Sentence Transformers embeddings.

    The model is loaded in initialize() and released in shutdown().
    Vectors are L2-normalized.
    """

    def __init__(
        self,
        model_name: str,
        device: Literal["cpu", "cuda"] = "cpu",
        batch_size: int = 32,
    ):
        self.model_name = model_name
        self.device = device
        self.batch_size = batch_size
        self._model: SentenceTransformer | None = None

    async def initialize(self) -> None:
        """
        Load the embedding model into memory (downloads weights if not cached).

        Raises:
            RuntimeError: If model loading fails
        """
        logger.info(f"Loading embedding model: {self.model_name} on {self.device}")
        try:
            self._model = SentenceTransformer(self.model_name, device=self.device)
        except Exception as e:
            logger.error(f"Failed to load embedding model: {e}")
            raise RuntimeError(f"Could not load embedding model '{self.model_name}': {e}") from e

        logger.info(
            f"Embedding model loaded (dimension: {self.dimension()}, device: {self.device})"
        )

    def _require_model(self) -> SentenceTransformer:
        if self._model is None:
            raise RuntimeError(
                "Embedding model not initialized. "
                "Use 'async with SentenceTransformerBackend(...)' or call await backend.initialize()"
            )
        return self._model

    def dimension(self) -> int:
        return self._require_model().get_sentence_embedding_dimension()

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        model = self._require_model()
        if not texts:
            raise ValueError("Cannot embed empty list of texts")

        logger.debug(f"Generating embeddings for {len(texts)} texts (batch_size={self.batch_size})")
        try:
            embeddings = model.encode(
                texts,
                batch_size=self.batch_size,
                show_progress_bar=False,
                normalize_embeddings=True,
                convert_to_numpy=True,
            )
        except Exception as e:
            logger.error(f"Failed to generate embeddings: {e}")
            raise RuntimeError(f"Embedding generation failed: {e}") from e

        return embeddings.tolist()

    async def shutdown(self) -> None:
        if self._model is not None:
            logger.debug("Shutting down embedding model")
            self._model = None


class LiteLLMEmbeddingBackend(EmbeddingBackend):
    """
    Hosted embeddings via ``litellm.aembedding``.

    Texts are sent ``batch_size`` at a time, one batch after another, with
    ``batch_delay_seconds`` between batches.
    """

    def __init__(
        self,
        model: str,
        api_key: str = "",
        batch_size: int = 10,
        batch_delay_seconds: float = 0.1,
        dimension: int | None = None,
    ):
        self.model = model
        self.api_key = api_key
        self.batch_size = batch_size
        self.batch_delay_seconds = batch_delay_seconds
        self._dimension = dimension

    @classmethod
    def from_settings(cls, settings: EmbeddingSettings) -> "LiteLLMEmbeddingBackend":
        return cls(
            model=settings.model,
            api_key=settings.api_key,
            batch_size=settings.batch_size,
            batch_delay_seconds=settings.batch_delay_seconds,
            dimension=settings.dimension,
        )

    def dimension(self) -> int:
        return self._dimension or DEFAULT_REMOTE_DIMENSION

    async def _embed_request(self, batch: list[str]) -> list[list[float]]:
        kwargs = {"model": self.model, "input": batch}
        if self.api_key:
            kwargs["api_key"] = self.api_key

        try:
            response = await litellm.aembedding(**kwargs)
        except Exception as e:
            logger.error(f"Embedding API call failed: {e}")
            raise RuntimeError(f"Embedding generation failed: {e}") from e

        return [list(item["embedding"]) for item in response.data]

    async def embed_batch(self, texts: list[str]) -> list[list[float]]:
        if not texts:
            raise ValueError("Cannot embed empty list of texts")

        vectors: list[list[float]] = []
        for start in range(0, len(texts), self.batch_size):
            batch = texts[start:start + self.batch_size]
            vectors.extend(await self._embed_request(batch))

            if start + self.batch_size < len(texts) and self.batch_delay_seconds > 0:
                await asyncio.sleep(self.batch_delay_seconds)

        if vectors and self._dimension is None:
            self._dimension = len(vectors[0])
        return vectors


def create_embedding_backend(settings: EmbeddingSettings) -> EmbeddingBackend:
    """Build the backend named by ``settings.provider`` (not yet initialized)."""
    if settings.provider == "litellm":
        return LiteLLMEmbeddingBackend.from_settings(settings)
    return SentenceTransformerBackend(
        model_name=settings.model,
        device=settings.device,
        batch_size=settings.batch_size,
    )
