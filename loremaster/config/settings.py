"""
Application settings and configuration management.

Uses Pydantic Settings for validation and environment variable support.
"""

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class LLMSettings(BaseSettings):
    """Text-generation backend configuration."""

    model: str = Field(
        default="gemini/gemini-2.0-flash",
        description="LiteLLM model string, e.g. 'gemini/gemini-2.0-flash', "
                    "'openai/gpt-4o', 'ollama/llama3'. The provider prefix tells LiteLLM "
                    "which API to route the request to.",
    )
    max_tokens: int = Field(default=2048, description="Maximum tokens in response")
    temperature: float = Field(default=0.3, description="Sampling temperature")
    api_key: str = Field(default="", description="API key for the model's provider")
    max_retries: int = Field(
        default=3, ge=1, description="Attempts per generation call before giving up"
    )
    retry_backoff_seconds: float = Field(
        default=1.0, ge=0.0, description="Initial backoff between retried generation calls"
    )

    model_config = SettingsConfigDict(env_prefix="LLM_")


class EmbeddingSettings(BaseSettings):
    """Embedding backend configuration."""

    provider: Literal["local", "litellm"] = Field(
        default="local",
        description="'local' runs Sentence Transformers in-process; "
                    "'litellm' calls a remote embedding API",
    )
    model: str = Field(
        default="sentence-transformers/all-mpnet-base-v2",
        description="Sentence Transformers model name, or LiteLLM embedding model string "
                    "(e.g. 'gemini/text-embedding-004') when provider is 'litellm'",
    )
    api_key: str = Field(default="", description="API key for remote embedding providers")
    device: Literal["cpu", "cuda"] = Field(
        default="cpu", description="Device for local embedding generation"
    )
    batch_size: int = Field(default=10, ge=1, description="Texts embedded per batch")
    batch_delay_seconds: float = Field(
        default=0.1, ge=0.0, description="Pause between remote embedding batches (rate limits)"
    )
    dimension: int | None = Field(
        default=None,
        description="Vector dimensionality for remote providers. None means 768.",
    )

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")


class RAGSettings(BaseSettings):
    """Chunking, retrieval and tool-loop tuning."""

    max_chunk_tokens: int = Field(
        default=2500, gt=0, description="Chunks above this estimate are split per page"
    )
    heading_similarity: float = Field(
        default=0.8, description="Similarity above which nearby headings are duplicates"
    )
    heading_page_distance: int = Field(
        default=2, ge=1, description="Pages within which duplicate headings are suppressed"
    )
    vector_top_k: int = Field(default=10, gt=0, description="Vector search result count")
    vector_threshold: float = Field(
        default=0.3, description="Minimum cosine similarity for vector search results"
    )
    rerank_trigger: int = Field(
        default=20, ge=0, description="Keyword matches above this count are LLM-reranked"
    )
    rerank_candidates: int = Field(
        default=50, gt=0, description="Number of keyword matches sent to the reranker"
    )
    result_limit: int = Field(default=10, gt=0, description="Chunks returned by keyword search")
    max_iterations: int = Field(
        default=5, gt=0, description="Tool-call rounds allowed per RAG generation"
    )

    model_config = SettingsConfigDict(env_prefix="RAG_")


class StorageSettings(BaseSettings):
    """Blob store configuration."""

    root: Path = Field(
        default=Path("data"),
        description="Root directory for the local blob store",
    )

    model_config = SettingsConfigDict(env_prefix="STORAGE_")


class Settings(BaseSettings):
    """Main application settings."""

    # Environment
    environment: Literal["development", "production"] = Field(
        default="development", description="Deployment environment"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Logging level"
    )
    log_file: Path | None = Field(default=None, description="Log file path")

    # Sub-configurations
    llm: LLMSettings = Field(default_factory=LLMSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    rag: RAGSettings = Field(default_factory=RAGSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def load_settings(env_file: str | Path | None = None) -> Settings:
    """
    Load settings from file and environment.

    Args:
        env_file: Path to .env file (optional)

    Returns:
        Loaded settings instance
    """
    global _settings
    if env_file:
        _settings = Settings(_env_file=env_file)
    else:
        _settings = Settings()
    return _settings
