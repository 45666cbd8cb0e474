"""
Environment settings and configuration management.

Provides configuration sections built with pydantic-settings. Nothing is
read at import time: callers build one ``RAGConfig`` with ``load_config``
at process start and pass it (or a section of it) into constructors.
"""

from typing import Literal, Optional

from dotenv import load_dotenv
from pydantic import AliasChoices, Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from library_rag.utils.exceptions import APIKeyError


def _env(*names: str) -> AliasChoices:
    """Accept a field either by its Python name or by its environment names."""
    return AliasChoices(*names)


class _Section(BaseSettings):
    """Shared settings behaviour for all configuration sections."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
        protected_namespaces=(),
    )


class VectorStoreConfig(_Section):
    """Qdrant vector store configuration."""

    qdrant_url: Optional[str] = Field(default=None, validation_alias=_env("qdrant_url", "QDRANT_URL"))
    qdrant_api_key: Optional[str] = Field(default=None, validation_alias=_env("qdrant_api_key", "QDRANT_API_KEY"))
    location: Optional[str] = Field(default=":memory:", validation_alias=_env("location", "QDRANT_LOCATION"))
    collection_name: str = Field(default="library_chunks", validation_alias=_env("collection_name", "QDRANT_COLLECTION"))
    vector_size: Optional[int] = Field(default=None, validation_alias=_env("vector_size", "VECTOR_SIZE"))
    batch_size: int = Field(default=50, ge=1, validation_alias=_env("batch_size", "QDRANT_BATCH_SIZE"))


class EmbeddingConfig(_Section):
    """Embedding model configuration."""

    provider: Literal["openai", "google", "fake"] = Field(
        default="openai", validation_alias=_env("provider", "EMBEDDING_PROVIDER")
    )
    model_name: str = Field(default="text-embedding-3-small", validation_alias=_env("model_name", "EMBEDDING_MODEL"))
    dimensions: int = Field(default=768, ge=1, validation_alias=_env("dimensions", "EMBEDDING_DIMENSIONS"))
    batch_size: int = Field(default=50, ge=1, validation_alias=_env("batch_size", "EMBEDDING_BATCH_SIZE"))
    cache_enabled: bool = Field(default=True, validation_alias=_env("cache_enabled", "EMBEDDING_CACHE"))
    cache_ttl: int = Field(default=86400, validation_alias=_env("cache_ttl", "EMBEDDING_CACHE_TTL"))
    max_input_chars: int = Field(default=8000, ge=1, validation_alias=_env("max_input_chars", "EMBEDDING_MAX_INPUT_CHARS"))


class ChunkingConfig(_Section):
    """Text chunking configuration."""

    chunk_size: int = Field(default=800, ge=1, validation_alias=_env("chunk_size", "CHUNK_SIZE"))
    chunk_overlap: int = Field(default=100, ge=0, validation_alias=_env("chunk_overlap", "CHUNK_OVERLAP"))
    min_chunk_length: int = Field(default=50, ge=0, validation_alias=_env("min_chunk_length", "MIN_CHUNK_LENGTH"))
    chunks_per_page: int = Field(default=3, ge=1, validation_alias=_env("chunks_per_page", "CHUNKS_PER_PAGE"))

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class RetrievalConfig(_Section):
    """Retrieval configuration."""

    default_k: int = Field(default=10, ge=1, validation_alias=_env("default_k", "RETRIEVAL_K"))
    score_threshold: Optional[float] = Field(default=0.5, validation_alias=_env("score_threshold", "SCORE_THRESHOLD"))
    search_cache_ttl: int = Field(default=300, validation_alias=_env("search_cache_ttl", "SEARCH_CACHE_TTL"))


class CacheConfig(_Section):
    """Result cache backend configuration."""

    backend: Literal["memory", "file"] = Field(default="memory", validation_alias=_env("backend", "CACHE_BACKEND"))
    cache_dir: str = Field(default="./cache/rag", validation_alias=_env("cache_dir", "CACHE_DIR"))
    default_ttl: int = Field(default=3600, validation_alias=_env("default_ttl", "CACHE_DEFAULT_TTL"))


class ContextCacheConfig(_Section):
    """Provider-side context cache configuration."""

    model_name: str = Field(default="gemini-2.5-flash", validation_alias=_env("model_name", "CONTEXT_CACHE_MODEL"))
    ttl_seconds: int = Field(default=3600, ge=1, validation_alias=_env("ttl_seconds", "CONTEXT_CACHE_TTL"))
    file_ttl_hours: float = Field(default=44.0, gt=0, validation_alias=_env("file_ttl_hours", "FILE_TTL_HOURS"))
    max_retries: int = Field(default=1, ge=0, le=1, validation_alias=_env("max_retries", "CONTEXT_CACHE_MAX_RETRIES"))
    proactive_repair: bool = Field(default=True, validation_alias=_env("proactive_repair", "PROACTIVE_REPAIR"))
    mime_type: str = Field(default="application/pdf", validation_alias=_env("mime_type", "CONTEXT_CACHE_MIME_TYPE"))


class LoggingConfig(_Section):
    """Logging configuration."""

    level: str = Field(default="INFO", validation_alias=_env("level", "LOG_LEVEL"))
    format: str = Field(
        default="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        validation_alias=_env("format", "LOG_FORMAT"),
    )
    file_path: Optional[str] = Field(default=None, validation_alias=_env("file_path", "LOG_FILE"))


class RAGConfig(_Section):
    """Main library RAG configuration."""

    vector_store: VectorStoreConfig = Field(default_factory=VectorStoreConfig)
    embedding: EmbeddingConfig = Field(default_factory=EmbeddingConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    retrieval: RetrievalConfig = Field(default_factory=RetrievalConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    context_cache: ContextCacheConfig = Field(default_factory=ContextCacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    # API Keys
    openai_api_key: Optional[str] = Field(default=None, validation_alias=_env("openai_api_key", "OPENAI_API_KEY"))
    google_api_key: Optional[str] = Field(default=None, validation_alias=_env("google_api_key", "GOOGLE_API_KEY"))


def load_config(env_file: Optional[str] = ".env", **overrides) -> RAGConfig:
    """
    Build the configuration for one process.

    Args:
        env_file: Optional .env file loaded into the environment first
        **overrides: Field values that take precedence over the environment

    Returns:
        RAGConfig instance
    """
    if env_file:
        load_dotenv(env_file)
    return RAGConfig(**overrides)


def validate_api_keys(config: RAGConfig) -> None:
    """Validate that the API keys needed by the configured providers are present."""
    required_keys = []
    if config.embedding.provider == "openai":
        required_keys.append("openai_api_key")
    if config.embedding.provider == "google":
        required_keys.append("google_api_key")

    missing_keys = [key for key in required_keys if not getattr(config, key)]

    if missing_keys:
        raise APIKeyError(f"Missing required API keys: {', '.join(missing_keys)}")
