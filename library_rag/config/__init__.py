"""
Configuration management for the library RAG pipeline.

Handles environment variables and settings using pydantic-settings
for validation and type safety.
"""

from .settings import (
    RAGConfig,
    VectorStoreConfig,
    EmbeddingConfig,
    ChunkingConfig,
    RetrievalConfig,
    CacheConfig,
    ContextCacheConfig,
    LoggingConfig,
    load_config,
    validate_api_keys
)

__all__ = [
    "RAGConfig",
    "VectorStoreConfig",
    "EmbeddingConfig",
    "ChunkingConfig",
    "RetrievalConfig",
    "CacheConfig",
    "ContextCacheConfig",
    "LoggingConfig",
    "load_config",
    "validate_api_keys"
]
