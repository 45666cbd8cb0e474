"""
Embedding module initialization.

Exports the embedding gateway, its factory and the per-chunk cache.
"""

from .providers import (
    EmbeddingGateway,
    LangChainEmbeddingGateway,
    create_embedding_gateway
)

from .cache import (
    ChunkEmbeddingCache,
    embedding_cache_key,
    resource_prefix
)

__all__ = [
    # Providers
    "EmbeddingGateway",
    "LangChainEmbeddingGateway",
    "create_embedding_gateway",

    # Cache
    "ChunkEmbeddingCache",
    "embedding_cache_key",
    "resource_prefix"
]
