"""
Per-chunk embedding cache.

Stores chunk vectors in the result cache so re-indexing unchanged text
skips the embedding provider. Keys are scoped by resource id and the hash
of the chunk text, so changed chunk boundaries never reuse a stale vector
and all vectors of one resource can be purged by prefix.
"""

import hashlib
from typing import List, Optional, Tuple
from library_rag.core.cache.base import CacheService
from library_rag.utils.logging import get_logger

logger = get_logger(__name__)

EMBED_KEY_PREFIX = "rag:embed:"


def resource_prefix(resource_id: str) -> str:
    """Cache key prefix covering every cached vector of one resource."""
    return f"{EMBED_KEY_PREFIX}{resource_id}:"


def embedding_cache_key(resource_id: str, text: str) -> str:
    """Generate cache key for a chunk of a resource."""
    return f"{resource_prefix(resource_id)}{hashlib.sha256(text.encode()).hexdigest()[:16]}"


class ChunkEmbeddingCache:
    """Cache for batch embedding operations, scoped per resource."""

    def __init__(self, cache: CacheService, ttl_seconds: int = 86400):
        """
        Initialize chunk embedding cache.

        Args:
            cache: Result cache backend
            ttl_seconds: Lifetime of cached vectors (24h by default)
        """
        self.cache = cache
        self.ttl_seconds = ttl_seconds

    async def get_batch(
        self,
        resource_id: str,
        texts: List[str]
    ) -> Tuple[List[Optional[List[float]]], List[int]]:
        """
        Get batch of embeddings from cache.

        Args:
            resource_id: Resource the chunks belong to
            texts: Chunk texts

        Returns:
            Cached embeddings (None where missing) and the indices still to embed
        """
        results: List[Optional[List[float]]] = []
        uncached_indices: List[int] = []

        for i, text in enumerate(texts):
            cached_embedding = None
            try:
                cached_embedding = await self.cache.get(embedding_cache_key(resource_id, text))
            except Exception as e:
                logger.warning(f"⚠️ Embedding cache read error: {str(e)}")

            results.append(cached_embedding)
            if cached_embedding is None:
                uncached_indices.append(i)

        logger.info(f"📊 Batch cache: {len(texts) - len(uncached_indices)} cached, {len(uncached_indices)} uncached")
        return results, uncached_indices

    async def set_batch(
        self,
        resource_id: str,
        texts: List[str],
        embeddings: List[List[float]]
    ) -> None:
        """
        Cache batch of embeddings.

        Args:
            resource_id: Resource the chunks belong to
            texts: Chunk texts
            embeddings: One embedding per text
        """
        try:
            for text, embedding in zip(texts, embeddings):
                await self.cache.set(embedding_cache_key(resource_id, text), embedding, self.ttl_seconds)
        except Exception as e:
            logger.warning(f"⚠️ Embedding cache write error: {str(e)}")
            return

        logger.debug(f"💾 Cached {len(embeddings)} embeddings for resource {resource_id}")

    async def invalidate(self, resource_id: str) -> int:
        """Purge every cached vector of a resource."""
        try:
            removed = await self.cache.delete_by_prefix(resource_prefix(resource_id))
        except Exception as e:
            logger.warning(f"⚠️ Embedding cache purge error: {str(e)}")
            return 0

        logger.info(f"🗑️ Purged {removed} cached embeddings for resource {resource_id}")
        return removed
