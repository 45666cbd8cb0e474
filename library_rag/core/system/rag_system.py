"""
RAG service that orchestrates indexing and retrieval over a user's library.

Indexing runs chunk -> embed -> store for one resource at a time; retrieval
runs embed query -> vector search, fronted by a short-lived result cache.
"""

import asyncio
import hashlib
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

from langchain_core.embeddings import Embeddings
from pydantic import ValidationError as PydanticValidationError
from qdrant_client import AsyncQdrantClient

from library_rag.config.settings import RAGConfig
from library_rag.core.cache import CacheService, create_cache_service
from library_rag.core.data import TextChunker, estimate_page, extract_section
from library_rag.core.embeddings import ChunkEmbeddingCache, EmbeddingGateway, create_embedding_gateway
from library_rag.core.models import (
    DEFAULT_AUTHOR,
    Chunk,
    ChunkingOptions,
    ChunkMetadata,
    LibraryResource,
    ProgressCallback,
    SearchFilter,
    SearchResult,
    chunk_id_for,
)
from library_rag.core.vectorstore import VectorStore, create_vector_store
from library_rag.utils.logging import get_logger, setup_logging
from library_rag.utils.exceptions import EmbeddingError, RAGException, RetrievalError, ValidationError

logger = get_logger(__name__)

SEARCH_KEY_PREFIX = "rag:search:"


def search_cache_key(query: str, owner_id: str, resource_ids: Optional[Sequence[str]], k: int) -> str:
    """Cache key for a search; the resource set is order-insensitive."""
    resource_key = ",".join(sorted(resource_ids or [])) or "all"
    digest = hashlib.sha256(f"{query}:{owner_id}:{resource_key}:{k}".encode()).hexdigest()
    return f"{SEARCH_KEY_PREFIX}{digest}"


class RAGService:
    """Indexing and retrieval over a user's document library."""

    def __init__(
        self,
        embedding_gateway: EmbeddingGateway,
        vector_store: VectorStore,
        cache: CacheService,
        config: Optional[RAGConfig] = None
    ):
        """
        Initialize RAG service.

        Args:
            embedding_gateway: Turns text into vectors
            vector_store: Persists and searches chunk vectors
            cache: Result cache for search results and chunk embeddings
            config: RAG configuration
        """
        self.config = config or RAGConfig()
        self.embedding_gateway = embedding_gateway
        self.vector_store = vector_store
        self.cache = cache
        self.embedding_cache = ChunkEmbeddingCache(cache, ttl_seconds=self.config.embedding.cache_ttl)

        self._index_locks: Dict[str, asyncio.Lock] = {}
        self._index_lock_users: Dict[str, int] = {}

        logger.info("🚀 RAG service initialized")

    def _acquire_index_lock(self, resource_id: str) -> asyncio.Lock:
        """Get or create the lock serializing indexing of one resource."""
        if resource_id not in self._index_locks:
            self._index_locks[resource_id] = asyncio.Lock()
        self._index_lock_users[resource_id] = self._index_lock_users.get(resource_id, 0) + 1
        return self._index_locks[resource_id]

    def _release_index_lock(self, resource_id: str) -> None:
        """Forget a resource's lock once no indexing call holds or awaits it."""
        users = self._index_lock_users[resource_id] - 1
        if users:
            self._index_lock_users[resource_id] = users
        else:
            del self._index_lock_users[resource_id]
            del self._index_locks[resource_id]

    def _resolve_options(self, options: Optional[ChunkingOptions]) -> ChunkingOptions:
        """Fill chunk sizes the caller left unset from the chunking configuration."""
        options = options or ChunkingOptions()
        try:
            return ChunkingOptions(
                chunk_size=options.chunk_size or self.config.chunking.chunk_size,
                chunk_overlap=(
                    self.config.chunking.chunk_overlap if options.chunk_overlap is None else options.chunk_overlap
                ),
                force=options.force
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid chunking options: {str(e)}") from e

    async def index_resource(
        self,
        resource: LibraryResource,
        options: Optional[ChunkingOptions] = None,
        on_progress: Optional[ProgressCallback] = None
    ) -> int:
        """
        Chunk, embed and store one library resource.

        Args:
            resource: Resource with its extracted text
            options: Chunking options; ``force`` re-indexes an indexed resource;
                unset sizes come from the chunking configuration
            on_progress: Called with ``(percent, stage)`` at fixed milestones

        Returns:
            Number of chunks stored; 0 when already indexed or there is nothing to index

        Raises:
            EmbeddingError: If an embedding batch fails; nothing is stored
            ValidationError: If the resulting overlap is not smaller than the chunk size
            VectorStoreError: If the store is unavailable
        """
        options = self._resolve_options(options)

        lock = self._acquire_index_lock(resource.id)
        try:
            async with lock:
                return await self._index_resource(resource, options, on_progress)
        finally:
            self._release_index_lock(resource.id)

    async def _index_resource(
        self,
        resource: LibraryResource,
        options: ChunkingOptions,
        on_progress: Optional[ProgressCallback]
    ) -> int:
        def report_progress(progress: int, stage: str) -> None:
            logger.debug(f"📊 {resource.id} {stage}: {progress}%")
            if on_progress:
                on_progress(progress, stage)

        report_progress(0, "Starting...")

        if not options.force:
            if await self.vector_store.has_index(resource.id):
                logger.info(f"📦 Resource {resource.id} already indexed, skipping")
                report_progress(100, "Already indexed")
                return 0
        else:
            logger.info(f"🔄 Resource {resource.id} re-indexing forced")

        if not resource.has_text:
            logger.info(f"📭 Resource {resource.id} has no text content")
            return 0

        report_progress(5, "Splitting text into chunks...")
        chunker = TextChunker(
            chunk_size=options.chunk_size,
            chunk_overlap=options.chunk_overlap,
            min_chunk_length=self.config.chunking.min_chunk_length
        )
        spans = list(chunker.chunk_spans(resource.text_content))
        logger.info(f"✂️ Created {len(spans)} chunks for resource {resource.id}")

        if not spans:
            logger.info(f"📭 Resource {resource.id} produced no chunks long enough to index")
            return 0

        texts = [span[0] for span in spans]

        report_progress(5, "Generating embeddings...")
        embeddings: List[List[float]] = []
        batch_size = self.config.embedding.batch_size
        total_batches = (len(texts) + batch_size - 1) // batch_size

        for batch_start in range(0, len(texts), batch_size):
            batch = texts[batch_start:batch_start + batch_size]
            batch_num = batch_start // batch_size + 1

            embeddings.extend(await self._embed_batch(resource.id, batch))

            report_progress(
                5 + round(batch_num / total_batches * 30),
                f"Embeddings: {min(batch_start + batch_size, len(texts))}/{len(texts)}"
            )

        logger.info(f"✅ Generated {len(embeddings)} embeddings")

        report_progress(38, "Preparing data...")
        chunks_per_page = self.config.chunking.chunks_per_page
        chunks = [
            Chunk(
                id=chunk_id_for(resource.id, index),
                resource_id=resource.id,
                resource_title=resource.title,
                resource_author=resource.author or DEFAULT_AUTHOR,
                owner_id=resource.owner_id,
                chunk_index=index,
                text=text,
                embedding=embeddings[index],
                metadata=ChunkMetadata(
                    page=estimate_page(index, chunks_per_page),
                    section=extract_section(text),
                    start_char=start_char,
                    end_char=end_char
                )
            )
            for index, (text, start_char, end_char) in enumerate(spans)
        ]

        def on_store_progress(progress: int, stage: str) -> None:
            report_progress(40 + round(progress * 0.59), stage)

        await self.vector_store.upsert(chunks, on_store_progress)

        report_progress(100, "Indexing complete")
        logger.info(f"✅ Indexed {len(chunks)} chunks for resource {resource.id}")
        return len(chunks)

    async def _embed_batch(self, resource_id: str, texts: List[str]) -> List[List[float]]:
        """Embed one batch, reusing cached chunk vectors when enabled."""
        if not self.config.embedding.cache_enabled:
            return await self._call_gateway(texts)

        cached, missing = await self.embedding_cache.get_batch(resource_id, texts)
        if missing:
            missing_texts = [texts[i] for i in missing]
            fresh = await self._call_gateway(missing_texts)
            for i, embedding in zip(missing, fresh):
                cached[i] = embedding
            await self.embedding_cache.set_batch(resource_id, missing_texts, fresh)
        return cached

    async def _call_gateway(self, texts: List[str]) -> List[List[float]]:
        try:
            vectors = await self.embedding_gateway.embed_batch(texts)
        except RAGException:
            raise
        except Exception as e:
            raise EmbeddingError(f"Failed to embed batch: {str(e)}") from e

        if len(vectors) != len(texts):
            raise EmbeddingError(f"Expected {len(texts)} embeddings, got {len(vectors)}")
        return vectors

    async def index_resources(
        self,
        resources: List[LibraryResource],
        options: Optional[ChunkingOptions] = None
    ) -> int:
        """
        Index several resources one by one.

        A failure on one resource is logged and does not stop the others.

        Returns:
            Total number of chunks stored
        """
        total_chunks = 0
        for resource in resources:
            try:
                total_chunks += await self.index_resource(resource, options)
            except RAGException as e:
                logger.error(f"❌ Error indexing resource {resource.id}: {str(e)}")
        return total_chunks

    async def search(
        self,
        query: str,
        owner_id: str,
        resource_ids: Optional[List[str]] = None,
        k: Optional[int] = None
    ) -> List[SearchResult]:
        """
        Search for relevant chunks across an owner's library.

        Args:
            query: Natural-language query
            owner_id: Library owner
            resource_ids: Restrict to these resources; None or empty searches all
            k: Number of results (defaults to the configured ``default_k``)

        Returns:
            Results, highest score first

        Raises:
            ValidationError: If the query is empty or k is not positive
            RetrievalError: If embedding or vector search fails
        """
        k = self.config.retrieval.default_k if k is None else k
        if not query or not query.strip():
            raise ValidationError("Query must not be empty")
        if k < 1:
            raise ValidationError(f"k must be at least 1, got {k}")

        cache_key = search_cache_key(query, owner_id, resource_ids, k)
        cached = await self._cache_get(cache_key)
        if cached is not None:
            logger.info("🎯 Search results from cache")
            return [SearchResult.model_validate(item) for item in cached]

        try:
            query_vector = await self.embedding_gateway.embed_one(query)
            results = await self.vector_store.search(
                query_vector,
                k,
                SearchFilter(owner_id=owner_id, resource_ids=resource_ids or None)
            )
        except RAGException as e:
            logger.error(f"❌ Search failed: {str(e)}")
            raise RetrievalError(f"Search failed: {str(e)}") from e

        await self._cache_set(
            cache_key,
            [result.model_dump(mode="json") for result in results],
            self.config.retrieval.search_cache_ttl
        )
        return results

    async def _cache_get(self, key: str) -> Optional[Any]:
        try:
            return await self.cache.get(key)
        except Exception as e:
            logger.warning(f"⚠️ Cache read failed, searching live: {str(e)}")
            return None

    async def _cache_set(self, key: str, value: Any, ttl_seconds: int) -> None:
        try:
            await self.cache.set(key, value, ttl_seconds)
        except Exception as e:
            logger.warning(f"⚠️ Cache write failed: {str(e)}")

    async def delete_index(self, resource_id: str) -> None:
        """
        Delete a resource's chunks, index marker and cached chunk embeddings.

        Raises:
            VectorStoreError: If the store is unavailable
        """
        await self.vector_store.delete_by_resource_id(resource_id)
        await self.embedding_cache.invalidate(resource_id)
        logger.info(f"🗑️ Index removed for resource {resource_id}")

    async def is_indexed(self, resource_id: str) -> bool:
        return await self.vector_store.has_index(resource_id)

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get system statistics.

        Returns:
            Dictionary with system statistics
        """
        return {
            "vector_store": await self.vector_store.get_stats(),
            "embedding": self.embedding_gateway.get_stats(),
            "cache": self.cache.get_stats(),
            "configuration": {
                "embedding_model": self.config.embedding.model_name,
                "embedding_batch_size": self.config.embedding.batch_size,
                "embedding_cache_enabled": self.config.embedding.cache_enabled,
                "chunk_size": self.config.chunking.chunk_size,
                "chunk_overlap": self.config.chunking.chunk_overlap,
                "default_k": self.config.retrieval.default_k,
                "search_cache_ttl": self.config.retrieval.search_cache_ttl
            }
        }

    async def health_check(self) -> Dict[str, Any]:
        """
        Perform system health check.

        Returns:
            Dictionary with health status
        """
        vector_store_ok = await self.vector_store.health_check()
        return {
            "overall": "healthy" if vector_store_ok else "unhealthy",
            "components": {"vector_store": vector_store_ok},
            "timestamp": str(datetime.now())
        }

    async def close(self) -> None:
        await self.vector_store.close()


def create_rag_system(
    config: Optional[RAGConfig] = None,
    embeddings: Optional[Embeddings] = None,
    qdrant_client: Optional[AsyncQdrantClient] = None
) -> RAGService:
    """
    Assemble a RAG service from configuration.

    Args:
        config: RAG configuration
        embeddings: Prebuilt LangChain embeddings, overriding the configured provider
        qdrant_client: Prebuilt Qdrant client

    Returns:
        RAG service instance
    """
    config = config or RAGConfig()
    setup_logging("library_rag", config.logging)

    return RAGService(
        embedding_gateway=create_embedding_gateway(config, embeddings),
        vector_store=create_vector_store(
            config.vector_store,
            score_threshold=config.retrieval.score_threshold,
            client=qdrant_client
        ),
        cache=create_cache_service(config.cache),
        config=config
    )
