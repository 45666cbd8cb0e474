"""
Qdrant vector store client and operations.

Stores chunk vectors in one collection and per-resource index markers in a
companion ``{collection}_index`` collection.
"""

import asyncio
import uuid
from typing import Any, Dict, List, Optional

from qdrant_client import AsyncQdrantClient
from qdrant_client.http.models import (
    Distance,
    FieldCondition,
    Filter,
    FilterSelector,
    MatchAny,
    MatchValue,
    PayloadSchemaType,
    PointStruct,
    Range,
    VectorParams,
)

from library_rag.config.settings import VectorStoreConfig
from library_rag.core.models import (
    Chunk,
    IndexRecord,
    ProgressCallback,
    SearchFilter,
    SearchResult,
)
from library_rag.core.vectorstore.base import VectorStore
from library_rag.utils.logging import get_logger
from library_rag.utils.exceptions import VectorStoreError
from library_rag.utils.decorators import timing_decorator, error_handler_decorator

logger = get_logger(__name__)

POINT_NAMESPACE = uuid.UUID("6f1c3a52-8d7e-4b0a-9f3e-2a5c1d9e7b40")
MARKER_VECTOR = [1.0]


def point_id(key: str) -> str:
    """Qdrant point id for a chunk id or marker key. Stable across runs."""
    return str(uuid.uuid5(POINT_NAMESPACE, key))


def _marker_key(resource_id: str) -> str:
    return f"index:{resource_id}"


def _resource_condition(resource_id: str) -> FieldCondition:
    return FieldCondition(key="resource_id", match=MatchValue(value=resource_id))


def build_filter(search_filter: SearchFilter) -> Filter:
    """Translate a search filter into a Qdrant payload filter."""
    conditions = [FieldCondition(key="owner_id", match=MatchValue(value=search_filter.owner_id))]
    if search_filter.resource_ids:
        conditions.append(FieldCondition(key="resource_id", match=MatchAny(any=list(search_filter.resource_ids))))
    return Filter(must=conditions)


def chunk_to_payload(chunk: Chunk) -> Dict[str, Any]:
    payload = chunk.model_dump(mode="json", exclude={"embedding", "id"})
    payload["chunk_id"] = chunk.id
    return payload


def payload_to_chunk(payload: Dict[str, Any]) -> Chunk:
    data = dict(payload)
    data["id"] = data.pop("chunk_id")
    return Chunk.model_validate(data)


class QdrantVectorStore(VectorStore):
    """Vector store backed by an async Qdrant client."""

    def __init__(
        self,
        config: Optional[VectorStoreConfig] = None,
        client: Optional[AsyncQdrantClient] = None,
        score_threshold: Optional[float] = 0.5
    ):
        """
        Initialize Qdrant vector store.

        Args:
            config: Vector store configuration
            client: Prebuilt client; created from ``config`` when omitted
            score_threshold: Results scoring below this are dropped; None keeps everything
        """
        self.config = config or VectorStoreConfig()
        self.collection_name = self.config.collection_name
        self.marker_collection_name = f"{self.collection_name}_index"
        self.batch_size = self.config.batch_size
        self.vector_size = self.config.vector_size
        self.score_threshold = score_threshold

        self.client = client or self._create_client()
        self._collections_ready = False
        self._collection_lock = asyncio.Lock()

        logger.info(f"🗃️ Initialized Qdrant vector store: {self.config.qdrant_url or self.config.location}")
        logger.info(f"📦 Collection: {self.collection_name}")

    def _create_client(self) -> AsyncQdrantClient:
        """Create Qdrant client for a server URL or a local location."""
        if self.config.qdrant_url:
            return AsyncQdrantClient(url=self.config.qdrant_url, api_key=self.config.qdrant_api_key)
        return AsyncQdrantClient(location=self.config.location or ":memory:")

    async def _collection_exists(self) -> bool:
        if self._collections_ready:
            return True
        return await self.client.collection_exists(self.collection_name)

    async def _marker_collection_exists(self) -> bool:
        if self._collections_ready:
            return True
        return await self.client.collection_exists(self.marker_collection_name)

    async def _ensure_collections(self, vector_size: int) -> None:
        """Create the chunk and marker collections if they do not exist yet."""
        if self._collections_ready:
            return

        async with self._collection_lock:
            if self._collections_ready:
                return

            if not await self.client.collection_exists(self.collection_name):
                size = self.vector_size or vector_size
                await self.client.create_collection(
                    collection_name=self.collection_name,
                    vectors_config=VectorParams(size=size, distance=Distance.COSINE)
                )
                if self.config.qdrant_url:
                    for field in ("owner_id", "resource_id"):
                        await self.client.create_payload_index(
                            collection_name=self.collection_name,
                            field_name=field,
                            field_schema=PayloadSchemaType.KEYWORD
                        )
                logger.info(f"✅ Created collection '{self.collection_name}' with vector size {size}")

            if not await self.client.collection_exists(self.marker_collection_name):
                await self.client.create_collection(
                    collection_name=self.marker_collection_name,
                    vectors_config=VectorParams(size=len(MARKER_VECTOR), distance=Distance.COSINE)
                )
                logger.info(f"✅ Created marker collection '{self.marker_collection_name}'")

            self._collections_ready = True

    @error_handler_decorator(VectorStoreError)
    @timing_decorator
    async def upsert(self, chunks: List[Chunk], on_progress: Optional[ProgressCallback] = None) -> None:
        """
        Add chunks to the collection in batches and mark their resources as indexed.

        Args:
            chunks: Chunks with embeddings
            on_progress: Called with ``(percent, "Saving: n/total")`` after each batch

        Raises:
            VectorStoreError: If any write fails
        """
        if not chunks:
            return

        if any(not chunk.embedding for chunk in chunks):
            raise VectorStoreError("Cannot store chunks without embeddings")

        await self._ensure_collections(len(chunks[0].embedding))

        total_chunks = len(chunks)
        logger.info(f"⬆️ Adding {total_chunks} chunks to collection in batches")

        for batch_start in range(0, total_chunks, self.batch_size):
            batch = chunks[batch_start:batch_start + self.batch_size]
            batch_end = batch_start + len(batch)

            points = [
                PointStruct(id=point_id(chunk.id), vector=list(chunk.embedding), payload=chunk_to_payload(chunk))
                for chunk in batch
            ]
            await self.client.upsert(collection_name=self.collection_name, points=points, wait=True)

            logger.info(f"📦 Stored batch {batch_start // self.batch_size + 1}: chunks {batch_start + 1}-{batch_end}")
            if on_progress:
                on_progress(round(batch_end / total_chunks * 100), f"Saving: {batch_end}/{total_chunks}")

        chunk_counts: Dict[str, int] = {}
        owners: Dict[str, str] = {}
        for chunk in chunks:
            chunk_counts[chunk.resource_id] = chunk_counts.get(chunk.resource_id, 0) + 1
            owners[chunk.resource_id] = chunk.owner_id

        for resource_id, chunk_count in chunk_counts.items():
            # Drop trailing chunks left over from a longer previous indexing run.
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(filter=Filter(must=[
                    _resource_condition(resource_id),
                    FieldCondition(key="chunk_index", range=Range(gte=chunk_count))
                ])),
                wait=True
            )

            record = IndexRecord(resource_id=resource_id, owner_id=owners[resource_id], chunk_count=chunk_count)
            await self.client.upsert(
                collection_name=self.marker_collection_name,
                points=[PointStruct(
                    id=point_id(_marker_key(resource_id)),
                    vector=MARKER_VECTOR,
                    payload=record.model_dump(mode="json")
                )],
                wait=True
            )

        logger.info(f"✅ Stored {total_chunks} chunks for {len(chunk_counts)} resource(s)")

    @error_handler_decorator(VectorStoreError)
    @timing_decorator
    async def search(
        self,
        query_vector: List[float],
        k: int,
        search_filter: SearchFilter
    ) -> List[SearchResult]:
        """
        Search for similar chunks within an owner's library.

        Args:
            query_vector: Query embedding vector
            k: Number of results to return
            search_filter: Owner and optional resource restriction

        Returns:
            Results sorted by score descending, then chunk id ascending

        Raises:
            VectorStoreError: If the search fails
        """
        if not await self._collection_exists():
            logger.info("📭 Collection does not exist yet, no results")
            return []

        logger.info(f"🔍 Searching for {k} similar chunks")
        response = await self.client.query_points(
            collection_name=self.collection_name,
            query=list(query_vector),
            query_filter=build_filter(search_filter),
            limit=k,
            with_payload=True,
            with_vectors=False,
            score_threshold=self.score_threshold
        )

        results = [
            SearchResult(chunk=payload_to_chunk(point.payload), score=point.score)
            for point in response.points
        ]
        results.sort(key=lambda result: (-result.score, result.chunk.id))

        logger.info(f"✅ Found {len(results)} similar chunks")
        return results

    @error_handler_decorator(VectorStoreError)
    async def get_index_record(self, resource_id: str) -> Optional[IndexRecord]:
        if not await self._marker_collection_exists():
            return None

        points = await self.client.retrieve(
            collection_name=self.marker_collection_name,
            ids=[point_id(_marker_key(resource_id))],
            with_payload=True,
            with_vectors=False
        )
        if not points:
            return None
        return IndexRecord.model_validate(points[0].payload)

    async def has_index(self, resource_id: str) -> bool:
        return await self.get_index_record(resource_id) is not None

    @error_handler_decorator(VectorStoreError)
    @timing_decorator
    async def delete_by_resource_id(self, resource_id: str) -> None:
        """
        Delete all chunks and the index marker of a resource.

        Raises:
            VectorStoreError: If the store is unavailable
        """
        if await self._marker_collection_exists():
            await self.client.delete(
                collection_name=self.marker_collection_name,
                points_selector=[point_id(_marker_key(resource_id))],
                wait=True
            )

        if await self._collection_exists():
            await self.client.delete(
                collection_name=self.collection_name,
                points_selector=FilterSelector(filter=Filter(must=[_resource_condition(resource_id)])),
                wait=True
            )

        logger.info(f"🗑️ Deleted index of resource {resource_id}")

    @error_handler_decorator(VectorStoreError)
    async def count(self, resource_id: Optional[str] = None) -> int:
        if not await self._collection_exists():
            return 0

        count_filter = Filter(must=[_resource_condition(resource_id)]) if resource_id else None
        result = await self.client.count(
            collection_name=self.collection_name,
            count_filter=count_filter,
            exact=True
        )
        return result.count

    async def get_stats(self) -> Dict[str, Any]:
        """
        Get collection information.

        Returns:
            Dictionary with collection statistics
        """
        try:
            return {
                "collection_name": self.collection_name,
                "points_count": await self.count(),
                "batch_size": self.batch_size,
                "score_threshold": self.score_threshold
            }
        except VectorStoreError as e:
            logger.warning(f"⚠️ Failed to get collection info: {str(e)}")
            return {
                "collection_name": self.collection_name,
                "points_count": 0,
                "error": str(e)
            }

    async def health_check(self) -> bool:
        """
        Check if Qdrant is healthy.

        Returns:
            True if healthy, False otherwise
        """
        try:
            await self.client.get_collections()
            return True
        except Exception as e:
            logger.error(f"❌ Qdrant health check failed: {str(e)}")
            return False

    async def close(self) -> None:
        await self.client.close()


def create_vector_store(
    config: Optional[VectorStoreConfig] = None,
    score_threshold: Optional[float] = 0.5,
    client: Optional[AsyncQdrantClient] = None
) -> QdrantVectorStore:
    """
    Create a Qdrant vector store.

    Args:
        config: Vector store configuration
        score_threshold: Minimum similarity score for search results
        client: Optional prebuilt client

    Returns:
        QdrantVectorStore instance
    """
    return QdrantVectorStore(config=config, client=client, score_threshold=score_threshold)
