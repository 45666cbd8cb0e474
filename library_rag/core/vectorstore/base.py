"""
Vector store contract.

Implementations persist chunk vectors with their metadata and keep one
index marker per resource. Store failures are raised as
``VectorStoreError`` and never retried inside the store.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from library_rag.core.models import Chunk, IndexRecord, ProgressCallback, SearchFilter, SearchResult


class VectorStore(ABC):
    """Abstract base class for chunk vector stores."""

    @abstractmethod
    async def upsert(self, chunks: List[Chunk], on_progress: Optional[ProgressCallback] = None) -> None:
        """
        Insert or overwrite chunks by id, then write the index marker of each resource.

        Args:
            chunks: Chunks with embeddings
            on_progress: Called with ``(percent, stage)`` after every stored batch
        """
        pass

    @abstractmethod
    async def search(
        self,
        query_vector: List[float],
        k: int,
        search_filter: SearchFilter
    ) -> List[SearchResult]:
        """
        Find the chunks most similar to a query vector.

        Returns:
            At most ``k`` results, highest score first, ties broken by chunk id
        """
        pass

    @abstractmethod
    async def has_index(self, resource_id: str) -> bool:
        pass

    @abstractmethod
    async def get_index_record(self, resource_id: str) -> Optional[IndexRecord]:
        pass

    @abstractmethod
    async def delete_by_resource_id(self, resource_id: str) -> None:
        """Remove every chunk and the index marker of a resource. Absent resources are not an error."""
        pass

    @abstractmethod
    async def count(self, resource_id: Optional[str] = None) -> int:
        pass

    async def get_stats(self) -> Dict[str, Any]:
        return {}

    async def health_check(self) -> bool:
        return True

    async def close(self) -> None:
        pass
