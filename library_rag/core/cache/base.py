"""
Result cache contract.

A cache is an optimization only: backends never raise to their callers for
backend failures. A miss, an expired entry and an unreadable entry all come
back as ``None``.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, Optional


class CacheService(ABC):
    """Abstract base class for key/value caches with per-entry TTL."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        """
        Get a value from the cache.

        Args:
            key: Cache key

        Returns:
            Cached value, or None on a miss
        """
        pass

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        """
        Store a JSON-serializable value.

        Args:
            key: Cache key
            value: Value to store
            ttl_seconds: Lifetime in seconds; None uses the backend default, 0 or less never expires
        """
        pass

    @abstractmethod
    async def delete(self, key: str) -> None:
        pass

    @abstractmethod
    async def delete_by_prefix(self, prefix: str) -> int:
        """
        Delete every entry whose key starts with ``prefix``.

        Returns:
            Number of entries removed
        """
        pass

    @abstractmethod
    async def clear(self) -> None:
        pass

    @abstractmethod
    def get_stats(self) -> Dict[str, Any]:
        pass
