"""
Result cache backends.

In-process memory cache and a persistent JSON-file cache, plus the factory
that picks one from configuration.
"""

import os
import json
import asyncio
import time
import hashlib
from pathlib import Path
from typing import Any, Callable, Dict, Optional, Tuple

from library_rag.config.settings import CacheConfig
from library_rag.core.cache.base import CacheService
from library_rag.utils.logging import get_logger
from library_rag.utils.exceptions import ConfigurationError

logger = get_logger(__name__)


def _expiry(now: float, ttl_seconds: Optional[int], default_ttl: int) -> Optional[float]:
    ttl = default_ttl if ttl_seconds is None else ttl_seconds
    if ttl <= 0:
        return None
    return now + ttl


class MemoryCacheService(CacheService):
    """In-process cache with absolute per-entry expiry."""

    def __init__(self, default_ttl: int = 3600, clock: Callable[[], float] = time.monotonic):
        """
        Initialize memory cache.

        Args:
            default_ttl: TTL used when ``set`` is called without one
            clock: Monotonic time source in seconds
        """
        self.default_ttl = default_ttl
        self._clock = clock
        self._entries: Dict[str, Tuple[Any, Optional[float]]] = {}
        self._hits = 0
        self._misses = 0

        logger.info(f"💾 Initialized memory cache (default TTL {default_ttl}s)")

    async def get(self, key: str) -> Optional[Any]:
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return None

        value, expires_at = entry
        if expires_at is not None and self._clock() >= expires_at:
            del self._entries[key]
            self._misses += 1
            return None

        self._hits += 1
        return value

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        self._entries[key] = (value, _expiry(self._clock(), ttl_seconds, self.default_ttl))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def delete_by_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug(f"🗑️ Removed {len(keys)} cache entries with prefix '{prefix}'")
        return len(keys)

    async def clear(self) -> None:
        self._entries.clear()
        logger.info("🗑️ Memory cache cleared")

    def get_stats(self) -> Dict[str, Any]:
        return {
            "backend": "memory",
            "entries": len(self._entries),
            "hits": self._hits,
            "misses": self._misses
        }


class FileCacheService(CacheService):
    """
    Persistent cache storing one JSON file per key.

    File reads and writes run in worker threads so they do not block the event loop.
    """

    def __init__(
        self,
        cache_dir: Optional[str] = None,
        default_ttl: int = 3600,
        clock: Callable[[], float] = time.time
    ):
        """
        Initialize file cache.

        Args:
            cache_dir: Directory for cache files
            default_ttl: TTL used when ``set`` is called without one
            clock: Wall-clock time source in seconds; expiry survives restarts
        """
        self.cache_dir = cache_dir or os.path.join(os.getcwd(), "cache", "rag")
        self.default_ttl = default_ttl
        self._clock = clock
        self._ensure_cache_dir()

        logger.info(f"💾 Initialized file cache: {self.cache_dir}")

    def _ensure_cache_dir(self) -> None:
        """Ensure cache directory exists."""
        Path(self.cache_dir).mkdir(parents=True, exist_ok=True)

    def _get_cache_path(self, key: str) -> str:
        """Get cache file path for a key."""
        key_hash = hashlib.md5(key.encode()).hexdigest()
        return os.path.join(self.cache_dir, f"{key_hash}.json")

    def _read(self, path: str) -> Optional[Dict[str, Any]]:
        try:
            with open(path, "r") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"⚠️ Cache read error: {str(e)}")
            return None

    def _remove(self, path: str) -> None:
        try:
            os.remove(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"⚠️ Cache delete error: {str(e)}")

    def _entry_files(self):
        if not os.path.exists(self.cache_dir):
            return []
        return [
            os.path.join(self.cache_dir, name)
            for name in os.listdir(self.cache_dir)
            if name.endswith(".json")
        ]

    def _get_sync(self, key: str) -> Optional[Any]:
        path = self._get_cache_path(key)
        data = self._read(path)
        if data is None or data.get("key") != key:
            return None

        expires_at = data.get("expires_at")
        if expires_at is not None and self._clock() >= expires_at:
            self._remove(path)
            return None

        logger.debug(f"🎯 Cache hit: {key[:60]}")
        return data.get("value")

    def _set_sync(self, key: str, value: Any, ttl_seconds: Optional[int]) -> None:
        data = {
            "key": key,
            "value": value,
            "expires_at": _expiry(self._clock(), ttl_seconds, self.default_ttl)
        }
        try:
            serialized = json.dumps(data)
            with open(self._get_cache_path(key), "w") as f:
                f.write(serialized)
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"⚠️ Cache write error: {str(e)}")

    def _delete_by_prefix_sync(self, prefix: str) -> int:
        removed = 0
        for path in self._entry_files():
            data = self._read(path)
            if data is not None and str(data.get("key", "")).startswith(prefix):
                self._remove(path)
                removed += 1
        if removed:
            logger.debug(f"🗑️ Removed {removed} cache files with prefix '{prefix}'")
        return removed

    def _clear_sync(self) -> None:
        for path in self._entry_files():
            self._remove(path)
        logger.info("🗑️ File cache cleared")

    async def get(self, key: str) -> Optional[Any]:
        return await asyncio.to_thread(self._get_sync, key)

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> None:
        await asyncio.to_thread(self._set_sync, key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await asyncio.to_thread(self._remove, self._get_cache_path(key))

    async def delete_by_prefix(self, prefix: str) -> int:
        return await asyncio.to_thread(self._delete_by_prefix_sync, prefix)

    async def clear(self) -> None:
        await asyncio.to_thread(self._clear_sync)

    def get_stats(self) -> Dict[str, Any]:
        try:
            files = self._entry_files()
            total_size = sum(os.path.getsize(path) for path in files)
            return {
                "backend": "file",
                "cache_dir": self.cache_dir,
                "entries": len(files),
                "cache_size_mb": total_size / (1024 * 1024)
            }
        except OSError as e:
            logger.warning(f"⚠️ Cache stats error: {str(e)}")
            return {
                "backend": "file",
                "cache_dir": self.cache_dir,
                "entries": 0,
                "error": str(e)
            }


def create_cache_service(config: Optional[CacheConfig] = None) -> CacheService:
    """
    Create the result cache backend named in configuration.

    Args:
        config: Cache configuration

    Returns:
        Cache service instance

    Raises:
        ConfigurationError: If the backend is not supported
    """
    config = config or CacheConfig()

    if config.backend == "memory":
        return MemoryCacheService(default_ttl=config.default_ttl)
    if config.backend == "file":
        return FileCacheService(cache_dir=config.cache_dir, default_ttl=config.default_ttl)

    raise ConfigurationError(f"Unsupported cache backend: {config.backend}")
