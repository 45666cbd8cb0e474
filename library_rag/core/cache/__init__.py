"""
Result cache module initialization.

Exports the cache contract, its backends and the backend factory.
"""

from .base import CacheService
from .backends import (
    MemoryCacheService,
    FileCacheService,
    create_cache_service
)

__all__ = [
    "CacheService",
    "MemoryCacheService",
    "FileCacheService",
    "create_cache_service"
]
