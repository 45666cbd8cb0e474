"""
Context cache module initialization.

Exports the context-cache manager, its collaborators and result types.
"""

from .results import (
    CacheReady,
    DirectFiles,
    RagFallback,
    ContextResult
)

from .policy import RetryPolicy, is_stale_reference

from .providers import (
    DocumentReferenceResolver,
    ReferenceRepairer,
    ContextCacheProvider,
    GeminiContextCacheProvider,
    classify_provider_error,
    create_gemini_provider
)

from .manager import ContextCacheManager, create_context_cache_manager

__all__ = [
    # Results
    "CacheReady",
    "DirectFiles",
    "RagFallback",
    "ContextResult",

    # Policy
    "RetryPolicy",
    "is_stale_reference",

    # Providers
    "DocumentReferenceResolver",
    "ReferenceRepairer",
    "ContextCacheProvider",
    "GeminiContextCacheProvider",
    "classify_provider_error",
    "create_gemini_provider",

    # Manager
    "ContextCacheManager",
    "create_context_cache_manager"
]
