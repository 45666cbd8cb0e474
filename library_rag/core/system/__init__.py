"""
Core system module initialization.

Exports the RAG service and its factory.
"""

from .rag_system import RAGService, create_rag_system, search_cache_key

__all__ = [
    "RAGService",
    "create_rag_system",
    "search_cache_key"
]
