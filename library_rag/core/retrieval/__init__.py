"""
Retrieval module initialization.

Exports the LangChain retriever over the library.
"""

from .library import (
    LibraryRetriever,
    search_result_to_document
)

__all__ = [
    "LibraryRetriever",
    "search_result_to_document"
]
