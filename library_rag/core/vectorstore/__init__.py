"""
Vector store module initialization.

Exports the vector store contract and its Qdrant implementation.
"""

from .base import VectorStore

from .qdrant_client import (
    QdrantVectorStore,
    create_vector_store,
    point_id
)

__all__ = [
    "VectorStore",

    # Qdrant Client
    "QdrantVectorStore",
    "create_vector_store",
    "point_id"
]
