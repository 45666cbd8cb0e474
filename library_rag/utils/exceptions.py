"""
Custom exceptions for the library RAG pipeline.

Provides specific exception types for indexing, retrieval and
context-cache failures. Lower layers raise these; only the RAG
orchestrator and the context-cache manager turn them into control flow.
"""


class RAGException(Exception):
    """Base exception for library RAG errors."""

    user_message = "The operation could not be completed. Please try again."


class ConfigurationError(RAGException):
    """Raised when configuration is invalid or missing."""

    user_message = "The service is not configured correctly."


class APIKeyError(ConfigurationError):
    """Raised when API keys are missing or invalid."""


class ValidationError(RAGException):
    """Raised when input validation fails."""

    user_message = "The request contains invalid values."


class EmbeddingError(RAGException):
    """Raised when an embedding call fails. Indexing is retryable as a whole."""

    user_message = "Embeddings could not be generated. Please retry indexing."


class VectorStoreError(RAGException):
    """Raised when the vector store is unavailable or an operation fails."""

    user_message = "The document index is temporarily unavailable."


class RetrievalError(RAGException):
    """Raised when a search over the library fails."""

    user_message = "Searching your library failed. Please try again."


class ContextCacheError(RAGException):
    """Raised when a provider-side context cache cannot be created."""

    user_message = "Your documents could not be prepared for generation."


class StaleReferenceError(ContextCacheError):
    """Raised when provider file references are expired or no longer accessible."""


class CapacityExceededError(ContextCacheError):
    """Raised when the document set exceeds a provider limit (pages, tokens, size)."""
