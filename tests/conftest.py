"""
Shared test fixtures for the library RAG test suite.

Provides: keyword-count embeddings, an in-memory Qdrant vector store,
memory caches, sample library resources and a ready RAG service.
"""

from typing import List

import pytest
from langchain_core.embeddings import Embeddings
from qdrant_client import AsyncQdrantClient

from library_rag.config.settings import (
    ChunkingConfig,
    EmbeddingConfig,
    RAGConfig,
    RetrievalConfig,
    VectorStoreConfig,
)
from library_rag.core.cache import MemoryCacheService
from library_rag.core.embeddings import LangChainEmbeddingGateway
from library_rag.core.models import LibraryResource
from library_rag.core.system import RAGService
from library_rag.core.vectorstore import QdrantVectorStore

VOCABULARY = ["faith", "grace", "hope", "love", "law", "prophet", "kingdom", "prayer"]


class KeywordEmbeddings(Embeddings):
    """Deterministic embeddings counting vocabulary words, plus a small bias dimension."""

    def __init__(self):
        self.document_calls: List[List[str]] = []
        self.query_calls: List[str] = []

    @staticmethod
    def vector(text: str) -> List[float]:
        lowered = text.lower()
        return [float(lowered.count(word)) for word in VOCABULARY] + [0.1]

    def embed_documents(self, texts: List[str]) -> List[List[float]]:
        self.document_calls.append(list(texts))
        return [self.vector(text) for text in texts]

    def embed_query(self, text: str) -> List[float]:
        self.query_calls.append(text)
        return self.vector(text)

    async def aembed_documents(self, texts: List[str]) -> List[List[float]]:
        return self.embed_documents(texts)

    async def aembed_query(self, text: str) -> List[float]:
        return self.embed_query(text)


def make_text(topic: str, sentences: int = 20) -> str:
    """Build extracted-looking text where every sentence mentions ``topic``."""
    return " ".join(
        f"Sentence {i} of this study talks about {topic} and its meaning for the reader."
        for i in range(sentences)
    )


@pytest.fixture
def keyword_embeddings() -> KeywordEmbeddings:
    return KeywordEmbeddings()


@pytest.fixture
def rag_config() -> RAGConfig:
    """Configuration with small batches so tests cross batch boundaries."""
    return RAGConfig(
        vector_store=VectorStoreConfig(collection_name="test_chunks", batch_size=2),
        embedding=EmbeddingConfig(provider="fake", model_name="keyword-test", batch_size=2),
        chunking=ChunkingConfig(chunk_size=200, chunk_overlap=40),
        retrieval=RetrievalConfig(default_k=5, score_threshold=0.5, search_cache_ttl=300),
    )


@pytest.fixture
def memory_cache() -> MemoryCacheService:
    return MemoryCacheService(default_ttl=3600)


@pytest.fixture
def vector_store(rag_config: RAGConfig) -> QdrantVectorStore:
    """Qdrant vector store running in-process."""
    return QdrantVectorStore(
        config=rag_config.vector_store,
        client=AsyncQdrantClient(location=":memory:"),
        score_threshold=rag_config.retrieval.score_threshold,
    )


@pytest.fixture
def rag_service(
    keyword_embeddings: KeywordEmbeddings,
    vector_store: QdrantVectorStore,
    memory_cache: MemoryCacheService,
    rag_config: RAGConfig,
) -> RAGService:
    return RAGService(
        embedding_gateway=LangChainEmbeddingGateway(keyword_embeddings, model_name="keyword-test"),
        vector_store=vector_store,
        cache=memory_cache,
        config=rag_config,
    )


@pytest.fixture
def grace_resource() -> LibraryResource:
    return LibraryResource(
        id="res-grace",
        owner_id="user1",
        title="On Grace",
        author="A. Writer",
        text_content=make_text("grace"),
    )


@pytest.fixture
def prayer_resource() -> LibraryResource:
    return LibraryResource(
        id="res-prayer",
        owner_id="user1",
        title="On Prayer",
        text_content=make_text("prayer"),
    )


@pytest.fixture
def other_owner_resource() -> LibraryResource:
    return LibraryResource(
        id="res-other",
        owner_id="user2",
        title="Someone Else's Grace",
        author="B. Writer",
        text_content=make_text("grace", sentences=6),
    )
