"""
LangChain retriever over the library RAG service.

Lets a LangChain generation chain pull library chunks as ``Document``
objects, with citation metadata attached.
"""

import asyncio
from typing import Any, Dict, List, Optional

from langchain_core.callbacks import (
    AsyncCallbackManagerForRetrieverRun,
    CallbackManagerForRetrieverRun,
)
from langchain_core.documents import Document
from langchain_core.retrievers import BaseRetriever
from pydantic import ConfigDict

from library_rag.core.models import SearchResult
from library_rag.core.system.rag_system import RAGService
from library_rag.utils.logging import get_logger

logger = get_logger(__name__)


def search_result_to_document(result: SearchResult) -> Document:
    """Convert a search result into a LangChain document."""
    chunk = result.chunk
    metadata: Dict[str, Any] = {
        "chunk_id": chunk.id,
        "resource_id": chunk.resource_id,
        "resource_title": chunk.resource_title,
        "resource_author": chunk.resource_author,
        "chunk_index": chunk.chunk_index,
        "page": chunk.metadata.page,
        "section": chunk.metadata.section,
        "score": result.score,
        "citation": chunk.citation()
    }
    return Document(page_content=chunk.text, metadata=metadata)


class LibraryRetriever(BaseRetriever):
    """Retriever scoped to one owner's library and an optional resource selection."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    rag_service: RAGService
    owner_id: str
    resource_ids: Optional[List[str]] = None
    k: int = 10

    async def _aget_relevant_documents(
        self,
        query: str,
        *,
        run_manager: AsyncCallbackManagerForRetrieverRun
    ) -> List[Document]:
        results = await self.rag_service.search(query, self.owner_id, self.resource_ids, self.k)
        logger.info(f"📚 Retrieved {len(results)} library chunks")
        return [search_result_to_document(result) for result in results]

    def _get_relevant_documents(
        self,
        query: str,
        *,
        run_manager: CallbackManagerForRetrieverRun
    ) -> List[Document]:
        """
        Blocking variant for callers without a running event loop.

        Each call runs the search in a fresh event loop. Use it only with an
        in-process Qdrant (``location=":memory:"`` or a local path) or a
        service built for a single call; a remote client keeps connections
        bound to the first loop, so server deployments go through ``ainvoke``.
        """
        results = asyncio.run(self.rag_service.search(query, self.owner_id, self.resource_ids, self.k))
        return [search_result_to_document(result) for result in results]
