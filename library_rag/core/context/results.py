"""
Outcomes of context preparation.

Exactly one of ``CacheReady``, ``DirectFiles`` or ``RagFallback`` is returned
per generation request. Every variant lists the document ids the caller
still has to cover through chunk retrieval.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from library_rag.core.models import ContextCacheHandle


class CacheReady(BaseModel):
    """A provider-side context cache covers some or all of the selection."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["cache_ready"] = "cache_ready"
    handle: ContextCacheHandle
    document_ids: List[str]
    remaining_doc_ids: List[str] = Field(default_factory=list)

    @property
    def cache_name(self) -> str:
        return self.handle.name

    @property
    def expire_time(self) -> datetime:
        return self.handle.expire_time

    def covers(self, document_ids: List[str]) -> bool:
        """True when this result was prepared for the same selection, in any order."""
        return set(self.document_ids) == set(document_ids)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cacheName": self.cache_name,
            "expireTime": self.expire_time.isoformat(),
            "remainingDocIds": list(self.remaining_doc_ids)
        }


class DirectFiles(BaseModel):
    """No cache, but raw provider file references can be passed to generation."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["direct_files"] = "direct_files"
    file_refs: List[str]
    document_ids: List[str]
    remaining_doc_ids: List[str] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remainingDocIds": list(self.remaining_doc_ids),
            "directFileRefs": list(self.file_refs)
        }


class RagFallback(BaseModel):
    """Nothing is available provider-side; every document goes through chunk retrieval."""

    model_config = ConfigDict(frozen=True)

    kind: Literal["rag_fallback"] = "rag_fallback"
    remaining_doc_ids: List[str] = Field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"remainingDocIds": list(self.remaining_doc_ids)}


ContextResult = Union[CacheReady, DirectFiles, RagFallback]
