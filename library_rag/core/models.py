"""
Pydantic models for the library RAG pipeline.

Chunks, search results, index markers, indexing inputs and the
provider-side context cache handle.
"""

from datetime import datetime, timezone
from typing import Callable, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


ProgressCallback = Callable[[int, str], None]

DEFAULT_AUTHOR = "Unknown"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def chunk_id_for(resource_id: str, chunk_index: int) -> str:
    """Deterministic chunk id; re-indexing a resource yields the same ids."""
    return f"{resource_id}_chunk_{chunk_index}"


class LibraryResource(BaseModel):
    """A document from the user's library with its extracted text."""

    id: str
    owner_id: str
    title: str
    author: Optional[str] = None
    text_content: Optional[str] = None

    @property
    def has_text(self) -> bool:
        return bool(self.text_content and self.text_content.strip())


class ChunkingOptions(BaseModel):
    """
    Per-call chunking options. Not persisted.

    Sizes left as None are taken from the configured chunking section.
    """

    chunk_size: Optional[int] = Field(default=None, ge=1)
    chunk_overlap: Optional[int] = Field(default=None, ge=0)
    force: bool = False

    @model_validator(mode="after")
    def _check_overlap(self) -> "ChunkingOptions":
        if self.chunk_size is None or self.chunk_overlap is None:
            return self
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return self


class ChunkMetadata(BaseModel):
    """Best-effort positional metadata for citations."""

    page: Optional[int] = None
    section: Optional[str] = None
    start_char: Optional[int] = None
    end_char: Optional[int] = None


class Chunk(BaseModel):
    """A bounded slice of a resource's text with its embedding."""

    model_config = ConfigDict(frozen=True)

    id: str
    resource_id: str
    resource_title: str
    resource_author: str = DEFAULT_AUTHOR
    owner_id: str
    chunk_index: int = Field(ge=0)
    text: str
    embedding: List[float] = Field(default_factory=list)
    metadata: ChunkMetadata = Field(default_factory=ChunkMetadata)
    created_at: datetime = Field(default_factory=utcnow)

    def citation(self) -> str:
        """Format a citation like: Author, "Title" - Section, p. 3"""
        page_info = f", p. {self.metadata.page}" if self.metadata.page else ""
        section_info = f" - {self.metadata.section}" if self.metadata.section else ""
        return f'{self.resource_author}, "{self.resource_title}"{section_info}{page_info}'


class SearchResult(BaseModel):
    """A chunk with its cosine similarity to the query."""

    chunk: Chunk
    score: float


class SearchFilter(BaseModel):
    """Restricts a search to one owner and optionally a set of resources."""

    owner_id: str
    resource_ids: Optional[List[str]] = None


class IndexRecord(BaseModel):
    """Existence marker written once all chunks of a resource are stored."""

    resource_id: str
    owner_id: str
    chunk_count: int = Field(ge=0)
    indexed_at: datetime = Field(default_factory=utcnow)


class ContextCacheHandle(BaseModel):
    """
    Provider-side handle granting full-text access to a bounded document set.

    Valid until ``expire_time``; never renewed in place.
    """

    model_config = ConfigDict(frozen=True)

    name: str
    expire_time: datetime
    document_refs: List[str] = Field(default_factory=list)

    @field_validator("expire_time")
    @classmethod
    def _ensure_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value

    def remaining_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or utcnow()
        return max(0.0, (self.expire_time - now).total_seconds())

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return self.remaining_seconds(now) <= 0


class DocumentReference(BaseModel):
    """What the persistence layer knows about a document's provider-side file."""

    document_id: str
    file_uri: Optional[str] = None
    synced_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return bool(self.file_uri)

    def needs_sync(self, file_ttl_hours: float, now: Optional[datetime] = None) -> bool:
        """True when the file is missing, has no sync time or is older than the provider file TTL."""
        if not self.file_uri or self.synced_at is None:
            return True
        now = now or utcnow()
        synced_at = self.synced_at
        if synced_at.tzinfo is None:
            synced_at = synced_at.replace(tzinfo=timezone.utc)
        return (now - synced_at).total_seconds() > file_ttl_hours * 3600

