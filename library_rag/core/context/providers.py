"""
Collaborators of the context-cache manager.

The persistence layer resolves document ids to provider file references,
a resync service repairs stale references, and a cache provider turns file
references into a short-lived provider-side context cache.
"""

from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Dict, List, Optional, Type

from google import genai
from google.genai import errors, types

from library_rag.config.settings import ContextCacheConfig, RAGConfig
from library_rag.core.models import ContextCacheHandle, DocumentReference, utcnow
from library_rag.utils.logging import get_logger
from library_rag.utils.exceptions import (
    APIKeyError,
    CapacityExceededError,
    ContextCacheError,
    StaleReferenceError,
)
from library_rag.utils.decorators import timing_decorator

logger = get_logger(__name__)

STALE_STATUS_CODES = {403, 404}
CAPACITY_STATUS_CODES = {413, 429}
STALE_MARKERS = ("permission", "expired", "not found", "does not exist")
CAPACITY_MARKERS = ("too many pages", "page limit", "token", "too large", "exceeds")


class DocumentReferenceResolver(ABC):
    """Looks up the provider file reference stored for each document."""

    @abstractmethod
    async def resolve(self, document_ids: List[str]) -> Dict[str, DocumentReference]:
        """
        Resolve documents to their provider file references.

        Args:
            document_ids: Documents of the current selection

        Returns:
            Reference per known document id; unknown ids may be missing
        """
        pass


class ReferenceRepairer(ABC):
    """Re-uploads or resyncs documents whose provider files are stale."""

    @abstractmethod
    async def repair(self, document_ids: List[str]) -> None:
        pass


class ContextCacheProvider(ABC):
    """Creates provider-side context caches."""

    @abstractmethod
    async def create_cache(self, file_uris: List[str], ttl_seconds: int) -> ContextCacheHandle:
        """
        Create a context cache over the given files.

        Raises:
            StaleReferenceError: If a file is expired or not accessible
            CapacityExceededError: If the files exceed a provider limit
            ContextCacheError: For any other provider failure
        """
        pass


def classify_provider_error(code: Optional[int], message: str) -> Type[ContextCacheError]:
    """
    Map a provider error to the context-cache error taxonomy.

    Args:
        code: HTTP status code, if known
        message: Provider error message

    Returns:
        The exception class to raise
    """
    if code in STALE_STATUS_CODES:
        return StaleReferenceError
    if code in CAPACITY_STATUS_CODES:
        return CapacityExceededError

    text = (message or "").lower()
    if any(marker in text for marker in STALE_MARKERS):
        return StaleReferenceError
    if any(marker in text for marker in CAPACITY_MARKERS):
        return CapacityExceededError
    return ContextCacheError


class GeminiContextCacheProvider(ContextCacheProvider):
    """Context caches through the Gemini cached-contents API."""

    def __init__(self, client: genai.Client, config: Optional[ContextCacheConfig] = None):
        """
        Initialize Gemini context cache provider.

        Args:
            client: google-genai client
            config: Context cache configuration
        """
        self.client = client
        self.config = config or ContextCacheConfig()

        logger.info(f"🧠 Initialized Gemini context cache provider: {self.config.model_name}")

    @timing_decorator
    async def create_cache(self, file_uris: List[str], ttl_seconds: int) -> ContextCacheHandle:
        logger.info(f"📦 Creating context cache for {len(file_uris)} files...")

        contents = [
            types.Content(
                role="user",
                parts=[types.Part.from_uri(file_uri=uri, mime_type=self.config.mime_type)]
            )
            for uri in file_uris
        ]

        try:
            cache = await self.client.aio.caches.create(
                model=self.config.model_name,
                config=types.CreateCachedContentConfig(contents=contents, ttl=f"{ttl_seconds}s")
            )
        except errors.APIError as e:
            error_class = classify_provider_error(e.code, e.message or str(e))
            if error_class is StaleReferenceError:
                logger.warning("⚠️ Cache creation failed due to expired files or permissions")
            else:
                logger.error(f"❌ Gemini cache error ({e.code}): {e.message}")
            raise error_class(f"Context cache creation failed ({e.code}): {e.message}") from e

        expire_time = cache.expire_time or utcnow() + timedelta(seconds=ttl_seconds)
        logger.info(f"✅ Cache created: {cache.name}, expires {expire_time.isoformat()}")
        return ContextCacheHandle(name=cache.name, expire_time=expire_time, document_refs=list(file_uris))


def create_gemini_provider(config: RAGConfig, client: Optional[genai.Client] = None) -> GeminiContextCacheProvider:
    """
    Create the Gemini context cache provider.

    Raises:
        APIKeyError: If no client is given and the Google API key is missing
    """
    if client is None:
        if not config.google_api_key:
            raise APIKeyError("Google API key is required for context caching")
        client = genai.Client(api_key=config.google_api_key)
    return GeminiContextCacheProvider(client, config.context_cache)
