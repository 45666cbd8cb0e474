"""
Context-cache manager.

Prepares full-document context for a generation request. It reuses a live
cache handle when the selection is unchanged, creates a new provider cache
otherwise, heals stale file references once, and degrades to direct file
references and finally to chunk retrieval.
"""

from typing import Dict, List, Optional

from library_rag.config.settings import ContextCacheConfig, RAGConfig
from library_rag.core.context.policy import RetryPolicy
from library_rag.core.context.providers import (
    ContextCacheProvider,
    DocumentReferenceResolver,
    ReferenceRepairer,
    create_gemini_provider,
)
from library_rag.core.context.results import CacheReady, ContextResult, DirectFiles, RagFallback
from library_rag.core.models import DocumentReference
from library_rag.utils.logging import get_logger
from library_rag.utils.exceptions import CapacityExceededError, StaleReferenceError

logger = get_logger(__name__)


def _usable(document_ids: List[str], refs: Dict[str, DocumentReference]) -> List[DocumentReference]:
    """References with a provider file, in selection order."""
    return [refs[doc_id] for doc_id in document_ids if doc_id in refs and refs[doc_id].is_resolved]


class ContextCacheManager:
    """Creates, reuses and falls back from provider-side context caches."""

    def __init__(
        self,
        resolver: DocumentReferenceResolver,
        provider: ContextCacheProvider,
        repairer: Optional[ReferenceRepairer] = None,
        config: Optional[ContextCacheConfig] = None,
        retry_policy: Optional[RetryPolicy] = None
    ):
        """
        Initialize context-cache manager.

        Args:
            resolver: Resolves document ids to provider file references
            provider: Creates provider-side caches
            repairer: Re-uploads stale documents; without it nothing is healed
            config: Context cache configuration
            retry_policy: Retry policy for cache creation
        """
        self.resolver = resolver
        self.provider = provider
        self.repairer = repairer
        self.config = config or ContextCacheConfig()
        self.retry_policy = retry_policy or RetryPolicy(max_retries=self.config.max_retries)

        logger.info(f"🧠 Context cache manager ready ({self.retry_policy})")

    async def prepare_context(
        self,
        document_ids: List[str],
        current: Optional[ContextResult] = None
    ) -> ContextResult:
        """
        Prepare provider-side context for a document selection.

        Args:
            document_ids: Selected documents
            current: Result of a previous step of the same workflow, if any

        Returns:
            CacheReady, DirectFiles or RagFallback; ``remaining_doc_ids`` lists
            the documents still to be covered by chunk retrieval
        """
        document_ids = list(dict.fromkeys(document_ids))
        if not document_ids:
            return RagFallback(remaining_doc_ids=[])

        if isinstance(current, CacheReady):
            if not current.covers(document_ids):
                logger.info("🔄 Document selection changed, discarding context cache")
            elif current.handle.is_expired():
                logger.info(f"⏰ Context cache {current.cache_name} expired, creating a new one")
            else:
                logger.info(
                    f"♻️ Reusing context cache {current.cache_name} "
                    f"({int(current.handle.remaining_seconds())}s left)"
                )
                return current

        refs = await self.resolver.resolve(document_ids)

        if self.config.proactive_repair and self.repairer:
            outdated = [
                doc_id for doc_id in document_ids
                if doc_id not in refs or refs[doc_id].needs_sync(self.config.file_ttl_hours)
            ]
            if outdated:
                logger.info(f"🔧 Syncing {len(outdated)} outdated documents before caching")
                if await self._repair(outdated):
                    refs = await self.resolver.resolve(document_ids)

        usable = _usable(document_ids, refs)
        if not usable:
            logger.info("📚 No provider files available, using RAG for all documents")
            return RagFallback(remaining_doc_ids=document_ids)

        result = await self._attempt_cache(document_ids, usable)
        if result is not None:
            return result

        return await self._fallback(document_ids)

    async def _attempt_cache(
        self,
        document_ids: List[str],
        usable: List[DocumentReference]
    ) -> Optional[CacheReady]:
        retries = 0

        while True:
            try:
                handle = await self.provider.create_cache(
                    [ref.file_uri for ref in usable],
                    self.config.ttl_seconds
                )
                covered = {ref.document_id for ref in usable}
                remaining = [doc_id for doc_id in document_ids if doc_id not in covered]
                logger.info(
                    f"✅ Context cache ready: {handle.name} "
                    f"({len(covered)} cached, {len(remaining)} via RAG)"
                )
                return CacheReady(handle=handle, document_ids=document_ids, remaining_doc_ids=remaining)

            except Exception as e:
                if not self.retry_policy.should_retry(e, retries):
                    if isinstance(e, CapacityExceededError):
                        logger.warning(f"⚠️ Documents exceed provider limits, not retrying: {str(e)}")
                    elif isinstance(e, StaleReferenceError):
                        logger.warning(f"⚠️ File references still stale after repair: {str(e)}")
                    else:
                        logger.error(f"❌ Context cache creation failed: {str(e)}")
                    return None

                retries += 1
                logger.warning(f"🩹 Stale file references, repairing and retrying ({retries}/{self.retry_policy.max_retries})")
                await self._repair([ref.document_id for ref in usable])

                refs = await self.resolver.resolve(document_ids)
                usable = _usable(document_ids, refs)
                if not usable:
                    return None

    async def _repair(self, document_ids: List[str]) -> bool:
        if not self.repairer:
            logger.warning("⚠️ No reference repairer configured, skipping repair")
            return False
        try:
            await self.repairer.repair(document_ids)
            return True
        except Exception as e:
            logger.error(f"❌ Repair of {len(document_ids)} documents failed: {str(e)}")
            return False

    async def _fallback(self, document_ids: List[str]) -> ContextResult:
        refs = await self.resolver.resolve(document_ids)
        usable = _usable(document_ids, refs)

        if usable:
            covered = {ref.document_id for ref in usable}
            logger.info(f"📎 Falling back to {len(usable)} direct file references")
            return DirectFiles(
                file_refs=[ref.file_uri for ref in usable],
                document_ids=[ref.document_id for ref in usable],
                remaining_doc_ids=[doc_id for doc_id in document_ids if doc_id not in covered]
            )

        logger.info("📚 Falling back to RAG for all documents")
        return RagFallback(remaining_doc_ids=document_ids)


def create_context_cache_manager(
    config: RAGConfig,
    resolver: DocumentReferenceResolver,
    repairer: Optional[ReferenceRepairer] = None,
    provider: Optional[ContextCacheProvider] = None
) -> ContextCacheManager:
    """
    Assemble a context-cache manager, using Gemini unless a provider is given.

    Raises:
        APIKeyError: If Gemini is used and the Google API key is missing
    """
    return ContextCacheManager(
        resolver=resolver,
        provider=provider or create_gemini_provider(config),
        repairer=repairer,
        config=config.context_cache
    )
