"""
Test suite for the context-cache manager and its Gemini provider.

Covers cache reuse, the bounded repair-and-retry on stale file references,
degradation to direct files and RAG, and provider error classification.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from typing import Dict, List
from unittest.mock import AsyncMock, MagicMock

import pytest
from google.genai import errors

from library_rag.config.settings import ContextCacheConfig, RAGConfig
from library_rag.core.context import (
    CacheReady,
    ContextCacheManager,
    DirectFiles,
    DocumentReferenceResolver,
    GeminiContextCacheProvider,
    RagFallback,
    RetryPolicy,
    classify_provider_error,
    create_context_cache_manager,
    create_gemini_provider,
)
from library_rag.core.models import ContextCacheHandle, DocumentReference, utcnow
from library_rag.utils.exceptions import (
    APIKeyError,
    CapacityExceededError,
    ContextCacheError,
    StaleReferenceError,
    ValidationError,
)


class FakeResolver(DocumentReferenceResolver):
    """In-memory reference table standing in for the persistence layer."""

    def __init__(self, refs: Dict[str, DocumentReference]):
        self.refs = refs
        self.calls: List[List[str]] = []

    async def resolve(self, document_ids: List[str]) -> Dict[str, DocumentReference]:
        self.calls.append(list(document_ids))
        return {doc_id: self.refs[doc_id] for doc_id in document_ids if doc_id in self.refs}


def fresh_ref(doc_id: str) -> DocumentReference:
    return DocumentReference(document_id=doc_id, file_uri=f"files/{doc_id}", synced_at=utcnow())


def make_handle(name: str = "cachedContents/1", seconds: int = 3600) -> ContextCacheHandle:
    return ContextCacheHandle(name=name, expire_time=utcnow() + timedelta(seconds=seconds))


@pytest.fixture
def resolver() -> FakeResolver:
    return FakeResolver({"d1": fresh_ref("d1"), "d2": fresh_ref("d2")})


@pytest.fixture
def provider() -> MagicMock:
    provider = MagicMock()
    provider.create_cache = AsyncMock(return_value=make_handle())
    return provider


@pytest.fixture
def repairer() -> MagicMock:
    repairer = MagicMock()
    repairer.repair = AsyncMock(return_value=None)
    return repairer


@pytest.fixture
def manager(resolver, provider, repairer) -> ContextCacheManager:
    return ContextCacheManager(resolver, provider, repairer, ContextCacheConfig(ttl_seconds=600))


class TestPrepareContext:
    """Test suite for ContextCacheManager.prepare_context."""

    @pytest.mark.asyncio
    async def test_empty_selection_needs_nothing(self, manager, provider) -> None:
        result = await manager.prepare_context([])

        assert result == RagFallback(remaining_doc_ids=[])
        provider.create_cache.assert_not_called()

    @pytest.mark.asyncio
    async def test_documents_without_provider_files_fall_back_to_rag(self, provider, repairer) -> None:
        resolver = FakeResolver({"d1": DocumentReference(document_id="d1")})
        manager = ContextCacheManager(resolver, provider, repairer, ContextCacheConfig(proactive_repair=False))

        result = await manager.prepare_context(["d1", "d2"])

        assert isinstance(result, RagFallback)
        assert result.remaining_doc_ids == ["d1", "d2"]
        provider.create_cache.assert_not_called()

    @pytest.mark.asyncio
    async def test_creates_cache_over_resolved_files(self, manager, provider) -> None:
        result = await manager.prepare_context(["d1", "d2", "d3"])

        assert isinstance(result, CacheReady)
        assert result.cache_name == "cachedContents/1"
        assert result.remaining_doc_ids == ["d3"]
        provider.create_cache.assert_awaited_once_with(["files/d1", "files/d2"], 600)

    @pytest.mark.asyncio
    async def test_duplicate_ids_are_collapsed(self, manager, provider) -> None:
        result = await manager.prepare_context(["d1", "d1", "d2"])

        assert result.document_ids == ["d1", "d2"]
        provider.create_cache.assert_awaited_once_with(["files/d1", "files/d2"], 600)

    @pytest.mark.asyncio
    async def test_reuses_live_cache_for_same_selection(self, manager, provider, resolver) -> None:
        first = await manager.prepare_context(["d1", "d2"])

        second = await manager.prepare_context(["d2", "d1"], current=first)

        assert second is first
        assert provider.create_cache.await_count == 1
        assert len(resolver.calls) == 1

    @pytest.mark.asyncio
    async def test_changed_selection_creates_new_cache(self, manager, provider) -> None:
        first = await manager.prepare_context(["d1", "d2"])

        await manager.prepare_context(["d1"], current=first)

        assert provider.create_cache.await_count == 2

    @pytest.mark.asyncio
    async def test_expired_cache_is_not_reused(self, manager, provider) -> None:
        expired = CacheReady(
            handle=ContextCacheHandle(name="cachedContents/old", expire_time=utcnow() - timedelta(seconds=1)),
            document_ids=["d1", "d2"],
        )

        result = await manager.prepare_context(["d1", "d2"], current=expired)

        assert result.cache_name == "cachedContents/1"
        provider.create_cache.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_stale_reference_is_repaired_once_then_succeeds(
        self, manager, provider, repairer, resolver
    ) -> None:
        provider.create_cache.side_effect = [StaleReferenceError("file expired"), make_handle("cachedContents/2")]

        async def repair(document_ids):
            for doc_id in document_ids:
                resolver.refs[doc_id] = DocumentReference(
                    document_id=doc_id, file_uri=f"files/{doc_id}-new", synced_at=utcnow()
                )

        repairer.repair.side_effect = repair

        result = await manager.prepare_context(["d1", "d2"])

        assert isinstance(result, CacheReady)
        assert result.cache_name == "cachedContents/2"
        repairer.repair.assert_awaited_once_with(["d1", "d2"])
        assert provider.create_cache.await_args_list[1].args[0] == ["files/d1-new", "files/d2-new"]

    @pytest.mark.asyncio
    async def test_repeated_stale_reference_stops_after_one_retry(
        self, manager, provider, repairer
    ) -> None:
        provider.create_cache.side_effect = StaleReferenceError("permission denied")

        result = await manager.prepare_context(["d1", "d2"])

        assert provider.create_cache.await_count == 2
        repairer.repair.assert_awaited_once()
        assert isinstance(result, DirectFiles)
        assert result.file_refs == ["files/d1", "files/d2"]
        assert result.remaining_doc_ids == []

    @pytest.mark.asyncio
    async def test_no_retry_when_disabled(self, resolver, provider, repairer) -> None:
        provider.create_cache.side_effect = StaleReferenceError("file expired")
        manager = ContextCacheManager(resolver, provider, repairer, retry_policy=RetryPolicy(max_retries=0))

        result = await manager.prepare_context(["d1"])

        assert provider.create_cache.await_count == 1
        repairer.repair.assert_not_called()
        assert isinstance(result, DirectFiles)

    @pytest.mark.asyncio
    async def test_capacity_errors_are_not_retried(self, manager, provider, repairer) -> None:
        provider.create_cache.side_effect = CapacityExceededError("too many pages")

        result = await manager.prepare_context(["d1", "d2", "d3"])

        assert provider.create_cache.await_count == 1
        repairer.repair.assert_awaited_once_with(["d3"])
        assert isinstance(result, DirectFiles)
        assert result.document_ids == ["d1", "d2"]
        assert result.remaining_doc_ids == ["d3"]

    @pytest.mark.asyncio
    async def test_unexpected_error_degrades_to_fallback(self, manager, provider, repairer) -> None:
        provider.create_cache.side_effect = RuntimeError("connection reset")

        result = await manager.prepare_context(["d1"])

        assert isinstance(result, DirectFiles)
        repairer.repair.assert_not_called()

    @pytest.mark.asyncio
    async def test_failed_repair_still_falls_back(self, manager, provider, repairer) -> None:
        provider.create_cache.side_effect = StaleReferenceError("file expired")
        repairer.repair.side_effect = RuntimeError("upload failed")

        result = await manager.prepare_context(["d1"])

        assert isinstance(result, DirectFiles)
        assert provider.create_cache.await_count == 2

    @pytest.mark.asyncio
    async def test_without_repairer_stale_errors_fall_back(self, resolver, provider) -> None:
        provider.create_cache.side_effect = StaleReferenceError("file expired")
        manager = ContextCacheManager(resolver, provider)

        result = await manager.prepare_context(["d1", "d2"])

        assert isinstance(result, DirectFiles)

    @pytest.mark.asyncio
    async def test_outdated_files_are_synced_before_caching(self, provider, repairer) -> None:
        old = utcnow() - timedelta(hours=45)
        resolver = FakeResolver({
            "d1": DocumentReference(document_id="d1", file_uri="files/d1", synced_at=old),
            "d2": fresh_ref("d2"),
        })
        manager = ContextCacheManager(resolver, provider, repairer)

        result = await manager.prepare_context(["d1", "d2"])

        repairer.repair.assert_awaited_once_with(["d1"])
        assert len(resolver.calls) == 2
        assert isinstance(result, CacheReady)

    @pytest.mark.asyncio
    async def test_proactive_sync_can_be_disabled(self, provider, repairer) -> None:
        old = utcnow() - timedelta(hours=45)
        resolver = FakeResolver({"d1": DocumentReference(document_id="d1", file_uri="files/d1", synced_at=old)})
        manager = ContextCacheManager(resolver, provider, repairer, ContextCacheConfig(proactive_repair=False))

        result = await manager.prepare_context(["d1"])

        repairer.repair.assert_not_called()
        assert isinstance(result, CacheReady)
        provider.create_cache.assert_awaited_once_with(["files/d1"], 3600)


class TestResultShapes:
    """Test suite for context result serialization."""

    def test_cache_ready_to_dict(self) -> None:
        expire = datetime(2030, 1, 1, 12, 0, tzinfo=timezone.utc)
        result = CacheReady(
            handle=ContextCacheHandle(name="cachedContents/9", expire_time=expire),
            document_ids=["a", "b"],
            remaining_doc_ids=["b"],
        )

        assert result.to_dict() == {
            "cacheName": "cachedContents/9",
            "expireTime": "2030-01-01T12:00:00+00:00",
            "remainingDocIds": ["b"],
        }
        assert result.covers(["b", "a"])
        assert not result.covers(["a"])

    def test_direct_files_and_rag_fallback_to_dict(self) -> None:
        direct = DirectFiles(file_refs=["files/a"], document_ids=["a"], remaining_doc_ids=["b"])
        fallback = RagFallback(remaining_doc_ids=["a", "b"])

        assert direct.to_dict() == {"remainingDocIds": ["b"], "directFileRefs": ["files/a"]}
        assert fallback.to_dict() == {"remainingDocIds": ["a", "b"]}

    def test_naive_expire_time_is_treated_as_utc(self) -> None:
        handle = ContextCacheHandle(name="c", expire_time=datetime(2030, 1, 1))

        assert handle.expire_time.tzinfo is not None
        assert handle.is_expired(now=datetime(2030, 1, 1, 0, 0, 1, tzinfo=timezone.utc))
        assert handle.remaining_seconds(now=datetime(2029, 12, 31, 23, 59, 0, tzinfo=timezone.utc)) == 60


class TestRetryPolicy:
    """Test suite for RetryPolicy."""

    @pytest.mark.parametrize("max_retries", [-1, 2])
    def test_rejects_out_of_range(self, max_retries: int) -> None:
        with pytest.raises(ValidationError):
            RetryPolicy(max_retries=max_retries)

    def test_retries_only_stale_references_once(self) -> None:
        policy = RetryPolicy()

        assert policy.should_retry(StaleReferenceError("x"), 0) is True
        assert policy.should_retry(StaleReferenceError("x"), 1) is False
        assert policy.should_retry(CapacityExceededError("x"), 0) is False
        assert policy.should_retry(RuntimeError("x"), 0) is False

    def test_custom_predicate(self) -> None:
        policy = RetryPolicy(is_retryable=lambda error: isinstance(error, TimeoutError))

        assert policy.should_retry(TimeoutError(), 0) is True
        assert policy.should_retry(StaleReferenceError("x"), 0) is False


class TestClassifyProviderError:
    """Test suite for provider error classification."""

    @pytest.mark.parametrize("code,message,expected", [
        (403, "", StaleReferenceError),
        (404, "", StaleReferenceError),
        (413, "", CapacityExceededError),
        (429, "", CapacityExceededError),
        (400, "The caller does not have permission", StaleReferenceError),
        (400, "File has expired", StaleReferenceError),
        (400, "Document has too many pages", CapacityExceededError),
        (400, "Input token count exceeds the maximum", CapacityExceededError),
        (500, "Internal error", ContextCacheError),
        (None, "", ContextCacheError),
    ])
    def test_classification(self, code, message, expected) -> None:
        assert classify_provider_error(code, message) is expected


class TestGeminiContextCacheProvider:
    """Test suite for the Gemini cached-contents provider."""

    @pytest.fixture
    def client(self) -> MagicMock:
        client = MagicMock()
        client.aio.caches.create = AsyncMock()
        return client

    @pytest.mark.asyncio
    async def test_creates_cache_from_file_uris(self, client) -> None:
        expire = datetime(2030, 1, 1, tzinfo=timezone.utc)
        client.aio.caches.create.return_value = SimpleNamespace(name="cachedContents/abc", expire_time=expire)
        provider = GeminiContextCacheProvider(client, ContextCacheConfig(model_name="gemini-test"))

        handle = await provider.create_cache(["files/a", "files/b"], 900)

        assert handle.name == "cachedContents/abc"
        assert handle.expire_time == expire
        assert handle.document_refs == ["files/a", "files/b"]
        kwargs = client.aio.caches.create.await_args.kwargs
        assert kwargs["model"] == "gemini-test"
        assert kwargs["config"].ttl == "900s"
        assert [c.parts[0].file_data.file_uri for c in kwargs["config"].contents] == ["files/a", "files/b"]

    @pytest.mark.asyncio
    async def test_missing_expire_time_uses_ttl(self, client) -> None:
        client.aio.caches.create.return_value = SimpleNamespace(name="cachedContents/abc", expire_time=None)
        provider = GeminiContextCacheProvider(client)

        handle = await provider.create_cache(["files/a"], 120)

        assert 100 < handle.remaining_seconds() <= 120

    @pytest.mark.asyncio
    @pytest.mark.parametrize("code,message,expected", [
        (404, "File files/a not found", StaleReferenceError),
        (400, "Document has too many pages", CapacityExceededError),
        (400, "Invalid argument", ContextCacheError),
    ])
    async def test_api_errors_are_classified(self, client, code, message, expected) -> None:
        client.aio.caches.create.side_effect = errors.ClientError(
            code, {"error": {"code": code, "message": message, "status": "FAILED"}}
        )
        provider = GeminiContextCacheProvider(client)

        with pytest.raises(expected) as exc_info:
            await provider.create_cache(["files/a"], 60)

        assert type(exc_info.value) is expected
        assert isinstance(exc_info.value.__cause__, errors.APIError)

    def test_factory_requires_google_key(self) -> None:
        with pytest.raises(APIKeyError):
            create_gemini_provider(RAGConfig(google_api_key=None))

    def test_factory_accepts_prebuilt_client(self, client) -> None:
        provider = create_gemini_provider(RAGConfig(google_api_key=None), client=client)

        assert provider.client is client

    def test_manager_factory_uses_given_provider(self, provider, resolver) -> None:
        manager = create_context_cache_manager(RAGConfig(), resolver, provider=provider)

        assert manager.provider is provider
        assert manager.retry_policy.max_retries == 1
