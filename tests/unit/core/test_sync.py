"""Tests for the index synchronization engine."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from searchsync.adapters.base.exceptions import IndexOperationError
from searchsync.adapters.memory.adapter import MemorySearchAdapter
from searchsync.config.settings import SyncSettings
from searchsync.core.service import SearchService
from searchsync.core.sync import IndexSyncEngine, backoff_delay
from searchsync.models.document import DocumentType
from searchsync.models.result import BulkResult
from searchsync.models.sync import SyncEvent, SyncEventType, SyncResult, SyncStatus

# Long enough for a 0.01s retry timer to fire and its re-application to finish.
SETTLE = 0.1

EngineFactory = Callable[..., IndexSyncEngine]


@pytest.fixture
async def make_engine(service: SearchService) -> AsyncIterator[EngineFactory]:
    engines: list[IndexSyncEngine] = []

    def factory(document_loader=None, **overrides) -> IndexSyncEngine:
        settings = SyncSettings(**{"retry_interval": 0.01, "drain_interval": 0.01, **overrides})
        engine = IndexSyncEngine(service, settings, document_loader=document_loader)
        engines.append(engine)
        return engine

    yield factory
    for engine in engines:
        await engine.stop()


def failing(adapter: MemorySearchAdapter, method: str = "index_document"):
    return patch.object(adapter, method, AsyncMock(side_effect=IndexOperationError("backend down")))


def test_backoff_doubles() -> None:
    delays = [backoff_delay(5.0, n) for n in range(1, 5)]
    assert delays == [5.0, 10.0, 20.0, 40.0]
    assert backoff_delay(5.0, 0) == 5.0


# ── Real-time mode ───────────────────────────────────────────────────────────


class TestRealtimeSync:
    async def test_create(self, make_engine: EngineFactory, service: SearchService, report_doc) -> None:
        engine = make_engine(realtime=True)
        result = await engine.on_create(report_doc)

        assert result.success is True
        assert result.synced_at is not None
        assert await service.get(report_doc.id) == report_doc
        record = engine.get_sync_status(report_doc.id)
        assert record.status == SyncStatus.SYNCED
        assert record.event_type == SyncEventType.CREATE
        assert record.last_synced_at == result.synced_at
        assert engine.queue_size == 0

    async def test_update_replaces_document(self, make_engine: EngineFactory, service: SearchService, report_doc) -> None:
        engine = make_engine(realtime=True)
        await engine.on_create(report_doc)
        await engine.on_update(report_doc.model_copy(update={"title": "Annual Report"}))
        assert (await service.get(report_doc.id)).title == "Annual Report"

    async def test_update_without_prior_create(self, make_engine: EngineFactory, service: SearchService, report_doc) -> None:
        engine = make_engine(realtime=True)
        result = await engine.on_update(report_doc)
        assert result.success is True
        assert await service.get(report_doc.id) is not None

    async def test_delete(self, make_engine: EngineFactory, service: SearchService, report_doc) -> None:
        engine = make_engine(realtime=True)
        await engine.on_create(report_doc)
        result = await engine.on_delete(report_doc.id, report_doc.type)

        assert result.success is True
        assert await service.get(report_doc.id) is None
        assert engine.get_sync_status(report_doc.id).status == SyncStatus.DELETED

    async def test_delete_unknown_document_succeeds(self, make_engine: EngineFactory) -> None:
        engine = make_engine(realtime=True)
        result = await engine.on_delete("ghost", DocumentType.TASK)
        assert result.success is True

    async def test_failure_is_returned_and_retried(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, service: SearchService, report_doc
    ) -> None:
        engine = make_engine(realtime=True)
        with failing(memory_adapter):
            result = await engine.on_create(report_doc)

        assert result.success is False
        assert "backend down" in result.error
        record = engine.get_sync_status(report_doc.id)
        assert record.status == SyncStatus.FAILED
        assert record.retry_count == 1
        assert engine.get_stats().scheduled_retries == 1

        await asyncio.sleep(SETTLE)
        record = engine.get_sync_status(report_doc.id)
        assert record.status == SyncStatus.SYNCED
        assert record.retry_count == 1
        assert record.error is None
        assert await service.get(report_doc.id) is not None

    async def test_retry_dropped_when_superseded(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, service: SearchService, report_doc
    ) -> None:
        engine = make_engine(realtime=True)
        with failing(memory_adapter):
            await engine.on_create(report_doc)
        await engine.on_update(report_doc.model_copy(update={"title": "Newer"}))

        await asyncio.sleep(SETTLE)
        assert (await service.get(report_doc.id)).title == "Newer"
        record = engine.get_sync_status(report_doc.id)
        assert record.status == SyncStatus.SYNCED
        assert record.event_type == SyncEventType.UPDATE
        assert record.retry_count == 0

    async def test_last_synced_kept_across_failures(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, report_doc
    ) -> None:
        engine = make_engine(realtime=True, max_retries=1)
        first = await engine.on_create(report_doc)
        with failing(memory_adapter):
            await engine.on_update(report_doc)

        record = engine.get_sync_status(report_doc.id)
        assert record.status == SyncStatus.FAILED
        assert record.last_synced_at == first.synced_at


# ── Queued mode ──────────────────────────────────────────────────────────────


class TestQueuedSync:
    async def test_accepts_optimistically(self, make_engine: EngineFactory, service: SearchService, report_doc) -> None:
        engine = make_engine(realtime=False)
        result = await engine.on_create(report_doc)

        assert result.success is True
        assert result.synced_at is None
        assert engine.queue_size == 1
        assert engine.get_sync_status(report_doc.id).status == SyncStatus.PENDING
        assert await service.get(report_doc.id) is None

        batch = await engine.process_queue()
        assert (batch.total, batch.success, batch.failed) == (1, 1, 0)
        assert engine.get_sync_status(report_doc.id).status == SyncStatus.SYNCED
        assert await service.get(report_doc.id) is not None

    async def test_coalesces_by_document_id(self, make_engine: EngineFactory, service: SearchService, report_doc) -> None:
        engine = make_engine(realtime=False)
        await engine.on_create(report_doc)
        await engine.on_update(report_doc.model_copy(update={"title": "v2"}))
        await engine.on_update(report_doc.model_copy(update={"title": "v3"}))
        assert engine.queue_size == 1

        batch = await engine.process_queue()
        assert batch.total == 1
        assert (await service.get(report_doc.id)).title == "v3"

    async def test_create_then_delete_leaves_nothing(
        self, make_engine: EngineFactory, service: SearchService, report_doc
    ) -> None:
        engine = make_engine(realtime=False)
        await engine.on_create(report_doc)
        await engine.on_delete(report_doc.id, report_doc.type)
        await engine.process_queue()

        assert await service.get(report_doc.id) is None
        assert engine.get_sync_status(report_doc.id).status == SyncStatus.DELETED

    async def test_batch_size_limits_drain(self, make_engine: EngineFactory, sample_docs) -> None:
        engine = make_engine(realtime=False, batch_size=3)
        for doc in sample_docs:
            await engine.on_create(doc)

        assert (await engine.process_queue()).total == 3
        assert engine.queue_size == 1
        assert (await engine.process_queue()).total == 1

    async def test_fifo_order(self, make_engine: EngineFactory, sample_docs) -> None:
        engine = make_engine(realtime=False)
        for doc in sample_docs:
            await engine.on_create(doc)
        batch = await engine.process_queue()
        assert [r.document_id for r in batch.results] == [d.id for d in sample_docs]

    async def test_retries_exhaust_and_pin_failed(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, report_doc
    ) -> None:
        engine = make_engine(realtime=False, max_retries=2)
        await engine.on_create(report_doc)

        with failing(memory_adapter):
            for _ in range(4):
                await engine.process_queue()
                await asyncio.sleep(SETTLE)

        record = engine.get_sync_status(report_doc.id)
        assert record.status == SyncStatus.FAILED
        assert record.retry_count == 2
        assert "backend down" in record.error
        stats = engine.get_stats()
        assert stats.scheduled_retries == 0
        assert stats.queue_size == 0

    async def test_non_retryable_error_not_retried(self, make_engine: EngineFactory, report_doc) -> None:
        engine = make_engine(realtime=True, max_retries=1)
        with failing(engine.service.adapter):
            await engine.on_create(report_doc)
        engine._dead_letters.clear()

        result = (await engine.retry_failed(include_exhausted=True)).results[0]
        assert result.success is False
        assert "No payload" in result.error
        assert engine.get_stats().scheduled_retries == 0

    async def test_drain_loop(self, make_engine: EngineFactory, service: SearchService, report_doc) -> None:
        engine = make_engine(realtime=False)
        engine.start(interval=0.01)
        assert engine.is_running is True

        await engine.on_create(report_doc)
        await asyncio.sleep(SETTLE)
        assert engine.get_sync_status(report_doc.id).status == SyncStatus.SYNCED

        await engine.stop()
        assert engine.is_running is False

    async def test_drain_loop_survives_failures(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, service: SearchService, sample_docs
    ) -> None:
        engine = make_engine(realtime=False, max_retries=1)
        engine.start(interval=0.01)
        with failing(memory_adapter):
            await engine.on_create(sample_docs[0])
            await asyncio.sleep(SETTLE)
        await engine.on_create(sample_docs[1])
        await asyncio.sleep(SETTLE)

        assert engine.get_sync_status(sample_docs[0].id).status == SyncStatus.FAILED
        assert engine.get_sync_status(sample_docs[1].id).status == SyncStatus.SYNCED

    async def test_stop_flushes_queue(self, make_engine: EngineFactory, service: SearchService, report_doc) -> None:
        engine = make_engine(realtime=False)
        await engine.on_create(report_doc)
        await engine.stop(flush=True)
        assert engine.queue_size == 0
        assert await service.get(report_doc.id) is not None


# ── Shutdown ─────────────────────────────────────────────────────────────────


class TestShutdown:
    async def test_stop_finishes_inflight_batch(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, service: SearchService, sample_docs
    ) -> None:
        engine = make_engine(realtime=False)
        real_index = memory_adapter.index_document
        started = asyncio.Event()

        async def slow_index(*args, **kwargs) -> None:
            started.set()
            await asyncio.sleep(0.02)
            await real_index(*args, **kwargs)

        with patch.object(memory_adapter, "index_document", AsyncMock(side_effect=slow_index)):
            for doc in sample_docs:
                await engine.on_create(doc)
            engine.start(interval=0.01)
            await started.wait()
            await engine.stop(flush=True)

        assert engine.is_running is False
        assert engine.queue_size == 0
        assert all(engine.get_sync_status(d.id).status == SyncStatus.SYNCED for d in sample_docs)
        assert await service.count() == len(sample_docs)

    async def test_cancelled_drain_requeues_unapplied_events(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, sample_docs
    ) -> None:
        engine = make_engine(realtime=False)
        for doc in sample_docs:
            await engine.on_create(doc)
        blocked = asyncio.Event()

        async def hang(*args, **kwargs) -> None:
            blocked.set()
            await asyncio.Event().wait()

        with patch.object(memory_adapter, "index_document", AsyncMock(side_effect=hang)):
            task = asyncio.create_task(engine.process_queue())
            await blocked.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert engine.queue_size == len(sample_docs)
        assert engine.get_sync_status(sample_docs[0].id).status == SyncStatus.PENDING
        batch = await engine.process_queue()
        assert [r.document_id for r in batch.results] == [d.id for d in sample_docs]
        assert batch.success == len(sample_docs)

    async def test_requeue_skips_superseded_events(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, service: SearchService, report_doc
    ) -> None:
        engine = make_engine(realtime=False)
        await engine.on_create(report_doc)
        blocked = asyncio.Event()

        async def hang(*args, **kwargs) -> None:
            blocked.set()
            await asyncio.Event().wait()

        with patch.object(memory_adapter, "index_document", AsyncMock(side_effect=hang)):
            task = asyncio.create_task(engine.process_queue())
            await blocked.wait()
            await engine.on_update(report_doc.model_copy(update={"title": "Newer"}))
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        assert engine.queue_size == 1
        await engine.process_queue()
        assert (await service.get(report_doc.id)).title == "Newer"

    async def test_failures_during_flush_are_not_rescheduled(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, service: SearchService, report_doc
    ) -> None:
        engine = make_engine(realtime=False)
        await engine.on_create(report_doc)
        with failing(memory_adapter):
            await engine.stop(flush=True)
            await asyncio.sleep(SETTLE)

        stats = engine.get_stats()
        assert stats.scheduled_retries == 0
        assert stats.queue_size == 0
        record = engine.get_sync_status(report_doc.id)
        assert record.status == SyncStatus.FAILED
        assert record.retry_count == 1

        # The dead letter survives the shutdown for a manual retry.
        batch = await engine.retry_failed()
        assert batch.success == 1
        assert await service.get(report_doc.id) is not None

    async def test_restart_schedules_retries_again(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, report_doc
    ) -> None:
        engine = make_engine(realtime=True)
        await engine.stop()
        engine.start()
        with failing(memory_adapter):
            await engine.on_create(report_doc)
        assert engine.get_stats().scheduled_retries == 1


# ── Overflow ─────────────────────────────────────────────────────────────────


class TestQueueOverflow:
    async def test_evicts_oldest_and_escalates(self, make_engine: EngineFactory, sample_docs) -> None:
        engine = make_engine(realtime=False, max_queue_size=2)
        listener = MagicMock()
        engine.add_listener(SyncEventType.CREATE, listener)

        for doc in sample_docs[:3]:
            await engine.on_create(doc)

        assert engine.queue_size == 2
        evicted = engine.get_sync_status(sample_docs[0].id)
        assert evicted.status == SyncStatus.FAILED
        assert "Evicted" in evicted.error
        event, result = listener.call_args.args
        assert event.document_id == sample_docs[0].id
        assert result.success is False

        stats = engine.get_stats()
        assert (stats.pending_count, stats.failed_count) == (2, 1)

    async def test_evicted_event_recoverable(self, make_engine: EngineFactory, service: SearchService, sample_docs) -> None:
        engine = make_engine(realtime=False, max_queue_size=2)
        for doc in sample_docs[:3]:
            await engine.on_create(doc)

        batch = await engine.retry_failed()
        assert (batch.total, batch.success) == (1, 1)
        assert await service.get(sample_docs[0].id) is not None
        assert engine.get_sync_status(sample_docs[0].id).status == SyncStatus.SYNCED

    async def test_replacing_at_capacity_does_not_evict(self, make_engine: EngineFactory, sample_docs) -> None:
        engine = make_engine(realtime=False, max_queue_size=2)
        await engine.on_create(sample_docs[0])
        await engine.on_create(sample_docs[1])
        await engine.on_update(sample_docs[0])

        assert engine.queue_size == 2
        assert engine.get_stats().failed_count == 0

    async def test_clear_queue(self, make_engine: EngineFactory, sample_docs) -> None:
        engine = make_engine(realtime=False)
        for doc in sample_docs:
            await engine.on_create(doc)
        assert engine.clear_queue() == 4
        assert engine.queue_size == 0


# ── Retry failed ─────────────────────────────────────────────────────────────


class TestRetryFailed:
    async def test_skips_exhausted_records(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, report_doc
    ) -> None:
        engine = make_engine(realtime=True, max_retries=1)
        with failing(memory_adapter):
            await engine.on_create(report_doc)

        assert (await engine.retry_failed()).total == 0
        batch = await engine.retry_failed(include_exhausted=True)
        assert (batch.total, batch.success) == (1, 1)

    async def test_uses_document_loader(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, service: SearchService, report_doc
    ) -> None:
        loader = AsyncMock(return_value=report_doc)
        engine = make_engine(realtime=True, max_retries=1, document_loader=loader)
        with failing(memory_adapter):
            await engine.on_create(report_doc)
        engine._dead_letters.clear()

        batch = await engine.retry_failed(include_exhausted=True)
        assert batch.success == 1
        loader.assert_awaited_once_with(report_doc.id, report_doc.type)
        assert await service.get(report_doc.id) is not None

    async def test_failed_delete_retried_without_payload(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, service: SearchService, report_doc
    ) -> None:
        await service.index(report_doc)
        engine = make_engine(realtime=True, max_retries=1)
        with failing(memory_adapter, "delete_document"):
            await engine.on_delete(report_doc.id, report_doc.type)
        engine._dead_letters.clear()

        assert engine.get_sync_status(report_doc.id).status == SyncStatus.FAILED
        batch = await engine.retry_failed(include_exhausted=True)
        assert batch.success == 1
        assert await service.get(report_doc.id) is None
        assert engine.get_sync_status(report_doc.id).status == SyncStatus.DELETED


# ── Bulk ─────────────────────────────────────────────────────────────────────


class TestBulkSync:
    async def test_chunks_by_batch_size(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, service: SearchService, sample_docs
    ) -> None:
        engine = make_engine(batch_size=3)
        with patch.object(
            memory_adapter, "bulk_index_documents", wraps=memory_adapter.bulk_index_documents
        ) as bulk:
            batch = await engine.bulk_sync(sample_docs)

        assert bulk.await_count == 2
        assert (batch.total, batch.success, batch.failed) == (4, 4, 0)
        assert await service.count() == 4
        assert all(engine.get_sync_status(d.id).status == SyncStatus.SYNCED for d in sample_docs)

    async def test_per_item_failures(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, sample_docs
    ) -> None:
        engine = make_engine()
        result = BulkResult(success=3, failed=1, errors={"art-1": "mapper_parsing_exception"})
        with patch.object(memory_adapter, "bulk_index_documents", AsyncMock(return_value=result)):
            batch = await engine.bulk_sync(sample_docs)

        assert (batch.success, batch.failed) == (3, 1)
        record = engine.get_sync_status("art-1")
        assert record.status == SyncStatus.FAILED
        assert record.error == "mapper_parsing_exception"
        assert engine.get_sync_status("art-2").status == SyncStatus.SYNCED

    async def test_whole_chunk_failure_does_not_abort(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, sample_docs
    ) -> None:
        engine = make_engine(batch_size=2)
        calls = AsyncMock(side_effect=[IndexOperationError("timeout"), BulkResult(success=2)])
        with patch.object(memory_adapter, "bulk_index_documents", calls):
            batch = await engine.bulk_sync(sample_docs)

        assert (batch.success, batch.failed) == (2, 2)
        assert engine.get_stats().failed_count == 2
        # Failed bulk items can be recovered from their dead letters.
        assert (await engine.retry_failed()).success == 2


# ── Listeners & ledger ───────────────────────────────────────────────────────


class TestListeners:
    async def test_sync_and_async_listeners(self, make_engine: EngineFactory, report_doc) -> None:
        engine = make_engine(realtime=True)
        seen: list[tuple[SyncEvent, SyncResult]] = []

        async def async_listener(event: SyncEvent, result: SyncResult) -> None:
            seen.append((event, result))

        sync_listener = MagicMock()
        engine.add_listener(SyncEventType.CREATE, async_listener)
        engine.add_listener(SyncEventType.CREATE, sync_listener)

        await engine.on_create(report_doc)
        await engine.on_delete(report_doc.id, report_doc.type)

        assert len(seen) == 1
        assert seen[0][0].event_type == SyncEventType.CREATE
        assert seen[0][1].success is True
        sync_listener.assert_called_once()

    async def test_failing_listener_is_isolated(self, make_engine: EngineFactory, report_doc) -> None:
        engine = make_engine(realtime=True)
        broken = MagicMock(side_effect=RuntimeError("listener bug"))
        healthy = MagicMock()
        engine.add_listener(SyncEventType.UPDATE, broken)
        engine.add_listener(SyncEventType.UPDATE, healthy)

        result = await engine.on_update(report_doc)
        assert result.success is True
        healthy.assert_called_once()

    async def test_remove_listener(self, make_engine: EngineFactory, report_doc) -> None:
        engine = make_engine(realtime=True)
        listener = MagicMock()
        engine.add_listener(SyncEventType.CREATE, listener)
        engine.remove_listener(SyncEventType.CREATE, listener)
        engine.remove_listener(SyncEventType.CREATE, listener)

        await engine.on_create(report_doc)
        listener.assert_not_called()

    async def test_failure_notifies_listener(
        self, make_engine: EngineFactory, memory_adapter: MemorySearchAdapter, report_doc
    ) -> None:
        engine = make_engine(realtime=True, max_retries=1)
        listener = MagicMock()
        engine.add_listener(SyncEventType.CREATE, listener)
        with failing(memory_adapter):
            await engine.on_create(report_doc)
        assert listener.call_args.args[1].success is False


class TestLedger:
    async def test_unknown_document_has_no_record(self, make_engine: EngineFactory) -> None:
        assert make_engine().get_sync_status("never-seen") is None

    async def test_stats(self, make_engine: EngineFactory, sample_docs) -> None:
        engine = make_engine(realtime=True)
        for doc in sample_docs:
            await engine.on_create(doc)
        await engine.on_delete(sample_docs[0].id, sample_docs[0].type)

        stats = engine.get_stats()
        assert stats.synced_count == 3
        assert stats.deleted_count == 1
        assert stats.last_sync_at is not None

    async def test_clear_records(self, make_engine: EngineFactory, report_doc) -> None:
        engine = make_engine(realtime=True)
        await engine.on_create(report_doc)
        engine.clear_records()
        assert engine.get_sync_status(report_doc.id) is None
        assert engine.get_stats().synced_count == 0
