"""Index synchronization engine — Keeps the search index consistent with the record store.

The engine accepts create / update / delete events for documents and applies
them to a ``SearchService`` in one of two modes, fixed at construction:

  - **Real-time** — the call drives the service and returns the outcome.
  - **Queued** — the call enqueues the event and returns an optimistic
    "accepted" result.  A drain loop applies queued events on an interval.

Every document id has at most one ledger record (``IndexSyncRecord``) that
tracks the latest known state::

    pending ──► synced ──► pending ──► ...
       │          ▲
       ▼          │
    failed ───────┘            delete ──► deleted

The queue is keyed by document id.  A new event for an id that is already
queued replaces the queued one, so only the latest intent survives.  When
the queue is full the oldest entry is evicted and escalated: its record is
marked failed, the event is kept as a dead letter for ``retry_failed()``
and listeners are notified.

Failed applications are retried with exponential backoff computed from the
event's own retry counter.  A retry is dropped if a newer event for the same
document was accepted in the meantime.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
import itertools
import logging
from collections import OrderedDict
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime
from typing import Any

from searchsync.adapters.base.exceptions import DocumentMissingError
from searchsync.config.settings import SyncSettings
from searchsync.core.service import SearchService
from searchsync.models.document import DocumentType, SearchableDocument
from searchsync.models.sync import (
    BatchSyncResult,
    IndexSyncRecord,
    SyncEvent,
    SyncEventType,
    SyncResult,
    SyncStats,
    SyncStatus,
    utcnow,
)

logger = logging.getLogger(__name__)

SyncListener = Callable[[SyncEvent, SyncResult], Any]
DocumentLoader = Callable[[str, DocumentType], Awaitable[SearchableDocument | None]]


def backoff_delay(base: float, retry_count: int) -> float:
    """Delay before retry number ``retry_count`` (1-based): ``base * 2**(n-1)``."""
    return base * 2 ** max(retry_count - 1, 0)


class IndexSyncEngine:
    """Applies document change events to a search service.

    Args:
        service: The search service to apply events to.
        settings: Sync behaviour. Uses defaults if None.
        document_loader: Optional async callable ``(document_id, document_type)``
            returning the current document from the record store.  Used when a
            failed create/update has to be retried and no payload is held.
    """

    def __init__(
        self,
        service: SearchService,
        settings: SyncSettings | None = None,
        document_loader: DocumentLoader | None = None,
    ) -> None:
        self.service = service
        self.settings = settings or SyncSettings()
        self._document_loader = document_loader

        self._queue: OrderedDict[str, SyncEvent] = OrderedDict()
        self._records: dict[str, IndexSyncRecord] = {}
        self._dead_letters: dict[str, SyncEvent] = {}
        self._latest: dict[str, int] = {}
        self._sequence = itertools.count(1)
        self._listeners: dict[SyncEventType, list[SyncListener]] = {kind: [] for kind in SyncEventType}

        self._retry_tasks: set[asyncio.Task[None]] = set()
        self._loop_task: asyncio.Task[None] | None = None
        self._stop_requested: asyncio.Event | None = None
        self._stopping = False
        self._processing = False
        self._last_sync_at: datetime | None = None

    @property
    def realtime(self) -> bool:
        return self.settings.realtime

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    # ── Inbound events ───────────────────────────────────────────────────

    async def on_create(self, document: SearchableDocument) -> SyncResult:
        return await self._submit(self._new_event(SyncEventType.CREATE, document.id, document.type, document))

    async def on_update(self, document: SearchableDocument) -> SyncResult:
        return await self._submit(self._new_event(SyncEventType.UPDATE, document.id, document.type, document))

    async def on_delete(self, document_id: str, document_type: DocumentType) -> SyncResult:
        return await self._submit(self._new_event(SyncEventType.DELETE, document_id, document_type))

    def _new_event(
        self,
        event_type: SyncEventType,
        document_id: str,
        document_type: DocumentType,
        document: SearchableDocument | None = None,
        retry_count: int = 0,
    ) -> SyncEvent:
        sequence = next(self._sequence)
        self._latest[document_id] = sequence
        self._dead_letters.pop(document_id, None)
        return SyncEvent(
            document_id=document_id,
            event_type=event_type,
            document_type=document_type,
            document=document,
            retry_count=retry_count,
            sequence=sequence,
        )

    async def _submit(self, event: SyncEvent) -> SyncResult:
        if self.realtime:
            return await self._apply(event)

        await self._enqueue(event)
        return SyncResult(
            success=True,
            document_id=event.document_id,
            document_type=event.document_type,
            event_type=event.event_type,
        )

    # ── Queue ────────────────────────────────────────────────────────────

    async def _enqueue(self, event: SyncEvent) -> None:
        evicted: SyncEvent | None = None
        if event.document_id in self._queue:
            self._queue[event.document_id] = event
        else:
            if len(self._queue) >= self.settings.max_queue_size:
                _, evicted = self._queue.popitem(last=False)
            self._queue[event.document_id] = event

        self._write_record(event, SyncStatus.PENDING, retry_count=event.retry_count)

        if evicted is not None:
            await self._escalate_eviction(evicted)

    async def _escalate_eviction(self, event: SyncEvent) -> None:
        error = f"Evicted from full sync queue (capacity {self.settings.max_queue_size})"
        logger.warning(
            "Sync queue full: evicted %s event for %s %s",
            event.event_type.value,
            event.document_type.value,
            event.document_id,
        )
        self._write_record(event, SyncStatus.FAILED, error=error, retry_count=event.retry_count)
        self._dead_letters[event.document_id] = event
        await self._notify(
            event,
            SyncResult(
                success=False,
                document_id=event.document_id,
                document_type=event.document_type,
                event_type=event.event_type,
                error=error,
            ),
        )

    def clear_queue(self) -> int:
        """Drop every queued event. Returns the number dropped."""
        dropped = len(self._queue)
        self._queue.clear()
        if dropped:
            logger.warning("Sync queue cleared: %d pending events dropped", dropped)
        return dropped

    # ── Drain loop ───────────────────────────────────────────────────────

    def start(self, interval: float | None = None) -> None:
        """Start the background drain loop. Requires a running event loop."""
        if self.is_running:
            return
        interval = interval or self.settings.drain_interval
        self._stopping = False
        self._stop_requested = asyncio.Event()
        self._loop_task = asyncio.get_running_loop().create_task(self._run(interval, self._stop_requested))
        logger.info("Sync drain loop started (interval %.1fs, batch %d)", interval, self.settings.batch_size)

    async def stop(self, flush: bool = False) -> None:
        """Stop the drain loop and cancel pending retries.

        The loop finishes the batch it is applying before it exits.  Failures
        from then on are not rescheduled: they stay ``failed`` with a dead
        letter for ``retry_failed()``.

        Args:
            flush: Drain the queue completely before stopping.
        """
        self._stopping = True
        if self._loop_task is not None:
            if self._stop_requested is not None:
                self._stop_requested.set()
            with contextlib.suppress(asyncio.CancelledError):
                await self._loop_task
            self._loop_task = None
            self._stop_requested = None

        for task in list(self._retry_tasks):
            task.cancel()
        if self._retry_tasks:
            await asyncio.gather(*self._retry_tasks, return_exceptions=True)
        self._retry_tasks.clear()

        if flush:
            while self._queue:
                if not (await self.process_queue()).total:
                    # Another caller is draining; let it finish its batch.
                    await asyncio.sleep(0)
        logger.info("Sync engine stopped")

    async def _run(self, interval: float, stop_requested: asyncio.Event) -> None:
        while True:
            with contextlib.suppress(TimeoutError):
                await asyncio.wait_for(stop_requested.wait(), timeout=interval)
            if stop_requested.is_set():
                return
            try:
                await self.process_queue()
            except Exception:
                logger.exception("Sync drain cycle failed")

    async def process_queue(self) -> BatchSyncResult:
        """Apply up to ``batch_size`` queued events, oldest first.

        If the drain is cancelled midway, the events it had not finished are
        put back at the head of the queue.
        """
        if self._processing:
            return BatchSyncResult()

        self._processing = True
        batch: list[SyncEvent] = []
        results: list[SyncResult] = []
        try:
            while self._queue and len(batch) < self.settings.batch_size:
                batch.append(self._queue.popitem(last=False)[1])
            for event in batch:
                results.append(await self._apply(event))
        except asyncio.CancelledError:
            self._requeue_front(batch[len(results) :])
            raise
        finally:
            self._processing = False

        if results:
            logger.debug("Processed %d queued sync events (%d remaining)", len(results), len(self._queue))
        return _batch_result(results)

    def _requeue_front(self, events: list[SyncEvent]) -> None:
        restored = 0
        for event in reversed(events):
            # A newer event for the same document supersedes the interrupted one.
            if event.document_id in self._queue or not self._is_current(event):
                continue
            self._queue[event.document_id] = event
            self._queue.move_to_end(event.document_id, last=False)
            restored += 1
        if restored:
            logger.warning("Sync drain interrupted: %d events returned to the queue", restored)

    # ── Application ──────────────────────────────────────────────────────

    async def _apply(self, event: SyncEvent) -> SyncResult:
        try:
            await self._execute(event)
        except Exception as e:
            result = self._handle_failure(event, e)
        else:
            result = self._handle_success(event)
        await self._notify(event, result)
        return result

    async def _execute(self, event: SyncEvent) -> None:
        if event.event_type == SyncEventType.DELETE:
            await self.service.delete(event.document_id)
            return

        document = event.document
        if document is None and self._document_loader is not None:
            document = await self._document_loader(event.document_id, event.document_type)
        if document is None:
            raise DocumentMissingError(
                f"No payload for {event.event_type.value} of document '{event.document_id}'"
            )
        # Full replace keeps create and update idempotent.
        await self.service.index(document)

    def _handle_success(self, event: SyncEvent) -> SyncResult:
        now = utcnow()
        status = SyncStatus.DELETED if event.event_type == SyncEventType.DELETE else SyncStatus.SYNCED
        self._write_record(event, status, retry_count=event.retry_count, synced_at=now)
        if self._is_current(event):
            self._dead_letters.pop(event.document_id, None)
        self._last_sync_at = now
        return SyncResult(
            success=True,
            document_id=event.document_id,
            document_type=event.document_type,
            event_type=event.event_type,
            synced_at=now,
        )

    def _handle_failure(self, event: SyncEvent, exc: Exception) -> SyncResult:
        retry_count = event.retry_count + 1
        error = str(exc) or type(exc).__name__
        failed = event.model_copy(update={"retry_count": retry_count})

        self._write_record(event, SyncStatus.FAILED, error=error, retry_count=retry_count)
        current = self._is_current(event)
        if current:
            self._dead_letters[event.document_id] = failed

        retry = current and getattr(exc, "retryable", True) and retry_count < self.settings.max_retries
        if retry and not self._stopping:
            delay = self._schedule_retry(failed)
            logger.warning(
                "Sync %s of %s failed (attempt %d/%d), retrying in %.1fs: %s",
                event.event_type.value,
                event.document_id,
                retry_count,
                self.settings.max_retries,
                delay,
                error,
            )
        elif retry:
            logger.warning(
                "Sync %s of %s failed during shutdown, left for retry_failed(): %s",
                event.event_type.value,
                event.document_id,
                error,
            )
        else:
            logger.error(
                "Sync %s of %s failed after %d attempt(s): %s",
                event.event_type.value,
                event.document_id,
                retry_count,
                error,
            )

        return SyncResult(
            success=False,
            document_id=event.document_id,
            document_type=event.document_type,
            event_type=event.event_type,
            error=error,
        )

    # ── Retries ──────────────────────────────────────────────────────────

    def _schedule_retry(self, event: SyncEvent) -> float:
        delay = backoff_delay(self.settings.retry_interval, event.retry_count)
        task = asyncio.get_running_loop().create_task(self._retry_later(event, delay))
        self._retry_tasks.add(task)
        task.add_done_callback(self._retry_tasks.discard)
        return delay

    async def _retry_later(self, event: SyncEvent, delay: float) -> None:
        await asyncio.sleep(delay)
        if self._stopping:
            return
        if not self._is_current(event):
            logger.debug("Dropping retry for %s: superseded by a newer event", event.document_id)
            return
        if self.realtime:
            await self._apply(event)
        else:
            await self._enqueue(event)

    async def retry_failed(self, include_exhausted: bool = False) -> BatchSyncResult:
        """Re-attempt every failed record.

        Only records with remaining retry budget are retried unless
        ``include_exhausted`` is set.  The payload comes from the dead letter
        kept for the record, or from the document loader.
        """
        candidates = [
            record
            for record in self._records.values()
            if record.status == SyncStatus.FAILED
            and (include_exhausted or record.retry_count < self.settings.max_retries)
        ]

        results: list[SyncResult] = []
        for record in candidates:
            dead_letter = self._dead_letters.get(record.document_id)
            event = self._new_event(
                dead_letter.event_type if dead_letter else record.event_type,
                record.document_id,
                record.document_type,
                dead_letter.document if dead_letter else None,
                retry_count=record.retry_count,
            )
            self._queue.pop(record.document_id, None)
            results.append(await self._apply(event))

        if candidates:
            logger.info("Retried %d failed records", len(candidates))
        return _batch_result(results)

    # ── Bulk ─────────────────────────────────────────────────────────────

    async def bulk_sync(self, documents: Sequence[SearchableDocument]) -> BatchSyncResult:
        """Index documents in chunks of ``batch_size`` and record each outcome."""
        results: list[SyncResult] = []
        size = self.settings.batch_size

        for start in range(0, len(documents), size):
            chunk = documents[start : start + size]
            events = [self._new_event(SyncEventType.CREATE, doc.id, doc.type, doc) for doc in chunk]
            for event in events:
                self._queue.pop(event.document_id, None)

            try:
                bulk = await self.service.bulk_index(chunk)
                errors = dict(bulk.errors)
                if bulk.failed and not errors:
                    errors = {doc.id: "Bulk index failed" for doc in chunk}
            except Exception as e:
                logger.error("Bulk sync of %d documents failed: %s", len(chunk), e)
                errors = {doc.id: str(e) or type(e).__name__ for doc in chunk}

            now = utcnow()
            for event in events:
                error = errors.get(event.document_id)
                if error is None:
                    self._write_record(event, SyncStatus.SYNCED, synced_at=now)
                    self._last_sync_at = now
                else:
                    self._write_record(event, SyncStatus.FAILED, error=error, retry_count=1)
                    self._dead_letters[event.document_id] = event.model_copy(update={"retry_count": 1})
                results.append(
                    SyncResult(
                        success=error is None,
                        document_id=event.document_id,
                        document_type=event.document_type,
                        event_type=event.event_type,
                        error=error,
                        synced_at=now if error is None else None,
                    )
                )

        batch = _batch_result(results)
        logger.info("Bulk sync: %d succeeded, %d failed", batch.success, batch.failed)
        return batch

    # ── Ledger ───────────────────────────────────────────────────────────

    def _is_current(self, event: SyncEvent) -> bool:
        return self._latest.get(event.document_id) == event.sequence

    def _write_record(
        self,
        event: SyncEvent,
        status: SyncStatus,
        *,
        error: str | None = None,
        retry_count: int = 0,
        synced_at: datetime | None = None,
    ) -> None:
        # Outcomes of superseded events never overwrite a newer state.
        if not self._is_current(event):
            return
        previous = self._records.get(event.document_id)
        self._records[event.document_id] = IndexSyncRecord(
            document_id=event.document_id,
            document_type=event.document_type,
            event_type=event.event_type,
            status=status,
            last_synced_at=synced_at or (previous.last_synced_at if previous else None),
            error=error,
            retry_count=retry_count,
        )

    def get_sync_status(self, document_id: str) -> IndexSyncRecord | None:
        record = self._records.get(document_id)
        return record.model_copy() if record else None

    def get_stats(self) -> SyncStats:
        counts = {status: 0 for status in SyncStatus}
        for record in self._records.values():
            counts[record.status] += 1
        return SyncStats(
            pending_count=counts[SyncStatus.PENDING],
            synced_count=counts[SyncStatus.SYNCED],
            failed_count=counts[SyncStatus.FAILED],
            deleted_count=counts[SyncStatus.DELETED],
            last_sync_at=self._last_sync_at,
            queue_size=len(self._queue),
            scheduled_retries=len(self._retry_tasks),
        )

    def clear_records(self) -> None:
        self._records.clear()
        self._dead_letters.clear()

    # ── Listeners ────────────────────────────────────────────────────────

    def add_listener(self, event_type: SyncEventType, listener: SyncListener) -> None:
        self._listeners[event_type].append(listener)

    def remove_listener(self, event_type: SyncEventType, listener: SyncListener) -> None:
        with contextlib.suppress(ValueError):
            self._listeners[event_type].remove(listener)

    async def _notify(self, event: SyncEvent, result: SyncResult) -> None:
        for listener in list(self._listeners[event.event_type]):
            try:
                outcome = listener(event, result)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                logger.exception(
                    "Sync listener %r failed for %s of %s",
                    listener,
                    event.event_type.value,
                    event.document_id,
                )


def _batch_result(results: list[SyncResult]) -> BatchSyncResult:
    success = sum(1 for r in results if r.success)
    return BatchSyncResult(total=len(results), success=success, failed=len(results) - success, results=results)
