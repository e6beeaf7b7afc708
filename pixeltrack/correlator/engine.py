"""The Correlator — routes lifecycle events to pixel records.

The Correlator is the only writer of pixel state. Network events arrive out
of order and independently of record creation; the Correlator matches them
to records by request id and applies explicit updates through the owning
collection.

Responsibilities:
- Create a record only on RequestStarted, and only for a real context
- Apply completion, redirect and failure updates to existing records
- Treat updates for unknown request ids as no-ops
- Prune stale records when a navigation completes, respecting the damper
- Drop a context's state when the context goes away
- Re-project the badge after every change and emit it as a Signal

MUST NOT:
- Raise on malformed or out-of-order input
- Perform I/O or block while state is half-updated
- Hand out live references to records (reads are snapshots)
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from pixeltrack.config.settings import CorrelatorConfig
from pixeltrack.correlator.events import (
    ContextFocusChanged,
    ContextRemoved,
    ContextReplaced,
    LifecycleEvent,
    NavigationComplete,
    RequestCompleted,
    RequestFailed,
    RequestRedirected,
    RequestStarted,
)
from pixeltrack.pixels.badge import Badge, project_badge
from pixeltrack.pixels.collection import ClassificationPolicy, PixelCollection
from pixeltrack.pixels.parser import parse_pixel
from pixeltrack.pixels.record import NO_CONTEXT, PixelRecord
from pixeltrack.pixels.registry import ContextRegistry
from pixeltrack.signals.emitter import SignalEmitter
from pixeltrack.signals.types import SignalType

logger = logging.getLogger(__name__)


def _epoch_ms() -> float:
    return time.time() * 1000


class PixelCorrelator:
    """Applies lifecycle events to the registry, one event at a time.

    ``handle`` holds a lock for the whole event, including the signals it
    emits, so a subscriber never sees the signals of two events interleaved.
    Every mutation finishes before the first ``await`` of a handler, so
    readers never observe a partially applied event.
    """

    def __init__(
        self,
        registry: ContextRegistry | None = None,
        signals: SignalEmitter | None = None,
        config: CorrelatorConfig | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or CorrelatorConfig()
        self._registry = registry or ContextRegistry(
            ClassificationPolicy(count_transport_errors=self._config.count_transport_errors)
        )
        self._signals = signals or SignalEmitter()
        self._clock = clock or _epoch_ms
        self._dropped_events = 0
        self._unmatched_events = 0
        self._lock = asyncio.Lock()

    @property
    def registry(self) -> ContextRegistry:
        return self._registry

    @property
    def signals(self) -> SignalEmitter:
        return self._signals

    @property
    def config(self) -> CorrelatorConfig:
        return self._config

    @property
    def dropped_events(self) -> int:
        """Starts discarded because they had no browsing context."""
        return self._dropped_events

    @property
    def unmatched_events(self) -> int:
        """Updates that referenced no known record."""
        return self._unmatched_events

    # --- Dispatch ---

    async def handle(self, event: LifecycleEvent) -> None:
        """Apply a single lifecycle event, waiting for any event in progress."""
        async with self._lock:
            await self._dispatch(event)

    async def _dispatch(self, event: LifecycleEvent) -> None:
        if isinstance(event, RequestStarted):
            await self.on_request_started(event)
        elif isinstance(event, (RequestCompleted, RequestRedirected)):
            await self.on_request_answered(event)
        elif isinstance(event, RequestFailed):
            await self.on_request_failed(event)
        elif isinstance(event, NavigationComplete):
            await self.on_navigation_complete(event)
        elif isinstance(event, ContextFocusChanged):
            await self.on_focus_changed(event)
        elif isinstance(event, ContextRemoved):
            await self.on_context_removed(event)
        elif isinstance(event, ContextReplaced):
            await self.on_context_replaced(event)

    # --- Network events ---

    async def on_request_started(self, event: RequestStarted) -> PixelRecord | None:
        if event.context_id == NO_CONTEXT:
            self._dropped_events += 1
            logger.debug("Dropped pixel %s without a browsing context", event.request_id)
            return None

        record = parse_pixel(
            event.url,
            event.resource_type,
            request_id=event.request_id,
            context_id=event.context_id,
            created_at=self._now(event.timestamp),
            initiator=event.initiator,
        )
        collection = self._registry.get_or_create(event.context_id)
        collection.add(record)
        recorded = record.model_dump(mode="json")

        await self._signals.emit(SignalType.PIXEL_RECORDED, event.context_id, recorded)
        await self._refresh_badge(event.context_id, collection)
        return record

    async def on_request_answered(
        self, event: RequestCompleted | RequestRedirected
    ) -> PixelRecord | None:
        collection = self._registry.get(event.context_id)
        record = (
            collection.mark_answered(event.request_id, self._now(event.timestamp))
            if collection
            else None
        )
        if record is None:
            self._unmatched(event.kind, event.context_id, event.request_id)
            return None

        await self._record_updated(collection, record, event.kind)
        return record

    async def on_request_failed(self, event: RequestFailed) -> PixelRecord | None:
        collection = self._registry.get(event.context_id)
        record = (
            collection.mark_failed(event.request_id, non_fatal=event.non_fatal)
            if collection
            else None
        )
        if record is None:
            self._unmatched(event.kind, event.context_id, event.request_id)
            return None

        logger.info(
            "Pixel %s in context %s failed: %s",
            event.request_id,
            event.context_id,
            event.error or "unknown error",
        )
        await self._record_updated(collection, record, event.kind)
        return record

    # --- Context events ---

    async def on_navigation_complete(self, event: NavigationComplete) -> int:
        """Prune records older than the damper. Returns how many were removed.

        A tab can report "complete" after some of its pixels already went
        out, so recent records survive the navigation.
        """
        collection = self._registry.get(event.context_id)
        if collection is None:
            return 0

        removed = collection.prune(self._now(event.timestamp), self._config.damper_ms)
        remaining = len(collection)
        if collection.is_empty:
            self._registry.remove(event.context_id)

        if removed:
            await self._signals.emit_context_pruned(event.context_id, removed, remaining)
            await self._refresh_badge(event.context_id, collection)
        if not remaining:
            await self._signals.emit(
                SignalType.CONTEXT_REMOVED, event.context_id, {"reason": "empty"}
            )
        return removed

    async def on_focus_changed(self, event: ContextFocusChanged) -> Badge | None:
        collection = self._registry.get(event.context_id)
        if collection is None:
            return None
        return await self._refresh_badge(event.context_id, collection)

    async def on_context_removed(self, event: ContextRemoved) -> None:
        await self._drop_context(event.context_id, "removed")

    async def on_context_replaced(self, event: ContextReplaced) -> None:
        logger.info(
            "Context %s replaced by %s", event.removed_context_id, event.added_context_id
        )
        await self._drop_context(event.removed_context_id, "replaced")

    # --- Read side ---

    def query(self, context_id: int) -> PixelCollection:
        """Snapshot of a context's collection (empty for unknown contexts)."""
        return self._registry.snapshot(context_id)

    def badge(self, context_id: int) -> Badge:
        return project_badge(self._registry.get(context_id))

    # --- Helpers ---

    def _now(self, timestamp: float | None) -> float:
        return timestamp if timestamp is not None else self._clock()

    def _unmatched(self, kind: str, context_id: int, request_id: str) -> None:
        self._unmatched_events += 1
        logger.debug(
            "Ignoring %s for unknown pixel %s in context %s", kind, request_id, context_id
        )

    async def _record_updated(
        self, collection: PixelCollection, record: PixelRecord, kind: str
    ) -> None:
        await self._signals.emit(
            SignalType.PIXEL_UPDATED,
            record.context_id,
            {
                "event": kind,
                "request_id": record.request_id,
                "elapsed_ms": record.elapsed_ms,
                "error_flag": record.error_flag,
            },
        )
        await self._refresh_badge(record.context_id, collection)

    async def _drop_context(self, context_id: int, reason: str) -> None:
        if self._registry.remove(context_id) is None:
            return
        await self._signals.emit(SignalType.CONTEXT_REMOVED, context_id, {"reason": reason})

    async def _refresh_badge(self, context_id: int, collection: PixelCollection) -> Badge:
        badge = project_badge(collection)
        await self._signals.emit_badge_changed(context_id, badge.model_dump(mode="json"))
        return badge
