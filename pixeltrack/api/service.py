"""Service layer wiring the correlator, managed browser tabs and badge streaming."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable

from fastapi import HTTPException, WebSocket
from playwright.async_api import Error as PlaywrightError

from pixeltrack.browser.layer import BrowserLayer, BrowserLayerError
from pixeltrack.browser.page_scan import PagePixelSources
from pixeltrack.config.settings import InspectorConfig
from pixeltrack.correlator.engine import PixelCorrelator
from pixeltrack.correlator.events import LifecycleEvent
from pixeltrack.pixels.badge import Badge
from pixeltrack.pixels.collection import ClassificationPolicy, PixelCollection
from pixeltrack.pixels.registry import ContextRegistry
from pixeltrack.signals.emitter import SignalEmitter
from pixeltrack.signals.types import Signal, SignalType
from pixeltrack.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)


class PixelInspector:
    """Owns one registry, its correlator, and the optional managed browser.

    Events from the managed browser and from the ingestion endpoint go
    through the same correlator, one at a time.
    """

    def __init__(
        self,
        config: InspectorConfig | None = None,
        clock: Callable[[], float] | None = None,
        browser_factory: Callable[[], BrowserLayer] | None = None,
    ) -> None:
        self._config = config or InspectorConfig()
        self._registry = ContextRegistry(
            ClassificationPolicy(
                count_transport_errors=self._config.correlator.count_transport_errors
            )
        )
        self._signals = SignalEmitter(
            ledger_path=self._config.api.signals_ledger_path,
            history_limit=self._config.api.signal_history_limit,
        )
        self._correlator = PixelCorrelator(
            registry=self._registry,
            signals=self._signals,
            config=self._config.correlator,
            clock=clock,
        )
        self._browser_factory = browser_factory or self._default_browser
        self._browser: BrowserLayer | None = None
        self._pump_task: asyncio.Task[None] | None = None
        self._browser_lock = asyncio.Lock()
        self._websockets: list[WebSocket] = []

        self._signals.subscribe(self._broadcast_badge)

    @property
    def config(self) -> InspectorConfig:
        return self._config

    @property
    def correlator(self) -> PixelCorrelator:
        return self._correlator

    @property
    def signals(self) -> SignalEmitter:
        return self._signals

    @property
    def websockets(self) -> list[WebSocket]:
        return list(self._websockets)

    # --- Events and reads ---

    async def ingest(self, event: LifecycleEvent) -> None:
        await self._correlator.handle(event)

    def query(self, context_id: int) -> PixelCollection:
        return self._correlator.query(context_id)

    def badge(self, context_id: int) -> Badge:
        return self._correlator.badge(context_id)

    def list_contexts(self) -> list[dict[str, Any]]:
        return [
            {
                "context_id": context_id,
                "records_count": len(self._registry.get(context_id) or []),
                "badge": self.badge(context_id).model_dump(mode="json"),
            }
            for context_id in self._registry.context_ids()
        ]

    def current_badge_signals(self) -> list[Signal]:
        """Latest BADGE_CHANGED signal of every live context, for new subscribers.

        A context whose badge signal fell out of the retained history gets a
        signal built from its current badge, with sequence 0.
        """
        latest: dict[int, Signal] = {}
        for signal in self._signals.signals:
            if signal.signal_type == SignalType.BADGE_CHANGED:
                latest[signal.context_id] = signal
        return [
            latest.get(context_id)
            or Signal(
                sequence=0,
                signal_type=SignalType.BADGE_CHANGED,
                context_id=context_id,
                payload=self.badge(context_id).model_dump(mode="json"),
            )
            for context_id in self._registry.context_ids()
        ]

    # --- Managed tabs ---

    async def open_tab(self, url: str) -> int:
        browser = await self._ensure_browser()
        return await browser.open_tab(url)

    async def focus_tab(self, context_id: int) -> None:
        await self._require_browser().focus_tab(context_id)

    async def close_tab(self, context_id: int) -> None:
        await self._require_browser().close_tab(context_id)

    async def scan_tab(self, context_id: int) -> PagePixelSources:
        try:
            return await self._require_browser().scan_tab(context_id)
        except PlaywrightError as exc:
            emit_structured_error(
                logger,
                code=ErrorCode.PAGE_SCAN_FAILED,
                message=str(exc),
                suppressed=True,
                context_id=context_id,
            )
            return PagePixelSources()

    def list_tabs(self) -> dict[int, str]:
        return self._browser.tabs if self._browser else {}

    async def _ensure_browser(self) -> BrowserLayer:
        async with self._browser_lock:
            if self._browser is None:
                browser = self._browser_factory()
                try:
                    await browser.start()
                except PlaywrightError as exc:
                    raise HTTPException(
                        status_code=503, detail=f"Browser unavailable: {exc}"
                    ) from exc
                self._browser = browser
                self._pump_task = asyncio.create_task(browser.pump(self._correlator.handle))
            return self._browser

    def _require_browser(self) -> BrowserLayer:
        if self._browser is None:
            raise BrowserLayerError("Browser not started")
        return self._browser

    def _default_browser(self) -> BrowserLayer:
        return BrowserLayer(
            config=self._config.browser,
            scope=self._config.scope,
            cancellation_errors=self._config.correlator.cancellation_errors,
        )

    async def shutdown(self) -> None:
        if self._pump_task is not None:
            self._pump_task.cancel()
            try:
                await self._pump_task
            except asyncio.CancelledError:
                pass
            self._pump_task = None
        if self._browser is not None:
            try:
                await self._browser.stop()
            except PlaywrightError as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.BROWSER_CLEANUP_FAILED,
                    message=str(exc),
                    suppressed=True,
                )
            self._browser = None

    # --- Badge streaming ---

    def add_websocket(self, websocket: WebSocket) -> None:
        self._websockets.append(websocket)

    def remove_websocket(self, websocket: WebSocket) -> None:
        self._websockets = [ws for ws in self._websockets if ws != websocket]

    async def _broadcast_badge(self, signal: Signal) -> None:
        if signal.signal_type != SignalType.BADGE_CHANGED or not self._websockets:
            return
        data = signal.model_dump_json()
        disconnected: list[WebSocket] = []
        for ws in self._websockets:
            try:
                await ws.send_text(data)
            except Exception as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.API_WEBSOCKET_SEND_FAILED,
                    message=str(exc),
                    suppressed=True,
                    context_id=signal.context_id,
                )
                disconnected.append(ws)
        for ws in disconnected:
            self.remove_websocket(ws)
