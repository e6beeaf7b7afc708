"""Browser Layer — Playwright-based network observer that feeds the Correlator.

The Browser Layer has no classification authority. It opens tabs, watches
their network traffic, and turns in-scope beacon requests into lifecycle
events. It never modifies, blocks, or retries a request.

Playwright callbacks only enqueue events; a single pump task hands them to
the Correlator in arrival order.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable

from playwright.async_api import Browser, BrowserContext, Page, Request, async_playwright
from playwright.async_api import Error as PlaywrightError

from pixeltrack.browser.page_scan import PagePixelSources, scan_pixel_sources
from pixeltrack.config.settings import DEFAULT_CANCELLATION_ERRORS, BrowserConfig, ScopeConfig
from pixeltrack.config.url_scope import url_in_scope
from pixeltrack.correlator.events import (
    ContextFocusChanged,
    ContextRemoved,
    LifecycleEvent,
    NavigationComplete,
    RequestCompleted,
    RequestFailed,
    RequestRedirected,
    RequestStarted,
)
from pixeltrack.pixels.record import NO_CONTEXT
from pixeltrack.telemetry.errors import ErrorCode, emit_structured_error

logger = logging.getLogger(__name__)

EventHandler = Callable[[LifecycleEvent], Awaitable[Any]]


class BrowserLayerError(Exception):
    """Raised when a tab operation cannot be carried out."""


def _epoch_ms() -> float:
    return time.time() * 1000


class BrowserLayer:
    """Playwright browser whose tabs are observed browsing contexts.

    Contract:
    - Each opened page gets a unique integer context id
    - Only requests inside the URL scope produce events
    - A redirect hop keeps the request id of the original request
    - Requests that belong to no page (service workers) carry NO_CONTEXT
    """

    def __init__(
        self,
        config: BrowserConfig | None = None,
        scope: ScopeConfig | None = None,
        cancellation_errors: list[str] | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        self._config = config or BrowserConfig()
        self._scope = scope or ScopeConfig()
        self._cancellation_errors = set(
            cancellation_errors if cancellation_errors is not None else DEFAULT_CANCELLATION_ERRORS
        )
        self._clock = clock or _epoch_ms

        self._playwright: Any = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None

        self._events: asyncio.Queue[LifecycleEvent] = asyncio.Queue(
            maxsize=self._config.event_queue_size
        )
        self._pages: dict[int, Page] = {}
        self._page_ids: dict[Page, int] = {}
        self._request_ids: dict[Request, str] = {}
        self._next_context_id = 1
        self._next_request_id = 1

    @property
    def events(self) -> asyncio.Queue[LifecycleEvent]:
        return self._events

    @property
    def is_running(self) -> bool:
        return self._context is not None

    @property
    def tabs(self) -> dict[int, str]:
        """Open tabs as context id -> current URL."""
        return {context_id: page.url for context_id, page in self._pages.items()}

    # --- Lifecycle ---

    async def start(self) -> None:
        """Launch the browser and subscribe to network events."""
        self._playwright = await async_playwright().start()
        self._browser = await self._playwright.chromium.launch(
            headless=self._config.headless,
        )
        self._context = await self._browser.new_context(
            viewport={
                "width": self._config.viewport_width,
                "height": self._config.viewport_height,
            },
            user_agent=self._config.user_agent,
            locale=self._config.locale,
        )
        self._context.on("request", self._on_request)
        self._context.on("requestfinished", self._on_request_finished)
        self._context.on("requestfailed", self._on_request_failed)

    async def stop(self) -> None:
        """Clean up browser resources."""
        if self._context:
            await self._context.close()
            self._context = None
        if self._browser:
            await self._browser.close()
            self._browser = None
        if self._playwright:
            await self._playwright.stop()
            self._playwright = None
        self._pages.clear()
        self._page_ids.clear()
        self._request_ids.clear()

    async def pump(self, handler: EventHandler) -> None:
        """Feed queued events to ``handler`` one at a time until cancelled."""
        while True:
            event = await self._events.get()
            try:
                await handler(event)
            except Exception as exc:
                emit_structured_error(
                    logger,
                    code=ErrorCode.CORRELATOR_EVENT_FAILED,
                    message=str(exc),
                    suppressed=True,
                    details={"event": event.model_dump(mode="json")},
                )
            finally:
                self._events.task_done()

    # --- Tabs ---

    async def open_tab(self, url: str) -> int:
        """Open a new tab, start watching it, and navigate to ``url``."""
        if not self._context:
            raise BrowserLayerError("Browser not started")

        page = await self._context.new_page()
        context_id = self.register_page(page)
        try:
            await page.goto(
                url, wait_until="domcontentloaded", timeout=self._config.navigation_timeout_ms
            )
        except PlaywrightError as e:
            logger.warning("Navigation of tab %s to %s failed: %s", context_id, url, e)
        return context_id

    def register_page(self, page: Page) -> int:
        """Assign a context id to a page and watch its lifecycle."""
        context_id = self._next_context_id
        self._next_context_id += 1
        self._pages[context_id] = page
        self._page_ids[page] = context_id
        page.on("load", self._on_page_load)
        page.on("close", self._on_page_close)
        return context_id

    async def focus_tab(self, context_id: int) -> None:
        page = self._require_page(context_id)
        await page.bring_to_front()
        self._enqueue(ContextFocusChanged(context_id=context_id))

    async def close_tab(self, context_id: int) -> None:
        page = self._require_page(context_id)
        await page.close()

    async def scan_tab(self, context_id: int) -> PagePixelSources:
        """List pixel <script>/<img> sources present in a tab's DOM."""
        page = self._require_page(context_id)
        return await scan_pixel_sources(page, self._scope)

    def _require_page(self, context_id: int) -> Page:
        page = self._pages.get(context_id)
        if page is None:
            raise BrowserLayerError(f"Tab {context_id} not found")
        return page

    # --- Playwright callbacks ---

    def _on_request(self, request: Request) -> None:
        previous = request.redirected_from
        if previous is not None and previous in self._request_ids:
            request_id = self._request_ids.pop(previous)
            self._request_ids[request] = request_id
            self._enqueue(
                RequestRedirected(
                    context_id=self._context_id_for(request),
                    request_id=request_id,
                    timestamp=self._clock(),
                    redirect_url=request.url,
                )
            )
            return

        scope_check = url_in_scope(request.url, request.resource_type, self._scope)
        if not scope_check.allowed:
            return

        request_id = str(self._next_request_id)
        self._next_request_id += 1
        self._request_ids[request] = request_id
        self._enqueue(
            RequestStarted(
                context_id=self._context_id_for(request),
                request_id=request_id,
                url=request.url,
                resource_type=request.resource_type,
                timestamp=self._clock(),
                initiator=self._initiator_for(request),
            )
        )

    def _on_request_finished(self, request: Request) -> None:
        if request.redirected_to is not None:
            # The next hop reports the redirect and carries the id forward
            return
        request_id = self._request_ids.pop(request, None)
        if request_id is None:
            return
        self._enqueue(
            RequestCompleted(
                context_id=self._context_id_for(request),
                request_id=request_id,
                timestamp=self._clock(),
            )
        )

    def _on_request_failed(self, request: Request) -> None:
        request_id = self._request_ids.pop(request, None)
        if request_id is None:
            return
        failure = request.failure
        self._enqueue(
            RequestFailed(
                context_id=self._context_id_for(request),
                request_id=request_id,
                error=failure,
                non_fatal=failure in self._cancellation_errors,
            )
        )

    def _on_page_load(self, page: Page) -> None:
        context_id = self._page_ids.get(page)
        if context_id is not None:
            self._enqueue(NavigationComplete(context_id=context_id, timestamp=self._clock()))

    def _on_page_close(self, page: Page) -> None:
        context_id = self._page_ids.pop(page, None)
        if context_id is None:
            return
        self._pages.pop(context_id, None)
        self._enqueue(ContextRemoved(context_id=context_id))

    # --- Helpers ---

    def _context_id_for(self, request: Request) -> int:
        try:
            page = request.frame.page
        except PlaywrightError:
            # Service worker requests have no frame
            return NO_CONTEXT
        return self._page_ids.get(page, NO_CONTEXT)

    @staticmethod
    def _initiator_for(request: Request) -> str | None:
        try:
            return request.frame.url or None
        except PlaywrightError:
            return None

    def _enqueue(self, event: LifecycleEvent) -> None:
        try:
            self._events.put_nowait(event)
        except asyncio.QueueFull:
            emit_structured_error(
                logger,
                code=ErrorCode.BROWSER_EVENT_DROPPED,
                message="Browser event queue full",
                suppressed=True,
                details={"kind": event.kind},
            )
