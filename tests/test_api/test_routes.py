"""Tests for the FastAPI REST API endpoints."""

from __future__ import annotations

import asyncio

import pytest
from fastapi.testclient import TestClient

from pixeltrack.api import routes
from pixeltrack.api.app import app
from pixeltrack.api.service import PixelInspector
from pixeltrack.browser.layer import BrowserLayerError
from pixeltrack.browser.page_scan import PagePixelSources

PIXEL = "https://sp.analytics.yahoo.com/sp.pl"


class _FakeBrowser:
    """Stands in for BrowserLayer without launching Chromium."""

    def __init__(self) -> None:
        self.started = False
        self.stopped = False
        self.pages: dict[int, str] = {}
        self.focused: list[int] = []

    @property
    def tabs(self) -> dict[int, str]:
        return dict(self.pages)

    async def start(self) -> None:
        self.started = True

    async def stop(self) -> None:
        self.stopped = True

    async def pump(self, handler) -> None:
        await asyncio.Event().wait()

    async def open_tab(self, url: str) -> int:
        context_id = len(self.pages) + 1
        self.pages[context_id] = url
        return context_id

    def _require(self, context_id: int) -> None:
        if context_id not in self.pages:
            raise BrowserLayerError(f"Tab {context_id} not found")

    async def focus_tab(self, context_id: int) -> None:
        self._require(context_id)
        self.focused.append(context_id)

    async def close_tab(self, context_id: int) -> None:
        self._require(context_id)
        del self.pages[context_id]

    async def scan_tab(self, context_id: int) -> PagePixelSources:
        self._require(context_id)
        return PagePixelSources(js_src=[f"{PIXEL}?a=1&.yp=2"])


@pytest.fixture
def browser() -> _FakeBrowser:
    return _FakeBrowser()


@pytest.fixture
def client(browser):
    routes.reset_inspector(PixelInspector(clock=lambda: 0.0, browser_factory=lambda: browser))
    with TestClient(app) as test_client:
        yield test_client
    routes.reset_inspector()


def _start(context_id: int, request_id: str, query: str, resource_type: str = "script", ts: float = 1000.0):
    return {
        "kind": "request_started",
        "context_id": context_id,
        "request_id": request_id,
        "url": f"{PIXEL}?{query}",
        "resource_type": resource_type,
        "timestamp": ts,
    }


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "pixeltrack", "version": "1.0.0"}


class TestEvents:
    def test_ingest_start_creates_context(self, client):
        response = client.post("/api/v1/events", json=_start(2, "r1", "a=10000"))
        assert response.status_code == 202
        assert response.json() == {"status": "accepted", "kind": "request_started"}

        contexts = client.get("/api/v1/contexts").json()
        assert contexts == [
            {
                "context_id": 2,
                "records_count": 1,
                "badge": {"label": "1", "severity": "error", "color": "#f44253"},
            }
        ]

    def test_unknown_kind_is_rejected(self, client):
        response = client.post("/api/v1/events", json={"kind": "tab_exploded", "context_id": 1})
        assert response.status_code == 422

    def test_missing_fields_are_rejected(self, client):
        response = client.post("/api/v1/events", json={"kind": "request_started", "context_id": 1})
        assert response.status_code == 422

    def test_completion_sets_elapsed(self, client):
        client.post("/api/v1/events", json=_start(1, "r1", "a=1&.yp=2", "image", ts=1000.0))
        client.post(
            "/api/v1/events",
            json={"kind": "request_completed", "context_id": 1, "request_id": "r1", "timestamp": 1012.5},
        )

        snapshot = client.get("/api/v1/contexts/1").json()
        record = snapshot["records"][0]
        assert record["elapsed_ms"] == 12.5
        assert record["status"] == "ok"
        assert snapshot["error_count"] == 0
        assert "policy" not in snapshot

    def test_update_for_unknown_request_is_accepted_and_ignored(self, client):
        response = client.post(
            "/api/v1/events",
            json={"kind": "request_failed", "context_id": 9, "request_id": "ghost"},
        )
        assert response.status_code == 202
        assert client.get("/api/v1/contexts").json() == []


class TestContexts:
    def test_unknown_context_is_empty(self, client):
        snapshot = client.get("/api/v1/contexts/42").json()
        assert snapshot["context_id"] == 42
        assert snapshot["records"] == []
        assert snapshot["duplicate_count"] == 1

        badge = client.get("/api/v1/contexts/42/badge").json()
        assert badge == {"label": "", "severity": None, "color": None}

    def test_warning_badge(self, client):
        client.post("/api/v1/events", json=_start(3, "r1", "a=10000&.yp=25984&ea=ViewProduct&et=custom"))
        badge = client.get("/api/v1/contexts/3/badge").json()
        assert badge["severity"] == "warning"
        assert badge["color"] == "#ff9900"

    def test_groups_by_pixel_id(self, client):
        client.post("/api/v1/events", json=_start(1, "r1", "a=1&.yp=7", "image"))
        client.post("/api/v1/events", json=_start(1, "r2", "a=1", "image"))
        client.post("/api/v1/events", json=_start(1, "r3", "a=1&.yp=7", "image"))

        groups = client.get("/api/v1/contexts/1/groups").json()
        assert [g["pixel_id"] for g in groups] == ["7", "Missing"]
        assert [r["request_id"] for r in groups[0]["records"]] == ["r1", "r3"]

    def test_signals_filter(self, client):
        client.post("/api/v1/events", json=_start(1, "r1", "a=1&.yp=7", "image"))

        everything = client.get("/api/v1/signals").json()
        assert [s["signal_type"] for s in everything] == ["PIXEL_RECORDED", "BADGE_CHANGED"]

        badges = client.get("/api/v1/signals", params={"signal_type": "BADGE_CHANGED"}).json()
        assert len(badges) == 1
        assert badges[0]["payload"]["label"] == "1"


class TestTabs:
    def test_open_tab_starts_browser(self, client, browser):
        response = client.post("/api/v1/tabs", json={"target_url": "https://shop.example/"})
        assert response.status_code == 200
        assert response.json()["context_id"] == 1
        assert response.json()["status"] == "opened"
        assert browser.started
        assert client.get("/api/v1/tabs").json() == {"1": "https://shop.example/"}

    def test_open_tab_rejects_internal_target(self, client, browser):
        response = client.post("/api/v1/tabs", json={"target_url": "http://127.0.0.1:8000/"})
        assert response.status_code == 400
        assert not browser.started

    def test_tab_operations_without_browser_are_404(self, client):
        assert client.post("/api/v1/tabs/1/focus").status_code == 404
        assert client.delete("/api/v1/tabs/1").status_code == 404
        assert client.get("/api/v1/tabs/1/sources").status_code == 404

    def test_focus_scan_and_close(self, client, browser):
        client.post("/api/v1/tabs", json={"target_url": "https://shop.example/"})

        assert client.post("/api/v1/tabs/1/focus").json() == {"context_id": 1, "status": "focused"}
        assert browser.focused == [1]

        sources = client.get("/api/v1/tabs/1/sources").json()
        assert sources == {"js_src": [f"{PIXEL}?a=1&.yp=2"], "img_src": []}

        assert client.delete("/api/v1/tabs/1").json() == {"context_id": 1, "status": "closed"}
        assert client.delete("/api/v1/tabs/1").status_code == 404

    def test_shutdown_stops_browser(self, browser):
        routes.reset_inspector(PixelInspector(browser_factory=lambda: browser))
        with TestClient(app) as test_client:
            test_client.post("/api/v1/tabs", json={"target_url": "https://shop.example/"})
        assert browser.stopped
        routes.reset_inspector()


class TestBadgeWebSocket:
    def test_initial_badges_then_ping(self, client):
        client.post("/api/v1/events", json=_start(5, "r1", "a=1&.yp=2", "image"))

        with client.websocket_connect("/api/v1/ws/badges") as ws:
            initial = ws.receive_json()
            assert initial["signal_type"] == "BADGE_CHANGED"
            assert initial["context_id"] == 5
            assert initial["sequence"] == 2
            assert initial["payload"] == {"label": "1", "severity": "ok", "color": "#2ecc71"}
            ws.send_text("ping")
            assert ws.receive_text() == "pong"

    def test_live_badge_change_is_pushed(self, client):
        with client.websocket_connect("/api/v1/ws/badges") as ws:
            client.post("/api/v1/events", json=_start(6, "r1", "a=10000"))

            pushed = ws.receive_json()
            assert pushed["signal_type"] == "BADGE_CHANGED"
            assert pushed["context_id"] == 6
            assert pushed["payload"] == {"label": "1", "severity": "error", "color": "#f44253"}

    def test_initial_and_live_messages_share_shape(self, client):
        client.post("/api/v1/events", json=_start(1, "r1", "a=1&.yp=2", "image"))

        with client.websocket_connect("/api/v1/ws/badges") as ws:
            initial = ws.receive_json()
            client.post("/api/v1/events", json=_start(1, "r2", "a=1", "image"))
            pushed = ws.receive_json()

        assert set(initial) == set(pushed)
        assert pushed["payload"]["label"] == "2"
        assert pushed["payload"]["severity"] == "error"
        assert pushed["sequence"] > initial["sequence"]
