"""REST API routes for pixeltrack.

Provides endpoints for:
- Ingesting lifecycle events from an external network layer
- Reading per-context pixel collections, groups and badges
- Opening, focusing, scanning and closing managed browser tabs
- Streaming badge changes over WebSocket
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import APIRouter, Body, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import BaseModel

from pixeltrack.api.auth import require_api_auth, token_is_valid
from pixeltrack.api.service import PixelInspector
from pixeltrack.api.validators import validate_target_url
from pixeltrack.browser.layer import BrowserLayerError
from pixeltrack.correlator.events import parse_event
from pixeltrack.signals.types import SignalType

router = APIRouter()

_inspector = PixelInspector()


def get_inspector() -> PixelInspector:
    return _inspector


def reset_inspector(inspector: PixelInspector | None = None) -> PixelInspector:
    """Swap the process-wide inspector (used by tests and the app factory)."""
    global _inspector
    _inspector = inspector or PixelInspector()
    return _inspector


# --- Request/Response Models ---


class TabRequest(BaseModel):
    """Request to open a managed tab."""

    target_url: str


class TabResponse(BaseModel):
    context_id: int
    status: str
    message: str


# --- Events ---


@router.post("/events", status_code=202)
async def ingest_event(
    payload: dict[str, Any] = Body(...), _: str = Depends(require_api_auth)
) -> dict[str, str]:
    """Apply one lifecycle event reported by an external network layer."""
    try:
        event = parse_event(payload)
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    await _inspector.ingest(event)
    return {"status": "accepted", "kind": event.kind}


# --- Contexts ---


@router.get("/contexts")
async def list_contexts(_: str = Depends(require_api_auth)) -> list[dict[str, Any]]:
    return _inspector.list_contexts()


@router.get("/contexts/{context_id}")
async def get_context(context_id: int, _: str = Depends(require_api_auth)) -> dict[str, Any]:
    """Snapshot of a context's pixels; unknown contexts return an empty collection."""
    return _inspector.query(context_id).model_dump(mode="json")


@router.get("/contexts/{context_id}/badge")
async def get_context_badge(
    context_id: int, _: str = Depends(require_api_auth)
) -> dict[str, Any]:
    return _inspector.badge(context_id).model_dump(mode="json")


@router.get("/contexts/{context_id}/groups")
async def get_context_groups(
    context_id: int, _: str = Depends(require_api_auth)
) -> list[dict[str, Any]]:
    """Pixels grouped by pixel id, in order of first appearance."""
    return [group.model_dump(mode="json") for group in _inspector.query(context_id).groups()]


@router.get("/signals")
async def list_signals(
    signal_type: SignalType | None = None, _: str = Depends(require_api_auth)
) -> list[dict[str, Any]]:
    return [
        s.model_dump(mode="json")
        for s in _inspector.signals.signals
        if signal_type is None or s.signal_type == signal_type
    ]


# --- Managed tabs ---


@router.get("/tabs")
async def list_tabs(_: str = Depends(require_api_auth)) -> dict[int, str]:
    return _inspector.list_tabs()


@router.post("/tabs", response_model=TabResponse)
async def open_tab(request: TabRequest, _: str = Depends(require_api_auth)) -> TabResponse:
    """Open a tab in the managed browser and start watching its pixels."""
    validate_target_url(request.target_url, _inspector.config.target_url_policy)

    context_id = await _inspector.open_tab(request.target_url)
    return TabResponse(
        context_id=context_id,
        status="opened",
        message=f"Watching {request.target_url}",
    )


@router.post("/tabs/{context_id}/focus")
async def focus_tab(context_id: int, _: str = Depends(require_api_auth)) -> dict[str, Any]:
    try:
        await _inspector.focus_tab(context_id)
    except BrowserLayerError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"context_id": context_id, "status": "focused"}


@router.get("/tabs/{context_id}/sources")
async def get_tab_sources(
    context_id: int, _: str = Depends(require_api_auth)
) -> dict[str, list[str]]:
    """Pixel <script>/<img> sources embedded in the tab's page (informational)."""
    try:
        sources = await _inspector.scan_tab(context_id)
    except BrowserLayerError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return sources.model_dump()


@router.delete("/tabs/{context_id}")
async def close_tab(context_id: int, _: str = Depends(require_api_auth)) -> dict[str, Any]:
    try:
        await _inspector.close_tab(context_id)
    except BrowserLayerError as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return {"context_id": context_id, "status": "closed"}


# --- WebSocket for real-time badge streaming ---


@router.websocket("/ws/badges")
async def websocket_badges(websocket: WebSocket, token: str = Query(default="")) -> None:
    """Stream BADGE_CHANGED signals as they are emitted.

    Pass token as a query parameter for authentication.
    """
    if not token_is_valid(token):
        await websocket.close(code=4001, reason="Unauthorized")
        return

    await websocket.accept()
    _inspector.add_websocket(websocket)

    try:
        # Current badges as initial state, shaped like the live pushes
        for signal in _inspector.current_badge_signals():
            await websocket.send_text(signal.model_dump_json())

        while True:
            try:
                data = await asyncio.wait_for(websocket.receive_text(), timeout=30)
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                try:
                    await websocket.send_text('{"type":"keepalive"}')
                except Exception:
                    break
            except WebSocketDisconnect:
                break
    finally:
        _inspector.remove_websocket(websocket)
