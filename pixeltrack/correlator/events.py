"""Lifecycle event models consumed by the correlator.

Network events describe one request (keyed by ``request_id``); context events
describe a browsing context (tab). A ``context_id`` of ``NO_CONTEXT`` (-1) marks a
request that no tab can be held responsible for.
"""

from __future__ import annotations

from typing import Annotated, Literal, Union

from pydantic import BaseModel, Field, TypeAdapter


class RequestStarted(BaseModel):
    kind: Literal["request_started"] = "request_started"
    context_id: int
    request_id: str
    url: str
    resource_type: str
    timestamp: float | None = None
    initiator: str | None = None


class RequestCompleted(BaseModel):
    kind: Literal["request_completed"] = "request_completed"
    context_id: int
    request_id: str
    timestamp: float | None = None


class RequestRedirected(BaseModel):
    """An intermediate hop; the request counts as answered."""

    kind: Literal["request_redirected"] = "request_redirected"
    context_id: int
    request_id: str
    timestamp: float | None = None
    redirect_url: str | None = None


class RequestFailed(BaseModel):
    """Transport failure. ``non_fatal`` marks a cancellation."""

    kind: Literal["request_failed"] = "request_failed"
    context_id: int
    request_id: str
    error: str | None = None
    non_fatal: bool = False


class NavigationComplete(BaseModel):
    kind: Literal["navigation_complete"] = "navigation_complete"
    context_id: int
    timestamp: float | None = None


class ContextFocusChanged(BaseModel):
    kind: Literal["context_focus_changed"] = "context_focus_changed"
    context_id: int


class ContextRemoved(BaseModel):
    kind: Literal["context_removed"] = "context_removed"
    context_id: int


class ContextReplaced(BaseModel):
    kind: Literal["context_replaced"] = "context_replaced"
    added_context_id: int
    removed_context_id: int


LifecycleEvent = Annotated[
    Union[
        RequestStarted,
        RequestCompleted,
        RequestRedirected,
        RequestFailed,
        NavigationComplete,
        ContextFocusChanged,
        ContextRemoved,
        ContextReplaced,
    ],
    Field(discriminator="kind"),
]

_event_adapter: TypeAdapter[LifecycleEvent] = TypeAdapter(LifecycleEvent)


def parse_event(data: dict) -> LifecycleEvent:
    """Validate a raw event payload into its typed model."""
    return _event_adapter.validate_python(data)
