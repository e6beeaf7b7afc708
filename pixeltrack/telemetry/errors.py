"""Structured error telemetry.

Failures that are handled and suppressed (a subscriber raised, a socket went
away, an event had to be dropped) are still reported, as one ``pixeltrack_error``
log record whose ``extra`` fields carry an ``ErrorEvent``.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

ERROR_LOG_MESSAGE = "pixeltrack_error"


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    SIGNAL_SUBSCRIBER_FAILURE = "SIGNAL_SUBSCRIBER_FAILURE"
    API_WEBSOCKET_SEND_FAILED = "API_WEBSOCKET_SEND_FAILED"
    BROWSER_CLEANUP_FAILED = "BROWSER_CLEANUP_FAILED"
    BROWSER_EVENT_DROPPED = "BROWSER_EVENT_DROPPED"
    CORRELATOR_EVENT_FAILED = "CORRELATOR_EVENT_FAILED"
    PAGE_SCAN_FAILED = "PAGE_SCAN_FAILED"


class ErrorEvent(BaseModel):
    """One reported failure, tied to a tab and request when known."""

    error_code: ErrorCode
    error_message: str
    suppressed: bool
    context_id: int | None = None
    request_id: str | None = None
    details: dict[str, Any] = Field(default_factory=dict)


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    context_id: int | None = None,
    request_id: str | None = None,
    details: dict[str, Any] | None = None,
) -> ErrorEvent:
    event = ErrorEvent(
        error_code=code,
        error_message=message,
        suppressed=suppressed,
        context_id=context_id,
        request_id=request_id,
        details=details or {},
    )
    logger.error(ERROR_LOG_MESSAGE, extra=event.model_dump())
    return event
