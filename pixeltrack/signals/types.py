"""Signal type definitions for pixeltrack state changes."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class SignalType(str, Enum):
    """All signal types emitted by the pixel engine."""

    PIXEL_RECORDED = "PIXEL_RECORDED"
    PIXEL_UPDATED = "PIXEL_UPDATED"
    BADGE_CHANGED = "BADGE_CHANGED"
    CONTEXT_PRUNED = "CONTEXT_PRUNED"
    CONTEXT_REMOVED = "CONTEXT_REMOVED"


class Signal(BaseModel):
    """An immutable notification of a change in one browsing context.

    Signals are append-only and cannot be modified after emission.
    """

    sequence: int = Field(description="Monotonic sequence number within the emitter")
    signal_type: SignalType
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    context_id: int
    payload: dict[str, Any] = Field(default_factory=dict)

    model_config = {"frozen": True}
