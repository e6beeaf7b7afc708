"""Pixel record models: one observed beacon and its field checks.

A record is classified once, when the beacon is first seen. The checks are a
named set of booleans (True = condition satisfied). The legacy bitmask, where
a set bit means "not satisfied yet", is only derived when a record is
serialized.
"""

from __future__ import annotations

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field, computed_field

# Legacy validity bits. The mask starts fully set and each satisfied check
# clears its bit.
PARAM_PROJECT_ID = 0x1
PARAM_PIXEL_ID = 0x2
PARAM_PRODUCT_ID = 0x4
PARAM_EVENT_ACTION = 0x8
PARAM_EVENT_TYPE = 0x10
UNSATISFIED_MASK = 0xFF

ERROR_SENTINEL = "Error"
SCRIPT_TYPE = "script"
NO_CONTEXT = -1
DEFAULT_EVENT_ACTION = "Page View"


class Severity(str, Enum):
    """Health of a record or of a whole context."""

    OK = "ok"
    WARNING = "warning"
    ERROR = "error"

    @property
    def color(self) -> str:
        return _SEVERITY_COLORS[self]


_SEVERITY_COLORS: dict[Severity, str] = {
    Severity.OK: "#2ecc71",
    Severity.WARNING: "#ff9900",
    Severity.ERROR: "#f44253",
}


class FieldChecks(BaseModel):
    """Which of the known pixel fields were found valid."""

    project_ok: bool = False
    pixel_ok: bool = False
    product_ok: bool = False
    action_ok: bool = False
    type_ok: bool = False

    model_config = {"frozen": True}

    @property
    def required_ok(self) -> bool:
        return self.project_ok and self.pixel_ok

    @property
    def optional_ok(self) -> bool:
        return self.product_ok and self.action_ok and self.type_ok

    def to_mask(self) -> int:
        mask = UNSATISFIED_MASK
        for satisfied, bit in (
            (self.project_ok, PARAM_PROJECT_ID),
            (self.pixel_ok, PARAM_PIXEL_ID),
            (self.product_ok, PARAM_PRODUCT_ID),
            (self.action_ok, PARAM_EVENT_ACTION),
            (self.type_ok, PARAM_EVENT_TYPE),
        ):
            if satisfied:
                mask &= ~bit
        return mask

    @classmethod
    def from_mask(cls, mask: int) -> FieldChecks:
        return cls(
            project_ok=not mask & PARAM_PROJECT_ID,
            pixel_ok=not mask & PARAM_PIXEL_ID,
            product_ok=not mask & PARAM_PRODUCT_ID,
            action_ok=not mask & PARAM_EVENT_ACTION,
            type_ok=not mask & PARAM_EVENT_TYPE,
        )


class PixelRecord(BaseModel):
    """A single beacon request seen in a browsing context.

    Only ``error_flag`` and ``elapsed_ms`` change after creation, and only
    through the owning ``PixelCollection``.
    """

    request_id: str
    context_id: int
    url: str
    type: str
    initiator: str | None = None
    project_id: str | None = None
    pixel_id: str | None = None
    event_action: str | None = None
    event_type: str | None = None
    product_id: str | None = None
    params: dict[str, str] = Field(default_factory=dict)
    checks: FieldChecks = Field(default_factory=FieldChecks)
    error_flag: bool = False
    created_at: float = 0.0
    elapsed_ms: float | Literal["Error"] | None = None

    @property
    def is_script(self) -> bool:
        return self.type == SCRIPT_TYPE

    @property
    def timing_failed(self) -> bool:
        return self.elapsed_ms == ERROR_SENTINEL

    @computed_field  # type: ignore[prop-decorator]
    @property
    def validity_mask(self) -> int:
        return self.checks.to_mask()

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> Severity:
        if not self.checks.required_ok:
            return Severity.ERROR
        if self.is_script and not self.checks.optional_ok:
            return Severity.WARNING
        return Severity.OK

    @computed_field  # type: ignore[prop-decorator]
    @property
    def display_action(self) -> str:
        return self.event_action or DEFAULT_EVENT_ACTION
