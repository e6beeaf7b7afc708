"""Badge projection, the at-a-glance health signal of a context."""

from __future__ import annotations

from pydantic import BaseModel, computed_field

from pixeltrack.pixels.collection import PixelCollection
from pixeltrack.pixels.record import Severity


class Badge(BaseModel):
    """Badge text and severity. An empty label means no badge is shown."""

    label: str = ""
    severity: Severity | None = None

    model_config = {"frozen": True}

    @computed_field  # type: ignore[prop-decorator]
    @property
    def color(self) -> str | None:
        return self.severity.color if self.severity else None

    @property
    def visible(self) -> bool:
        return bool(self.label)


def project_badge(collection: PixelCollection | None) -> Badge:
    """Derive the badge from a collection's counters without rescanning records."""
    if collection is None or collection.is_empty:
        return Badge()

    label = str(len(collection.records))
    if collection.error_count > 0:
        return Badge(label=label, severity=Severity.ERROR)
    if collection.warning_count > 0:
        return Badge(label=label, severity=Severity.WARNING)
    return Badge(label=label, severity=Severity.OK)
