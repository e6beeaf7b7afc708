"""Pixel URL parser.

Turns a raw beacon URL into a classified ``PixelRecord``. Parsing never
fails: a missing or garbled query string simply yields a record whose checks
are all unsatisfied.

Known query keys::

    a           project id (always 10000 for Gemini dot pixels)
    .yp         pixel id, unique per advertiser pixel
    ea          event action (script pixels)
    et          event type (script pixels)
    product_id  product id (script pixels)
"""

from __future__ import annotations

import re
from urllib.parse import parse_qsl

from pixeltrack.pixels.record import NO_CONTEXT, SCRIPT_TYPE, FieldChecks, PixelRecord

PROJECT_ID_KEY = "a"
PIXEL_ID_KEY = ".yp"
EVENT_ACTION_KEY = "ea"
EVENT_TYPE_KEY = "et"
PRODUCT_ID_KEY = "product_id"


# Strings a browser's Number() converts to a number (isNaN is false for them)
_NUMBER_RE = re.compile(
    r"[+-]?(?:[0-9]+\.?[0-9]*|\.[0-9]+)(?:[eE][+-]?[0-9]+)?"
    r"|[+-]?Infinity"
    r"|0[xX][0-9a-fA-F]+|0[oO][0-7]+|0[bB][01]+"
)


def _is_numeric(value: str | None) -> bool:
    if not value:
        return False
    stripped = value.strip()
    # Whitespace-only converts to 0
    return not stripped or _NUMBER_RE.fullmatch(stripped) is not None


def _query_pairs(url: str) -> list[tuple[str, str]] | None:
    """Return the query string's key/value pairs, or None when there is no query."""
    param_start = url.find("?")
    if param_start <= 0:
        return None
    query = url[param_start + 1 :].split("#", 1)[0]
    return parse_qsl(query, keep_blank_values=True)


def _first(pairs: list[tuple[str, str]], key: str) -> str | None:
    for name, value in pairs:
        if name == key:
            return value
    return None


def parse_pixel(
    url: str,
    resource_type: str,
    *,
    request_id: str = "",
    context_id: int = NO_CONTEXT,
    created_at: float = 0.0,
    initiator: str | None = None,
) -> PixelRecord:
    """Parse a beacon URL and classify it.

    Project and pixel ids must be present and numeric. Script pixels are
    additionally checked for a product id, an event action and an event
    type; only their presence is checked, not their values.
    """
    pairs = _query_pairs(url)
    if pairs is None:
        return PixelRecord(
            request_id=request_id,
            context_id=context_id,
            url=url,
            type=resource_type,
            initiator=initiator,
            created_at=created_at,
        )

    project_id = _first(pairs, PROJECT_ID_KEY)
    pixel_id = _first(pairs, PIXEL_ID_KEY)
    event_action = _first(pairs, EVENT_ACTION_KEY)
    event_type = _first(pairs, EVENT_TYPE_KEY)
    product_id = _first(pairs, PRODUCT_ID_KEY)

    is_script = resource_type == SCRIPT_TYPE
    checks = FieldChecks(
        project_ok=_is_numeric(project_id),
        pixel_ok=_is_numeric(pixel_id),
        product_ok=is_script and bool(product_id),
        action_ok=is_script and bool(event_action),
        type_ok=is_script and bool(event_type),
    )

    return PixelRecord(
        request_id=request_id,
        context_id=context_id,
        url=url,
        type=resource_type,
        initiator=initiator,
        project_id=project_id,
        pixel_id=pixel_id,
        event_action=event_action,
        event_type=event_type,
        product_id=product_id,
        params=dict(pairs),
        checks=checks,
        created_at=created_at,
    )
