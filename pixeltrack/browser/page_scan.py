"""Page-side pixel scan.

Lists the pixel URLs a page embeds as ``<script src>`` or ``<img src>``.
Purely informational: the result is shown next to the intercepted records
but never feeds classification. Embedded frames are not inspected.
"""

from __future__ import annotations

from playwright.async_api import Page
from pydantic import BaseModel, Field

from pixeltrack.config.settings import ScopeConfig
from pixeltrack.config.url_scope import MatchPattern

_SOURCES_JS = """() => ({
    js_src: Array.from(document.scripts, s => s.src).filter(Boolean),
    img_src: Array.from(document.images, i => i.src).filter(Boolean),
})"""


class PagePixelSources(BaseModel):
    """Pixel sources embedded in a page's top-level document."""

    js_src: list[str] = Field(default_factory=list)
    img_src: list[str] = Field(default_factory=list)


def filter_pixel_sources(sources: dict[str, list[str]], scope: ScopeConfig) -> PagePixelSources:
    """Keep only the sources that match one of the scope's URL patterns."""
    patterns = [MatchPattern.parse(p) for p in scope.url_patterns]

    def in_scope(url: str) -> bool:
        return any(pattern.matches(url) for pattern in patterns)

    return PagePixelSources(
        js_src=[src for src in sources.get("js_src", []) if in_scope(src)],
        img_src=[src for src in sources.get("img_src", []) if in_scope(src)],
    )


async def scan_pixel_sources(page: Page, scope: ScopeConfig) -> PagePixelSources:
    raw = await page.evaluate(_SOURCES_JS)
    return filter_pixel_sources(raw or {}, scope)
