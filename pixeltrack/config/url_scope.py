"""URL scope filter for intercepted requests.

Decides whether a request is a beacon the engine should see at all. Patterns
use browser extension match-pattern syntax::

    *://sp.analytics.yahoo.com/*
    https://*.example.com/pixel/*

The filter runs in the network layer, before any lifecycle event is
produced; the correlation engine itself never filters.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from urllib.parse import urlparse

from pixeltrack.config.settings import MATCH_PATTERN_RE, ScopeConfig


@dataclass(frozen=True)
class ScopeMatchResult:
    allowed: bool
    reason: str


@dataclass(frozen=True)
class MatchPattern:
    scheme: str
    host: str
    path: str

    @classmethod
    def parse(cls, pattern: str) -> MatchPattern:
        match = MATCH_PATTERN_RE.match(pattern.strip())
        if not match:
            raise ValueError(f"Invalid URL match pattern: {pattern}")
        scheme, host, path = match.groups()
        return cls(scheme=scheme, host=host.lower(), path=path)

    def matches(self, url: str) -> bool:
        parsed = urlparse(url)
        scheme = parsed.scheme.lower()
        if self.scheme == "*":
            if scheme not in {"http", "https"}:
                return False
        elif scheme != self.scheme:
            return False

        hostname = (parsed.hostname or "").rstrip(".")
        if not self._host_matches(hostname):
            return False

        path = parsed.path or "/"
        if parsed.query:
            path = f"{path}?{parsed.query}"
        return fnmatchcase(path, self.path)

    def _host_matches(self, hostname: str) -> bool:
        if self.host == "*":
            return bool(hostname)
        if self.host.startswith("*."):
            base = self.host[2:]
            return hostname == base or hostname.endswith(f".{base}")
        return hostname == self.host


def url_in_scope(url: str, resource_type: str, scope: ScopeConfig) -> ScopeMatchResult:
    """Check a request against the resource-type and URL allow-lists."""
    if resource_type not in scope.resource_types:
        return ScopeMatchResult(
            allowed=False,
            reason=f"Resource type '{resource_type}' not in scope",
        )

    for pattern in scope.url_patterns:
        if MatchPattern.parse(pattern).matches(url):
            return ScopeMatchResult(allowed=True, reason=f"Matched {pattern}")

    return ScopeMatchResult(allowed=False, reason="URL matches no scope pattern")
