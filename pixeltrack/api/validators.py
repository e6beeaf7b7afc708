"""Validation helpers for API request payloads."""

from __future__ import annotations

import ipaddress
from urllib.parse import urlparse

from fastapi import HTTPException

from pixeltrack.config.settings import TargetURLPolicyConfig

_ALLOWED_SCHEMES = {"http", "https"}
_LOCAL_SUFFIXES = (".local", ".localhost")


def validate_target_url(target_url: str, policy: TargetURLPolicyConfig) -> None:
    """Check that a managed tab may be opened on ``target_url``.

    Raises ``HTTPException(400)`` naming the first rule the URL breaks.
    """
    parsed = urlparse(target_url)

    if parsed.scheme.lower() not in _ALLOWED_SCHEMES:
        raise HTTPException(
            status_code=400,
            detail=f"Invalid URL scheme '{parsed.scheme}'. Allowed schemes: http, https.",
        )
    if not parsed.hostname:
        raise HTTPException(status_code=400, detail="target_url must include a hostname.")

    hostname = parsed.hostname.lower().rstrip(".")
    if policy.denied_domains and _domain_matches(hostname, policy.denied_domains):
        raise HTTPException(status_code=400, detail="target_url domain is denied by policy.")
    if policy.allowed_domains and not _domain_matches(hostname, policy.allowed_domains):
        raise HTTPException(status_code=400, detail="target_url domain is not in allowlist.")

    if policy.block_private_network_targets:
        reason = _blocked_host_reason(hostname)
        if reason:
            raise HTTPException(status_code=400, detail=reason)


def _blocked_host_reason(hostname: str) -> str | None:
    """Why a host on the local machine or network is refused, or None."""
    if hostname == "localhost" or hostname.endswith(_LOCAL_SUFFIXES):
        return "target_url points to a local hostname."
    try:
        address = ipaddress.ip_address(hostname)
    except ValueError:
        return None
    # Anything not globally routable: private, loopback, link-local, reserved
    if not address.is_global:
        return "target_url points to a blocked internal IP."
    return None


def _domain_matches(hostname: str, domains: list[str]) -> bool:
    return any(hostname == domain or hostname.endswith(f".{domain}") for domain in domains)
