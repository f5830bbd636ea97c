"""Shared URL utilities for host allow-listing and screen URL handling."""

from __future__ import annotations

import re
from urllib.parse import urljoin, urlparse

SCREEN_ID_RE = re.compile(r"[a-z0-9]+(?:-[a-z0-9]+)*")


def _normalize_host(host: str) -> str:
    return host.strip().lower().strip("[]").rstrip(".")


def is_allowed_domain(url: str, allowed_domains: list[str] | tuple[str, ...]) -> bool:
    """Return True when the URL's host equals an allowed domain or is a subdomain of one.

    Malformed URLs are never allowed. ``notlocalhost.com`` does not match
    ``localhost`` and ``example.com.evil.com`` does not match ``example.com``.
    """
    try:
        hostname = urlparse(url).hostname
    except (ValueError, TypeError, AttributeError):
        return False
    if not hostname:
        return False
    hostname = _normalize_host(hostname)

    for domain in allowed_domains:
        normalized = _normalize_host(domain)
        if not normalized:
            continue
        if hostname == normalized or hostname.endswith(f".{normalized}"):
            return True
    return False


def screen_url(base_url: str, path: str) -> str:
    """Resolve a screen's navigable URL against the run's base URL."""
    if urlparse(path).scheme:
        return path
    return urljoin(base_url.rstrip("/") + "/", path.lstrip("/"))


def screen_id_from_name(name: str) -> str:
    """Derive a filesystem-safe screen id from a display name or file stem."""
    slug = re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")
    return slug or "screen"


def is_valid_screen_id(screen_id: str) -> bool:
    """Lowercase alphanumeric words joined by single hyphens, the shape screen_id_from_name produces."""
    return SCREEN_ID_RE.fullmatch(screen_id) is not None
