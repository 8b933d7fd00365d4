"""Shared helper functions used by the tagging workflow."""

from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional
from urllib.parse import urlparse

_MARKDOWN_LINK_RE = re.compile(r"!?\[([^\]]*)\]\([^)]*\)")
_SCHEME_RE = re.compile(r"https?://", re.IGNORECASE)


def normalize_request_url(url: str) -> str:
    """Return the URL to request, defaulting bare hosts to ``http://``."""

    raw = (url or "").strip()
    return raw if _SCHEME_RE.match(raw) else f"http://{raw}"


def is_valid_url(url: str) -> bool:
    """Return True for absolute http(s) URLs with a host."""

    if not url or any(ch.isspace() for ch in url):
        return False
    try:
        parsed = urlparse(url)
        # Accessing .port validates the netloc port component.
        parsed.port
    except ValueError:
        return False
    return parsed.scheme in {"http", "https"} and bool(parsed.hostname)


def is_https_downgrade(current: str, target: str) -> bool:
    return urlparse(current).scheme == "https" and urlparse(target).scheme == "http"


def strip_markdown_links(text: str) -> str:
    """Reduce ``[label](url)`` constructs to their label."""

    return _MARKDOWN_LINK_RE.sub(lambda m: m.group(1), text or "").strip()


def collect_environment_warnings(settings: Optional[Any] = None) -> List[Dict[str, str]]:
    """Return advisory warnings about settings that degrade fallbacks."""

    warnings: List[Dict[str, str]] = []
    if settings is None:
        return warnings
    if not (settings.use_archive_fallback or settings.use_microlink_fallback):
        warnings.append(
            {
                "code": "no_fallback_enabled",
                "message": "Blocked pages will be left unlinked.",
                "remedy": "Enable useArchiveFallback or useMicrolinkFallback.",
            }
        )
    if settings.use_microlink_fallback and not (
        settings.microlink_api_key or os.getenv("LINKTITLER_MICROLINK_API_KEY")
    ):
        warnings.append(
            {
                "code": "microlink_free_tier",
                "message": "Microlink runs on the free tier (50 requests/day).",
                "remedy": "Set microlinkApiKey or LINKTITLER_MICROLINK_API_KEY.",
            }
        )
    if settings.use_microlink_fallback and settings.request_delay_ms == 0:
        warnings.append(
            {
                "code": "no_request_delay",
                "message": "Requests are not paced; shared fallbacks may rate-limit.",
                "remedy": "Set requestDelayMs above 0.",
            }
        )
    return warnings


def sanity_check() -> None:
    assert normalize_request_url("example.com") == "http://example.com"
    assert normalize_request_url("https://example.com") == "https://example.com"
    assert is_valid_url("https://example.com/a?b=1")
    assert not is_valid_url("http://")
    assert is_https_downgrade("https://a.example", "http://a.example")
    assert strip_markdown_links("[A](https://a.example) b") == "A b"


sanity_check()

__all__ = [
    "normalize_request_url",
    "is_valid_url",
    "is_https_downgrade",
    "strip_markdown_links",
    "collect_environment_warnings",
    "sanity_check",
]
