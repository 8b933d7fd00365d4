"""Title extraction with per-site overrides, <title> and Open Graph tiers."""

from __future__ import annotations

import logging
import re
from typing import Iterable, Optional

from .entities import decode_entities
from .errors import TitleNotFoundError
from .html_normalize import collapse_line_breaks, minimal_text_fix
from .settings import SitePattern

logger = logging.getLogger(__name__)

HTML_TITLE_RE = re.compile(r"<title[^>]*>([^<]*)</title>", re.IGNORECASE | re.MULTILINE)

# Strict adjacency first, then any attributes in between.
OG_TITLE_RES = (
    re.compile(r'<meta\s+property=["\']og:title["\']\s+content=["\']([^"\']*)["\']', re.IGNORECASE),
    re.compile(r'<meta\s+content=["\']([^"\']*)["\']\s+property=["\']og:title["\']', re.IGNORECASE),
    re.compile(r'<meta[^>]*property=["\']og:title["\'][^>]*content=["\']([^"\']*)["\']', re.IGNORECASE),
    re.compile(r'<meta[^>]*content=["\']([^"\']*)["\'][^>]*property=["\']og:title["\']', re.IGNORECASE),
)


def clean_title(raw: str) -> str:
    """Strip, decode entities, collapse line breaks and repair mojibake."""

    text = decode_entities(raw.strip())
    text = collapse_line_breaks(text)
    return minimal_text_fix(text).strip()


def _site_override(url: str, body: str, site_patterns: Iterable[SitePattern], notifier) -> Optional[str]:
    for pattern in site_patterns:
        # An empty urlMatch is a substring of every URL.
        if pattern.url_match not in url:
            continue
        try:
            compiled = re.compile(pattern.title_regex, re.IGNORECASE | re.MULTILINE)
        except re.error as exc:
            message = f"Invalid site pattern for {pattern.url_match or 'all URLs'}: {exc}"
            logger.warning(message)
            if notifier is not None:
                notifier.error(message)
            continue
        match = compiled.search(body)
        if match is None or compiled.groups < 1:
            continue
        value = match.group(1)
        if value and value.strip():
            return value
    return None


def parse_title(
    url: str,
    body: str,
    site_patterns: Iterable[SitePattern] = (),
    notifier=None,
) -> str:
    """Return the cleaned page title for ``body`` fetched from ``url``.

    Raises TitleNotFoundError when no tier yields a non-empty title.
    """

    body = body or ""
    raw = _site_override(url, body, site_patterns, notifier)
    if raw is None:
        match = HTML_TITLE_RE.search(body)
        if match and match.group(1).strip():
            raw = match.group(1)
    if raw is None:
        for og_re in OG_TITLE_RES:
            match = og_re.search(body)
            if match and match.group(1).strip():
                raw = match.group(1)
                break
    if raw is None:
        raise TitleNotFoundError()
    title = clean_title(raw)
    if not title:
        raise TitleNotFoundError()
    return title


__all__ = ["parse_title", "clean_title", "HTML_TITLE_RE", "OG_TITLE_RES"]
