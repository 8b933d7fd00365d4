"""linktitler defaults (endpoints, headers, status codes, signatures, bounds).

Centralizes static defaults so the pipeline modules have no embedded magic
strings. These are baseline constants used to construct settings; callers
can inject their own TitlerSettings to override the user-facing ones.
"""

from __future__ import annotations

from pathlib import Path

# Endpoints / headers
ARCHIVE_LOOKUP_ENDPOINT = "https://archive.org/wayback/available"
MICROLINK_ENDPOINT = "https://api.microlink.io"
HDR_MICROLINK_KEY = "x-api-key"
HDR_LOCATION = "location"

BROWSER_HEADERS = {
    "User-Agent": (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
    ),
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
    "Referer": "https://www.google.com/",
    "DNT": "1",
    "Connection": "keep-alive",
    "Upgrade-Insecure-Requests": "1",
}

# Paths (user-relative)
SETTINGS_PATH = Path.home() / ".config" / "linktitler" / "settings.json"

# Settings defaults
DEFAULT_URL_REGEX = r"https?:\/\/[^\s\]\)]+"
PRIORITY_MICROLINK_FIRST = "microlink-first"
PRIORITY_ARCHIVE_FIRST = "archive-first"
FALLBACK_PRIORITIES = (PRIORITY_MICROLINK_FIRST, PRIORITY_ARCHIVE_FIRST)
DEFAULT_FALLBACK_PRIORITY = PRIORITY_MICROLINK_FIRST
DEFAULT_REQUEST_DELAY_MS = 500
DEFAULT_MAX_REDIRECTS = 5
DEFAULT_TIMEOUT_SECONDS = 20.0

# Clamp bounds
REQUEST_DELAY_MS_BOUNDS = (0, 5000)
MAX_REDIRECTS_BOUNDS = (1, 10)
TIMEOUT_SECONDS_BOUNDS = (1.0, 120.0)

# Redirect cache
REDIRECT_CACHE_SIZE = 500
REDIRECT_CACHE_EVICT_DIVISOR = 10

# Bot protection
BLOCK_STATUS_CODES = frozenset({202, 403, 503})
BLOCK_PHRASES = (
    "just a moment",
    "checking your browser",
    "attention required",
)
BLOCK_MARKERS = (
    "challenge-platform",
    "cf-browser-verification",
    "_cf_chl_opt",
    "__cf_bm",
    "_Incapsula_Resource",
    "incap_ses_",
    "aws-waf-token",
)
BLOCK_CONJUNCTIONS = (("cloudflare", "ray id"),)

# Microlink error codes
MICROLINK_RATE_LIMIT_CODES = frozenset({"ERATE_LIMIT_EXCEEDED"})
MICROLINK_PROXY_CODES = frozenset({"EPROXYNEEDED"})

PROVIDER_DIRECT = "direct"
PROVIDER_ARCHIVE = "Archive.org"
PROVIDER_MICROLINK = "Microlink"
