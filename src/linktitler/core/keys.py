"""Shared schema keys to avoid magic strings in run summaries and reports."""

from __future__ import annotations

# Per-candidate keys
K_URL = "url"
K_FINAL_URL = "final_url"
K_START = "start"
K_END = "end"
K_TITLE = "title"
K_PROVIDER = "provider"
K_KIND = "kind"
K_STATUS = "status"
K_ERROR = "error"
K_MARKDOWN = "markdown"

# Run-level keys
K_RUN_ID = "run_id"
K_COUNTS = "counts"
K_ITEMS = "items"
