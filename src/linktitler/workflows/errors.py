"""linktitler exception hierarchy.

Every error carries a ``kind`` discriminant so callers branch on the kind
instead of on message text. Bot protection and fallback rate limits are
not exceptions; they are result variants (see ``bot_detector`` and
``fallbacks``).
"""

from __future__ import annotations

from typing import Optional, Sequence, Tuple


def format_chain(chain: Sequence[str], tail: Optional[str] = None) -> str:
    hops = list(chain)
    if tail:
        hops.append(tail)
    return " → ".join(hops)


class TitlerError(Exception):
    """Base exception for all linktitler errors."""

    kind = "error"


class ConfigurationError(TitlerError):
    """A user-supplied pattern or setting is invalid."""

    kind = "configuration"


class InvalidUrlError(TitlerError):
    """Candidate text is not a fetchable URL; rejected before any network call."""

    kind = "validation"

    def __init__(self, url: str) -> None:
        super().__init__(f"{url} is not a valid URL.")
        self.url = url


class NetworkError(TitlerError):
    """Transport-level failure (DNS, connect, timeout) with no server response."""

    kind = "network"

    def __init__(self, message: str, *, url: str = "") -> None:
        super().__init__(message)
        self.url = url


class HttpStatusError(TitlerError):
    """A definite non-2xx status that is neither a redirect nor bot protection."""

    kind = "http"

    def __init__(self, status: int, *, chain: Sequence[str] = ()) -> None:
        self.status = status
        self.chain: Tuple[str, ...] = tuple(chain)
        message = f"HTTP {status}"
        if len(self.chain) > 1:
            message = f"{message} Chain: {format_chain(self.chain)}"
        super().__init__(message)


class RedirectError(TitlerError):
    """Redirect following was refused or failed.

    ``reason`` is one of ``disabled``, ``missing_location``,
    ``invalid_location``, ``insecure``, ``circular`` or ``too_many``.
    """

    kind = "redirect"

    def __init__(
        self,
        reason: str,
        message: str,
        *,
        chain: Sequence[str] = (),
        location: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.reason = reason
        self.chain: Tuple[str, ...] = tuple(chain)
        self.location = location


class TitleNotFoundError(TitlerError):
    """No title could be extracted from otherwise usable content."""

    kind = "parse"

    def __init__(self, message: str = "Unable to parse the title tag (empty or not found)") -> None:
        super().__init__(message)


__all__ = [
    "TitlerError",
    "ConfigurationError",
    "InvalidUrlError",
    "NetworkError",
    "HttpStatusError",
    "RedirectError",
    "TitleNotFoundError",
    "format_chain",
]
