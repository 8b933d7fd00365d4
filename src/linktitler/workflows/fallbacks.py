"""Fallback title providers for pages hidden behind bot protection.

Providers never raise for expected outcomes (rate limits, missing
snapshots, bad payloads); they return a FallbackResult whose ``kind``
says what happened. The orchestrator walks enabled providers in the
configured priority order and stops at the first title.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple
from urllib.parse import urlparse, urlunparse

from .errors import NetworkError, TitleNotFoundError, TitlerError
from .html_normalize import collapse_line_breaks
from .notify import LoggingNotifier, Notifier
from .settings import DEFAULT_SETTINGS, TitlerSettings
from .title_parser import parse_title
from .titler_config import (
    ARCHIVE_LOOKUP_ENDPOINT,
    HDR_MICROLINK_KEY,
    MICROLINK_ENDPOINT,
    MICROLINK_PROXY_CODES,
    MICROLINK_RATE_LIMIT_CODES,
    PRIORITY_ARCHIVE_FIRST,
    PROVIDER_ARCHIVE,
    PROVIDER_MICROLINK,
)
from .titler_utils import strip_markdown_links
from .web_fetch import PageFetcher

logger = logging.getLogger(__name__)

KIND_OK = "ok"
KIND_RATE_LIMITED = "rate_limited"
KIND_TIER_INSUFFICIENT = "tier_insufficient"
KIND_NO_SNAPSHOT = "no_snapshot"
KIND_UNAVAILABLE = "unavailable"
KIND_FAILED = "failed"
KIND_NO_FALLBACK = "no_fallback"
KIND_ALL_FAILED = "all_failed"

NO_FALLBACK_MESSAGE = "Bot protection detected, no fallback configured"
RATE_LIMIT_MESSAGE = "Microlink daily limit reached (50/day)"


@dataclass(frozen=True, slots=True)
class FallbackResult:
    provider: str
    kind: str
    title: Optional[str] = None
    message: str = ""
    attempts: Tuple["FallbackResult", ...] = field(default_factory=tuple)

    @property
    def ok(self) -> bool:
        return self.kind == KIND_OK and bool(self.title)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"provider": self.provider, "kind": self.kind}
        if self.title:
            payload["title"] = self.title
        if self.message:
            payload["message"] = self.message
        if self.attempts:
            payload["attempts"] = [a.to_dict() for a in self.attempts]
        return payload


def _upgrade_archive_scheme(url: str) -> str:
    parsed = urlparse(url)
    host = (parsed.hostname or "").lower()
    if parsed.scheme == "http" and (host == "archive.org" or host.endswith(".archive.org")):
        return urlunparse(parsed._replace(scheme="https"))
    return url


class ArchiveProvider:
    """Title from the closest Wayback Machine snapshot."""

    name = PROVIDER_ARCHIVE

    def __init__(self, client, settings: TitlerSettings = DEFAULT_SETTINGS, notifier: Optional[Notifier] = None) -> None:
        self.client = client
        self.settings = settings
        self.notifier = notifier

    def _result(self, kind: str, message: str = "", title: Optional[str] = None) -> FallbackResult:
        return FallbackResult(provider=self.name, kind=kind, title=title, message=message)

    async def fetch_title(self, url: str) -> FallbackResult:
        try:
            lookup = await self.client.get(ARCHIVE_LOOKUP_ENDPOINT, params={"url": url})
        except NetworkError as exc:
            logger.debug("Archive lookup failed for %s: %s", url, exc)
            return self._result(KIND_UNAVAILABLE, "Archive.org API unavailable")
        if lookup.status != 200:
            return self._result(KIND_UNAVAILABLE, "Archive.org API unavailable")
        try:
            payload = lookup.json()
        except ValueError as exc:
            return self._result(KIND_FAILED, f"Invalid JSON from Archive.org API: {exc}")

        closest = {}
        if isinstance(payload, dict):
            snapshots = payload.get("archived_snapshots") or {}
            if isinstance(snapshots, dict):
                closest = snapshots.get("closest") or {}
        snapshot_url = closest.get("url") if isinstance(closest, dict) else None
        if not snapshot_url:
            return self._result(KIND_NO_SNAPSHOT, "No archived version found")

        snapshot_url = _upgrade_archive_scheme(str(snapshot_url))
        # Same downgrade and hop checks as a direct fetch.
        try:
            page = await PageFetcher(self.client, self.settings).fetch(snapshot_url)
        except TitlerError as exc:
            logger.debug("Archive snapshot fetch failed for %s: %s", snapshot_url, exc)
            return self._result(KIND_FAILED, "Could not fetch archived page")
        if page.status != 200:
            return self._result(KIND_FAILED, "Could not fetch archived page")
        try:
            title = parse_title(url, page.body, self.settings.site_patterns, self.notifier)
        except TitleNotFoundError as exc:
            return self._result(KIND_FAILED, str(exc))
        return self._result(KIND_OK, title=title)


class MicrolinkProvider:
    """Title from the Microlink rendering API (free tier or keyed)."""

    name = PROVIDER_MICROLINK

    def __init__(self, client, settings: TitlerSettings = DEFAULT_SETTINGS) -> None:
        self.client = client
        self.settings = settings

    def _result(self, kind: str, message: str = "", title: Optional[str] = None) -> FallbackResult:
        return FallbackResult(provider=self.name, kind=kind, title=title, message=message)

    async def fetch_title(self, url: str) -> FallbackResult:
        headers = {HDR_MICROLINK_KEY: self.settings.microlink_api_key} if self.settings.microlink_api_key else None
        try:
            response = await self.client.get(MICROLINK_ENDPOINT, params={"url": url}, headers=headers)
        except NetworkError as exc:
            return self._result(KIND_UNAVAILABLE, f"Microlink unavailable: {exc}")
        if response.status == 429:
            return self._result(KIND_RATE_LIMITED, RATE_LIMIT_MESSAGE)
        try:
            data = json.loads(response.text)
        except ValueError:
            return self._result(KIND_FAILED, "Microlink: Invalid JSON response")
        if not isinstance(data, dict):
            return self._result(KIND_FAILED, "Microlink: Invalid JSON response")

        if data.get("status") == "fail":
            code = str(data.get("code") or "")
            if code in MICROLINK_RATE_LIMIT_CODES:
                return self._result(KIND_RATE_LIMITED, RATE_LIMIT_MESSAGE)
            if code in MICROLINK_PROXY_CODES:
                return self._result(
                    KIND_TIER_INSUFFICIENT,
                    f"Microlink error: {data.get('message') or code} (requires a paid plan)",
                )
            return self._result(KIND_FAILED, f"Microlink error: {data.get('message') or code or 'Unknown error'}")

        body = data.get("data") if isinstance(data.get("data"), dict) else {}
        raw_title = body.get("title") if data.get("status") == "success" else None
        if isinstance(raw_title, str):
            title = collapse_line_breaks(strip_markdown_links(raw_title)).strip()
            if title:
                return self._result(KIND_OK, title=title)
        return self._result(KIND_FAILED, "Microlink: No title found in response")


class FallbackOrchestrator:
    def __init__(
        self,
        providers: Sequence[Any],
        notifier: Optional[Notifier] = None,
    ) -> None:
        self.providers = list(providers)
        self.notifier = notifier or LoggingNotifier()

    @classmethod
    def from_settings(
        cls,
        client,
        settings: TitlerSettings = DEFAULT_SETTINGS,
        notifier: Optional[Notifier] = None,
    ) -> "FallbackOrchestrator":
        """Build the enabled providers in ``settings.fallback_priority`` order."""

        archive = ArchiveProvider(client, settings, notifier) if settings.use_archive_fallback else None
        microlink = MicrolinkProvider(client, settings) if settings.use_microlink_fallback else None
        if settings.fallback_priority == PRIORITY_ARCHIVE_FIRST:
            ordered = [archive, microlink]
        else:
            ordered = [microlink, archive]
        return cls([p for p in ordered if p is not None], notifier=notifier)

    async def resolve(self, url: str) -> FallbackResult:
        if not self.providers:
            return FallbackResult(provider="", kind=KIND_NO_FALLBACK, message=NO_FALLBACK_MESSAGE)

        attempts: List[FallbackResult] = []
        for index, provider in enumerate(self.providers):
            result = await provider.fetch_title(url)
            attempts.append(result)
            logger.debug("Fallback %s for %s -> %s %s", provider.name, url, result.kind, result.message)
            if result.ok:
                self.notifier.info(f"Title fetched via {result.provider}")
                return FallbackResult(
                    provider=result.provider,
                    kind=KIND_OK,
                    title=result.title,
                    attempts=tuple(attempts),
                )
            if result.kind == KIND_RATE_LIMITED:
                has_next = index + 1 < len(self.providers)
                suffix = ". Trying next fallback..." if has_next else "."
                self.notifier.warning(f"{result.message}{suffix}")

        last = attempts[-1]
        return FallbackResult(
            provider=last.provider,
            kind=KIND_ALL_FAILED,
            message=f"Bot protection detected. All fallbacks failed. Last error: {last.message}",
            attempts=tuple(attempts),
        )


__all__ = [
    "FallbackResult",
    "ArchiveProvider",
    "MicrolinkProvider",
    "FallbackOrchestrator",
    "NO_FALLBACK_MESSAGE",
    "RATE_LIMIT_MESSAGE",
]
