"""Turn bare URLs in text into ``[title](url)`` markdown links.

Candidates are resolved left to right on one event loop, paced by
``request_delay_ms``. Per-URL failures leave the literal URL in place and
are reported through the notifier; only an invalid URL pattern aborts the
batch. Substitution is positional, so a URL that is a prefix of another
never corrupts its neighbour.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

from ..core.keys import (
    K_END,
    K_ERROR,
    K_FINAL_URL,
    K_KIND,
    K_MARKDOWN,
    K_PROVIDER,
    K_START,
    K_STATUS,
    K_TITLE,
    K_URL,
)
from .bot_detector import detect_bot_protection
from .errors import ConfigurationError, HttpStatusError, InvalidUrlError, TitleNotFoundError, TitlerError
from .fallbacks import FallbackOrchestrator
from .notify import LoggingNotifier, Notifier
from .redirect_cache import RedirectCache
from .settings import DEFAULT_SETTINGS, TitlerSettings
from .title_parser import parse_title
from .titler_config import PROVIDER_DIRECT
from .url_matcher import TaggedSegment, apply_segments, compile_url_pattern, format_markdown_link, raw_candidates
from .web_fetch import PageFetcher

logger = logging.getLogger(__name__)

RESOLVED = "resolved"
BLOCKED = "blocked"
INVALID = "invalid"
FAILED = "failed"

NO_URLS_MESSAGE = "No raw URLs found to process."


@dataclass(frozen=True, slots=True)
class TitleResolution:
    url: str
    kind: str
    title: Optional[str] = None
    provider: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    final_url: Optional[str] = None
    status: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.kind == RESOLVED and bool(self.title)

    def markdown(self) -> str:
        """Markdown link for a resolved URL, else the literal URL."""

        return format_markdown_link(self.title, self.url) if self.ok else self.url

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {K_URL: self.url, K_KIND: self.kind}
        if self.final_url and self.final_url != self.url:
            payload[K_FINAL_URL] = self.final_url
        if self.status is not None:
            payload[K_STATUS] = self.status
        if self.ok:
            payload[K_TITLE] = self.title
            payload[K_PROVIDER] = self.provider
            payload[K_MARKDOWN] = self.markdown()
        if self.error:
            payload[K_ERROR] = self.error
        return payload


@dataclass(frozen=True, slots=True)
class LocatedResolution:
    start: int
    end: int
    resolution: TitleResolution

    def to_dict(self) -> Dict[str, Any]:
        return {K_START: self.start, K_END: self.end, **self.resolution.to_dict()}


@dataclass(frozen=True, slots=True)
class TaggingResult:
    text: str
    resolutions: Tuple[LocatedResolution, ...] = field(default_factory=tuple)
    succeeded: int = 0
    failed: int = 0
    error: Optional[str] = None

    @property
    def processed(self) -> int:
        return self.succeeded + self.failed

    def summary_message(self) -> str:
        return f"Processed {self.processed} urls ({self.succeeded} titled, {self.failed} left unchanged)."


class UrlTagger:
    def __init__(
        self,
        client,
        settings: TitlerSettings = DEFAULT_SETTINGS,
        *,
        cache: Optional[RedirectCache] = None,
        notifier: Optional[Notifier] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.cache = cache if cache is not None else RedirectCache()
        self.notifier = notifier or LoggingNotifier()
        self.fetcher = PageFetcher(client, settings, self.cache)
        self.fallbacks = FallbackOrchestrator.from_settings(client, settings, self.notifier)
        self._sleep = sleep

    async def resolve(self, url: str) -> TitleResolution:
        """Resolve one literal URL to a title; never raises TitlerError."""

        try:
            outcome = await self.fetcher.fetch(url)
        except InvalidUrlError as exc:
            return TitleResolution(url=url, kind=INVALID, error=str(exc), error_kind=exc.kind)
        except TitlerError as exc:
            logger.debug("Fetch failed for %s: %s", url, exc)
            return TitleResolution(url=url, kind=FAILED, error=str(exc), error_kind=exc.kind)

        detection = detect_bot_protection(outcome)
        if detection.blocked:
            logger.info("Bot protection on %s (%s)", outcome.final_url, ", ".join(detection.indicators))
            fallback = await self.fallbacks.resolve(outcome.url)
            if fallback.ok:
                return TitleResolution(
                    url=url,
                    kind=RESOLVED,
                    title=fallback.title,
                    provider=fallback.provider,
                    final_url=outcome.final_url,
                    status=outcome.status,
                )
            return TitleResolution(
                url=url,
                kind=BLOCKED,
                error=fallback.message,
                error_kind=fallback.kind,
                final_url=outcome.final_url,
                status=outcome.status,
            )

        if not outcome.ok:
            exc = HttpStatusError(outcome.status, chain=outcome.redirect_chain)
            return TitleResolution(
                url=url,
                kind=FAILED,
                error=str(exc),
                error_kind=exc.kind,
                final_url=outcome.final_url,
                status=outcome.status,
            )
        try:
            title = parse_title(outcome.final_url, outcome.body, self.settings.site_patterns, self.notifier)
        except TitleNotFoundError as exc:
            return TitleResolution(
                url=url,
                kind=FAILED,
                error=str(exc),
                error_kind=exc.kind,
                final_url=outcome.final_url,
                status=outcome.status,
            )
        return TitleResolution(
            url=url,
            kind=RESOLVED,
            title=title,
            provider=PROVIDER_DIRECT,
            final_url=outcome.final_url,
            status=outcome.status,
        )

    async def tag_text(self, text: str) -> TaggingResult:
        try:
            pattern = compile_url_pattern(self.settings.url_regex)
        except ConfigurationError as exc:
            self.notifier.error(str(exc))
            return TaggingResult(text=text, error=str(exc))

        candidates = raw_candidates(text, pattern)
        if not candidates:
            self.notifier.info(NO_URLS_MESSAGE)
            return TaggingResult(text=text)

        delay = self.settings.request_delay_ms / 1000.0
        memo: Dict[str, TitleResolution] = {}
        located: List[LocatedResolution] = []
        for candidate in candidates:
            resolution = memo.get(candidate.url)
            if resolution is None:
                if memo and delay > 0:
                    await self._sleep(delay)
                resolution = await self.resolve(candidate.url)
                memo[candidate.url] = resolution
                if resolution.ok:
                    logger.info("Titled %s -> %r via %s", candidate.url, resolution.title, resolution.provider)
                else:
                    self.notifier.error(resolution.error or f"Could not title {candidate.url}")
            located.append(LocatedResolution(candidate.start, candidate.end, resolution))

        segments = [
            TaggedSegment(item.start, item.end, item.resolution.markdown())
            for item in located
            if item.resolution.ok
        ]
        tagged = apply_segments(text, segments)
        succeeded = len(segments)
        result = TaggingResult(
            text=tagged,
            resolutions=tuple(located),
            succeeded=succeeded,
            failed=len(located) - succeeded,
        )
        self.notifier.info(result.summary_message())
        return result

    async def tag_selection(self, source) -> TaggingResult:
        """Read the source selection, tag it and write it back once."""

        result = await self.tag_text(source.read_selection())
        source.replace_selection(result.text)
        return result


__all__ = [
    "TitleResolution",
    "LocatedResolution",
    "TaggingResult",
    "UrlTagger",
    "NO_URLS_MESSAGE",
    "RESOLVED",
    "BLOCKED",
    "INVALID",
    "FAILED",
]
