"""Async page fetching with progressive headers and an explicit redirect loop."""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Tuple
from urllib.parse import urljoin

import aiohttp

from .errors import InvalidUrlError, NetworkError, RedirectError, format_chain
from .html_normalize import decode_bytes_auto
from .redirect_cache import RedirectCache
from .settings import DEFAULT_SETTINGS, TitlerSettings
from .titler_config import BROWSER_HEADERS, DEFAULT_TIMEOUT_SECONDS, HDR_LOCATION
from .titler_utils import is_https_downgrade, is_valid_url, normalize_request_url

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """A completed HTTP exchange; header names are lower-cased."""

    status: int
    headers: Dict[str, str]
    text: str
    url: str

    def json(self) -> Any:
        return json.loads(self.text)


class HttpClient:
    """Thin aiohttp wrapper that maps transport failures to NetworkError.

    Use as an async context manager. Redirects are never followed by the
    transport unless the caller asks for it.
    """

    def __init__(
        self,
        *,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        session: Optional[aiohttp.ClientSession] = None,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self._session = session
        self._owns_session = session is None

    async def __aenter__(self) -> "HttpClient":
        if self._session is None:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout_seconds)
            )
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def get(
        self,
        url: str,
        *,
        headers: Optional[Mapping[str, str]] = None,
        params: Optional[Mapping[str, str]] = None,
        allow_redirects: bool = False,
    ) -> HttpResponse:
        if self._session is None:
            raise RuntimeError("HttpClient must be entered with 'async with' before use")
        try:
            async with self._session.get(
                url,
                headers=dict(headers) if headers else None,
                params=dict(params) if params else None,
                allow_redirects=allow_redirects,
            ) as resp:
                raw_bytes = await resp.read()
                response_headers = {k.lower(): v for k, v in resp.headers.items()}
                return HttpResponse(
                    status=resp.status,
                    headers=response_headers,
                    text=decode_bytes_auto(raw_bytes, response_headers),
                    url=str(resp.url),
                )
        except asyncio.TimeoutError as exc:
            raise NetworkError(f"Request timed out after {self.timeout_seconds:g}s", url=url) from exc
        except aiohttp.ClientError as exc:
            detail = str(exc) or type(exc).__name__
            raise NetworkError(f"Request failed: {detail}", url=url) from exc


@dataclass(frozen=True, slots=True)
class FetchOutcome:
    """A completed retrieval, whatever its status."""

    url: str
    final_url: str
    status: int
    body: str
    headers: Dict[str, str] = field(default_factory=dict)
    redirect_chain: Tuple[str, ...] = field(default_factory=tuple)
    escalated: bool = False
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    @property
    def redirected(self) -> bool:
        return len(self.redirect_chain) > 1


class PageFetcher:
    """Fetch one page, following redirects per settings.

    The redirect cache is injected; one instance is normally shared across
    a batch so repeat lookups skip known redirect hops.
    """

    def __init__(
        self,
        client: HttpClient,
        settings: TitlerSettings = DEFAULT_SETTINGS,
        cache: Optional[RedirectCache] = None,
    ) -> None:
        self.client = client
        self.settings = settings
        self.cache = cache

    async def fetch(self, url: str) -> FetchOutcome:
        request_url = normalize_request_url(url)
        if not is_valid_url(request_url):
            raise InvalidUrlError(url)

        cached = self.cache.get(request_url) if self.cache is not None else None
        if cached:
            logger.debug("Redirect cache hit %s -> %s", request_url, cached)
        outcome = await self._follow(request_url, cached or request_url)
        if outcome.final_url != request_url and not cached and outcome.ok and self.cache is not None:
            self.cache.put(request_url, outcome.final_url)
        return outcome

    async def _request(self, url: str, escalated: bool) -> Tuple[HttpResponse, bool]:
        if escalated:
            return await self.client.get(url, headers=BROWSER_HEADERS), True
        try:
            return await self.client.get(url), False
        except NetworkError as exc:
            logger.debug("Minimal request to %s failed (%s); retrying with browser headers", url, exc)
        return await self.client.get(url, headers=BROWSER_HEADERS), True

    async def _follow(self, request_url: str, start_url: str) -> FetchOutcome:
        settings = self.settings
        visited: List[str] = []
        current = start_url
        escalated = False
        redirects = 0
        while True:
            visited.append(current)
            response, escalated = await self._request(current, escalated)
            status = response.status
            if not 300 <= status < 400:
                return FetchOutcome(
                    url=request_url,
                    final_url=current,
                    status=status,
                    body=response.text,
                    headers=response.headers,
                    redirect_chain=tuple(visited),
                    escalated=escalated,
                    from_cache=start_url != request_url,
                )

            location = (response.headers.get(HDR_LOCATION) or "").strip()
            if not settings.follow_redirects:
                raise RedirectError(
                    "disabled",
                    f"Redirect detected ({status}) to: {location or 'unknown'}. "
                    "Enable redirect following in settings.",
                    chain=visited,
                    location=location or None,
                )
            chain_note = f" Chain: {format_chain(visited)}" if len(visited) > 1 else ""
            if not location:
                raise RedirectError(
                    "missing_location",
                    f"Redirect ({status}) without Location header.{chain_note}",
                    chain=visited,
                )
            try:
                target = urljoin(current, location)
            except ValueError as exc:
                raise RedirectError(
                    "invalid_location", f"Invalid redirect URL: {location}", chain=visited, location=location
                ) from exc
            if not is_valid_url(target):
                raise RedirectError(
                    "invalid_location", f"Invalid redirect URL: {location}", chain=visited, location=location
                )
            if is_https_downgrade(current, target):
                raise RedirectError(
                    "insecure",
                    f"Insecure redirect from HTTPS to HTTP blocked.{chain_note}",
                    chain=visited,
                    location=target,
                )
            if target in visited:
                raise RedirectError(
                    "circular",
                    f"Circular redirect detected. Chain: {format_chain(visited, target)}",
                    chain=visited,
                    location=target,
                )
            redirects += 1
            if redirects > settings.max_redirects:
                raise RedirectError(
                    "too_many",
                    f"Too many redirects ({redirects}). Chain: {format_chain(visited, target)}",
                    chain=visited,
                    location=target,
                )
            logger.debug("Following %s redirect %s -> %s", status, current, target)
            current = target


__all__ = ["HttpResponse", "HttpClient", "FetchOutcome", "PageFetcher"]
