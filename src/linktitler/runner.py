from __future__ import annotations

import asyncio
import secrets
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence, TextIO, Tuple

from .core.keys import K_COUNTS, K_ITEMS, K_RUN_ID
from .workflows.notify import LoggingNotifier, Notifier
from .workflows.redirect_cache import RedirectCache
from .workflows.settings import TitlerSettings, load_settings
from .workflows.tagger import TaggingResult, TitleResolution, UrlTagger
from .workflows.titler_utils import collect_environment_warnings
from .workflows.web_fetch import HttpClient

_RUN_LOOP: Optional[asyncio.AbstractEventLoop] = None


class TextSource(Protocol):
    def read_selection(self) -> str: ...

    def replace_selection(self, text: str) -> None: ...


class FileTextSource:
    """A whole file as the selection; written back in place or to ``out``."""

    def __init__(self, path: Path, *, in_place: bool = False, out: Optional[TextIO] = None) -> None:
        self.path = Path(path)
        self.in_place = in_place
        self.out = out

    def read_selection(self) -> str:
        if not self.path.exists():
            raise FileNotFoundError(f"Input not found: {self.path}")
        return self.path.read_text(encoding="utf-8")

    def replace_selection(self, text: str) -> None:
        if self.in_place:
            self.path.write_text(text, encoding="utf-8")
            return
        stream = self.out or sys.stdout
        stream.write(text)


class StreamTextSource:
    def __init__(self, stdin: Optional[TextIO] = None, stdout: Optional[TextIO] = None) -> None:
        self.stdin = stdin
        self.stdout = stdout

    def read_selection(self) -> str:
        return (self.stdin or sys.stdin).read()

    def replace_selection(self, text: str) -> None:
        (self.stdout or sys.stdout).write(text)


class BufferedTextSource:
    """Reads from ``inner`` but keeps the replacement in ``text``."""

    def __init__(self, inner: TextSource) -> None:
        self.inner = inner
        self.text: Optional[str] = None

    def read_selection(self) -> str:
        return self.inner.read_selection()

    def replace_selection(self, text: str) -> None:
        self.text = text


def open_text_source(path_or_dash: str, *, in_place: bool = False) -> TextSource:
    if path_or_dash == "-":
        if in_place:
            raise ValueError("--in-place needs a file path, not stdin")
        return StreamTextSource()
    return FileTextSource(Path(path_or_dash), in_place=in_place)


def generate_run_id(now: Optional[datetime] = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).strftime("%Y%m%dT%H%M%SZ")
    suffix = secrets.token_hex(3)
    return f"{stamp}_{suffix}"


def _run_in_loop(coro: Any) -> Any:
    global _RUN_LOOP
    if _RUN_LOOP is None or _RUN_LOOP.is_closed():
        _RUN_LOOP = asyncio.new_event_loop()
    return _RUN_LOOP.run_until_complete(coro)


def _iso(moment: datetime) -> str:
    return moment.replace(microsecond=0).isoformat().replace("+00:00", "Z")


async def _tag_source(
    source: TextSource,
    settings: TitlerSettings,
    notifier: Notifier,
    cache: Optional[RedirectCache],
) -> TaggingResult:
    async with HttpClient(timeout_seconds=settings.timeout_seconds) as client:
        tagger = UrlTagger(client, settings, cache=cache, notifier=notifier)
        return await tagger.tag_selection(source)


async def _resolve_urls(
    urls: Sequence[str],
    settings: TitlerSettings,
    notifier: Notifier,
) -> List[TitleResolution]:
    resolutions: List[TitleResolution] = []
    async with HttpClient(timeout_seconds=settings.timeout_seconds) as client:
        tagger = UrlTagger(client, settings, notifier=notifier)
        for index, url in enumerate(urls):
            if index and settings.request_delay_ms:
                await asyncio.sleep(settings.request_delay_ms / 1000.0)
            resolutions.append(await tagger.resolve(url))
    return resolutions


def build_run_summary(
    result: TaggingResult,
    *,
    command: str,
    run_id: str,
    started_at: datetime,
    finished_at: datetime,
    settings: TitlerSettings,
) -> Dict[str, Any]:
    summary: Dict[str, Any] = {
        K_RUN_ID: run_id,
        "command": command,
        "started_at": _iso(started_at),
        "finished_at": _iso(finished_at),
        K_COUNTS: {
            "total": result.processed,
            "titled": result.succeeded,
            "unchanged": result.failed,
        },
        K_ITEMS: [item.to_dict() for item in result.resolutions],
    }
    if result.error:
        summary["error"] = result.error
    warnings = collect_environment_warnings(settings)
    if warnings:
        summary["environment_warnings"] = warnings
    return summary


def run_tagging(
    source: TextSource,
    *,
    settings: Optional[TitlerSettings] = None,
    notifier: Optional[Notifier] = None,
    cache: Optional[RedirectCache] = None,
    soft_fail: bool = True,
    command: str = "tag",
) -> Tuple[Dict[str, Any], int]:
    """Tag one selection and return ``(summary, exit_code)``.

    Exit code 2 means the URL pattern was invalid, 3 means some URLs were
    left unchanged and ``soft_fail`` is off.
    """

    settings = settings or load_settings()
    notifier = notifier or LoggingNotifier()
    started_at = datetime.now(timezone.utc)
    run_id = generate_run_id(started_at)
    result = _run_in_loop(_tag_source(source, settings, notifier, cache))
    summary = build_run_summary(
        result,
        command=command,
        run_id=run_id,
        started_at=started_at,
        finished_at=datetime.now(timezone.utc),
        settings=settings,
    )
    exit_code = 0
    if result.error:
        exit_code = 2
    elif result.failed and not soft_fail:
        exit_code = 3
    return summary, exit_code


def resolve_titles(
    urls: Sequence[str],
    *,
    settings: Optional[TitlerSettings] = None,
    notifier: Optional[Notifier] = None,
) -> List[TitleResolution]:
    settings = settings or load_settings()
    return _run_in_loop(_resolve_urls(urls, settings, notifier or LoggingNotifier()))


__all__ = [
    "TextSource",
    "FileTextSource",
    "StreamTextSource",
    "BufferedTextSource",
    "open_text_source",
    "generate_run_id",
    "build_run_summary",
    "run_tagging",
    "resolve_titles",
]
