"""Locate bare URLs in free text and substitute replacements by offset."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable, List, Union

from .errors import ConfigurationError

LINK_TARGET_PREFIX = "]("


@dataclass(frozen=True, slots=True)
class CandidateUrl:
    """A pattern match in the input text; offsets refer to that text."""

    start: int
    end: int
    url: str
    linked: bool = False


@dataclass(frozen=True, slots=True)
class TaggedSegment:
    start: int
    end: int
    replacement: str


def compile_url_pattern(pattern: Union[str, "re.Pattern[str]"]) -> "re.Pattern[str]":
    """Compile the user URL pattern case-insensitive and multiline.

    Raises ConfigurationError when the pattern does not compile.
    """

    if isinstance(pattern, re.Pattern):
        return pattern
    try:
        return re.compile(pattern, re.IGNORECASE | re.MULTILINE)
    except re.error as exc:
        raise ConfigurationError(f"Invalid regex pattern: {exc}") from exc


def find_candidates(text: str, pattern: Union[str, "re.Pattern[str]"]) -> List[CandidateUrl]:
    compiled = compile_url_pattern(pattern)
    candidates: List[CandidateUrl] = []
    for match in compiled.finditer(text or ""):
        start, end = match.span()
        if start == end:
            continue
        linked = start >= 2 and text[start - 2 : start] == LINK_TARGET_PREFIX
        candidates.append(CandidateUrl(start=start, end=end, url=match.group(0), linked=linked))
    return candidates


def raw_candidates(text: str, pattern: Union[str, "re.Pattern[str]"]) -> List[CandidateUrl]:
    """Candidates that are not already the target of a markdown link."""

    return [c for c in find_candidates(text, pattern) if not c.linked]


def apply_segments(text: str, segments: Iterable[TaggedSegment]) -> str:
    """Apply replacements back to front so earlier offsets stay valid.

    Raises ValueError on out-of-range or overlapping segments.
    """

    ordered = sorted(segments, key=lambda s: (s.start, s.end))
    previous_end = 0
    for segment in ordered:
        if segment.start < 0 or segment.end > len(text) or segment.start > segment.end:
            raise ValueError(f"segment {segment.start}:{segment.end} is out of range")
        if segment.start < previous_end:
            raise ValueError(f"segment {segment.start}:{segment.end} overlaps a previous segment")
        previous_end = segment.end
    result = text
    for segment in reversed(ordered):
        result = result[: segment.start] + segment.replacement + result[segment.end :]
    return result


def format_markdown_link(title: str, url: str) -> str:
    return f"[{title}]({url})"


__all__ = [
    "CandidateUrl",
    "TaggedSegment",
    "compile_url_pattern",
    "find_candidates",
    "raw_candidates",
    "apply_segments",
    "format_markdown_link",
]
