"""Typed, validated settings for the tagging pipeline.

Settings are built once through :meth:`TitlerSettings.from_mapping`, which
default-fills and clamps every value, and are immutable afterwards. The JSON
file keeps the camelCase keys used by the original editor plugin so an
exported plugin config can be loaded as-is.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .errors import ConfigurationError
from .titler_config import (
    DEFAULT_FALLBACK_PRIORITY,
    DEFAULT_MAX_REDIRECTS,
    DEFAULT_REQUEST_DELAY_MS,
    DEFAULT_TIMEOUT_SECONDS,
    DEFAULT_URL_REGEX,
    FALLBACK_PRIORITIES,
    MAX_REDIRECTS_BOUNDS,
    REQUEST_DELAY_MS_BOUNDS,
    SETTINGS_PATH,
    TIMEOUT_SECONDS_BOUNDS,
)

load_dotenv(override=False)

logger = logging.getLogger(__name__)

ENV_SETTINGS_PATH = "LINKTITLER_SETTINGS_PATH"
ENV_MICROLINK_API_KEY = "LINKTITLER_MICROLINK_API_KEY"
ENV_REQUEST_DELAY_MS = "LINKTITLER_REQUEST_DELAY_MS"

# settings attribute -> JSON file key
_FILE_KEYS = {
    "url_regex": "urlRegex",
    "site_patterns": "sitePatterns",
    "use_archive_fallback": "useArchiveFallback",
    "use_microlink_fallback": "useMicrolinkFallback",
    "microlink_api_key": "microlinkApiKey",
    "fallback_priority": "fallbackPriority",
    "request_delay_ms": "requestDelayMs",
    "follow_redirects": "followRedirects",
    "max_redirects": "maxRedirects",
    "timeout_seconds": "timeoutSeconds",
}


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    try:
        raw = os.getenv(name, "")
        return int(raw) if raw.strip() else default
    except (TypeError, ValueError):
        return default


def _as_bool(value: Any, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    normalized = str(value).strip().lower()
    if not normalized:
        return default
    return normalized not in {"0", "false", "off", "no"}


def _clamp_int(value: Any, bounds: Tuple[int, int], default: int) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        return default
    low, high = bounds
    return max(low, min(high, number))


def _clamp_float(value: Any, bounds: Tuple[float, float], default: float) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        return default
    low, high = bounds
    return max(low, min(high, number))


@dataclass(frozen=True, slots=True)
class SitePattern:
    """Per-site title extraction rule; ``title_regex`` must capture group 1."""

    url_match: str
    title_regex: str

    def to_line(self) -> str:
        return f"{self.url_match}|{self.title_regex}"


def parse_site_pattern_lines(text: str, *, validate: bool = True) -> List[SitePattern]:
    """Parse ``urlMatch|titleRegex`` lines (one rule per line).

    The regex part may itself contain ``|``; only the first separator splits.
    Raises ConfigurationError on a malformed line or (when ``validate``) an
    invalid regex.
    """

    patterns: List[SitePattern] = []
    for line in text.splitlines():
        if not line.strip():
            continue
        url_match, sep, title_regex = line.partition("|")
        if not sep:
            raise ConfigurationError(
                f'Invalid format in line: "{line}". Expected format: urlMatch|titleRegex'
            )
        pattern = SitePattern(url_match=url_match.strip(), title_regex=title_regex.strip())
        if validate:
            validate_regex(pattern.title_regex, label=f"site pattern for {pattern.url_match}")
        patterns.append(pattern)
    return patterns


def _coerce_site_patterns(raw: Any) -> Tuple[SitePattern, ...]:
    if raw is None:
        return ()
    if isinstance(raw, str):
        return tuple(parse_site_pattern_lines(raw, validate=False))
    patterns: List[SitePattern] = []
    if not isinstance(raw, Iterable):
        logger.warning("Ignoring site patterns of unexpected type %s", type(raw).__name__)
        return ()
    for item in raw:
        if isinstance(item, SitePattern):
            patterns.append(item)
        elif isinstance(item, Mapping):
            url_match = str(item.get("urlMatch") or item.get("url_match") or "").strip()
            title_regex = str(item.get("titleRegex") or item.get("title_regex") or "").strip()
            if title_regex:
                patterns.append(SitePattern(url_match=url_match, title_regex=title_regex))
        elif isinstance(item, str) and "|" in item:
            patterns.extend(parse_site_pattern_lines(item, validate=False))
    return tuple(patterns)


def validate_regex(pattern: str, *, label: str = "regex pattern") -> re.Pattern:
    try:
        return re.compile(pattern, re.IGNORECASE | re.MULTILINE)
    except re.error as exc:
        raise ConfigurationError(f"Invalid {label}: {exc}") from exc


@dataclass(frozen=True, slots=True)
class TitlerSettings:
    url_regex: str = DEFAULT_URL_REGEX
    site_patterns: Tuple[SitePattern, ...] = field(default_factory=tuple)
    use_archive_fallback: bool = False
    use_microlink_fallback: bool = False
    microlink_api_key: str = ""
    fallback_priority: str = DEFAULT_FALLBACK_PRIORITY
    request_delay_ms: int = DEFAULT_REQUEST_DELAY_MS
    follow_redirects: bool = True
    max_redirects: int = DEFAULT_MAX_REDIRECTS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @classmethod
    def from_mapping(cls, data: Optional[Mapping[str, Any]] = None) -> "TitlerSettings":
        """Default-fill, coerce and clamp a loosely typed mapping.

        Accepts both the file's camelCase keys and attribute names. The URL
        regex is stored as given; it is validated when a batch compiles it.
        """

        data = dict(data or {})

        def pick(attr: str, default: Any) -> Any:
            file_key = _FILE_KEYS[attr]
            if file_key in data:
                return data[file_key]
            return data.get(attr, default)

        url_regex = str(pick("url_regex", DEFAULT_URL_REGEX) or DEFAULT_URL_REGEX)
        priority = str(pick("fallback_priority", DEFAULT_FALLBACK_PRIORITY) or "").strip()
        if priority not in FALLBACK_PRIORITIES:
            if priority:
                logger.warning("Unknown fallback priority %r; using %s", priority, DEFAULT_FALLBACK_PRIORITY)
            priority = DEFAULT_FALLBACK_PRIORITY
        return cls(
            url_regex=url_regex,
            site_patterns=_coerce_site_patterns(pick("site_patterns", ())),
            use_archive_fallback=_as_bool(pick("use_archive_fallback", None), False),
            use_microlink_fallback=_as_bool(pick("use_microlink_fallback", None), False),
            microlink_api_key=str(pick("microlink_api_key", "") or "").strip(),
            fallback_priority=priority,
            request_delay_ms=_clamp_int(
                pick("request_delay_ms", DEFAULT_REQUEST_DELAY_MS),
                REQUEST_DELAY_MS_BOUNDS,
                DEFAULT_REQUEST_DELAY_MS,
            ),
            follow_redirects=_as_bool(pick("follow_redirects", None), True),
            max_redirects=_clamp_int(
                pick("max_redirects", DEFAULT_MAX_REDIRECTS),
                MAX_REDIRECTS_BOUNDS,
                DEFAULT_MAX_REDIRECTS,
            ),
            timeout_seconds=_clamp_float(
                pick("timeout_seconds", DEFAULT_TIMEOUT_SECONDS),
                TIMEOUT_SECONDS_BOUNDS,
                DEFAULT_TIMEOUT_SECONDS,
            ),
        )

    def to_mapping(self) -> Dict[str, Any]:
        return {
            "urlRegex": self.url_regex,
            "sitePatterns": [
                {"urlMatch": p.url_match, "titleRegex": p.title_regex} for p in self.site_patterns
            ],
            "useArchiveFallback": self.use_archive_fallback,
            "useMicrolinkFallback": self.use_microlink_fallback,
            "microlinkApiKey": self.microlink_api_key,
            "fallbackPriority": self.fallback_priority,
            "requestDelayMs": self.request_delay_ms,
            "followRedirects": self.follow_redirects,
            "maxRedirects": self.max_redirects,
            "timeoutSeconds": self.timeout_seconds,
        }

    @property
    def priority_applies(self) -> bool:
        return self.use_archive_fallback and self.use_microlink_fallback


def update_settings(settings: TitlerSettings, **changes: Any) -> TitlerSettings:
    """Return a copy with ``changes`` applied, validating regexes first.

    Raises ConfigurationError and leaves ``settings`` untouched when a new
    URL regex or site pattern does not compile.
    """

    if "url_regex" in changes:
        validate_regex(str(changes["url_regex"]), label="regex pattern")
    if "site_patterns" in changes:
        patterns = _coerce_site_patterns(changes["site_patterns"])
        for pattern in patterns:
            validate_regex(pattern.title_regex, label=f"site pattern for {pattern.url_match}")
        changes["site_patterns"] = patterns
    if "fallback_priority" in changes and changes["fallback_priority"] not in FALLBACK_PRIORITIES:
        raise ConfigurationError(
            f"Invalid fallback priority {changes['fallback_priority']!r}; expected one of "
            + ", ".join(FALLBACK_PRIORITIES)
        )
    merged = {**asdict_settings(settings), **changes}
    return TitlerSettings.from_mapping(merged)


def setting_attr(name: str) -> str:
    """Map a file key (``maxRedirects``) or attribute name to the attribute."""

    key = (name or "").strip()
    if key in _FILE_KEYS:
        return key
    for attr, file_key in _FILE_KEYS.items():
        if file_key == key:
            return attr
    known = ", ".join(_FILE_KEYS.values())
    raise ConfigurationError(f"Unknown setting {name!r}. Known settings: {known}")


def asdict_settings(settings: TitlerSettings) -> Dict[str, Any]:
    return {attr: getattr(settings, attr) for attr in _FILE_KEYS}


def resolve_settings_path(path: Optional[Path] = None) -> Path:
    env_path = os.getenv(ENV_SETTINGS_PATH)
    if path is not None:
        return Path(path)
    if env_path:
        return Path(env_path)
    return SETTINGS_PATH


def load_settings(path: Optional[Path] = None, *, apply_env: bool = True) -> TitlerSettings:
    """Load settings from JSON, then apply environment overrides.

    A missing file yields defaults. An unreadable or non-object file is
    logged and ignored rather than failing the run. Pass ``apply_env=False``
    when the result will be saved back, so env secrets never reach the file.
    """

    settings_path = resolve_settings_path(path)
    data: Dict[str, Any] = {}
    if settings_path.exists():
        try:
            loaded = json.loads(settings_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as exc:
            logger.warning("Could not read settings from %s: %s", settings_path, exc)
            loaded = {}
        if isinstance(loaded, dict):
            data = loaded
        else:
            logger.warning("Settings file %s must contain a JSON object", settings_path)
    if not apply_env:
        return TitlerSettings.from_mapping(data)
    env_key = os.getenv(ENV_MICROLINK_API_KEY)
    if env_key:
        data["microlinkApiKey"] = env_key
    env_delay = _env_int(ENV_REQUEST_DELAY_MS)
    if env_delay is not None:
        data["requestDelayMs"] = env_delay
    return TitlerSettings.from_mapping(data)


def save_settings(settings: TitlerSettings, path: Optional[Path] = None) -> Path:
    settings_path = resolve_settings_path(path)
    settings_path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = settings_path.with_suffix(settings_path.suffix + ".tmp")
    tmp_path.write_text(json.dumps(settings.to_mapping(), indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
    tmp_path.replace(settings_path)
    return settings_path


DEFAULT_SETTINGS = TitlerSettings()

__all__ = [
    "SitePattern",
    "TitlerSettings",
    "DEFAULT_SETTINGS",
    "parse_site_pattern_lines",
    "validate_regex",
    "update_settings",
    "setting_attr",
    "load_settings",
    "save_settings",
    "resolve_settings_path",
]
