"""High-level exports for the linktitler workflows."""

from .bot_detector import BotDetection, detect_bot_protection, is_blocked
from .entities import decode_entities
from .errors import (
    ConfigurationError,
    HttpStatusError,
    InvalidUrlError,
    NetworkError,
    RedirectError,
    TitleNotFoundError,
    TitlerError,
)
from .fallbacks import ArchiveProvider, FallbackOrchestrator, FallbackResult, MicrolinkProvider
from .notify import EchoNotifier, LoggingNotifier, Notifier
from .redirect_cache import RedirectCache
from .settings import (
    DEFAULT_SETTINGS,
    SitePattern,
    TitlerSettings,
    load_settings,
    save_settings,
    update_settings,
)
from .tagger import TaggingResult, TitleResolution, UrlTagger
from .title_parser import parse_title
from .url_matcher import CandidateUrl, TaggedSegment, apply_segments, find_candidates, raw_candidates
from .web_fetch import FetchOutcome, HttpClient, PageFetcher

__all__ = [
    "ArchiveProvider",
    "BotDetection",
    "CandidateUrl",
    "ConfigurationError",
    "DEFAULT_SETTINGS",
    "EchoNotifier",
    "FallbackOrchestrator",
    "FallbackResult",
    "FetchOutcome",
    "HttpClient",
    "HttpStatusError",
    "InvalidUrlError",
    "LoggingNotifier",
    "MicrolinkProvider",
    "NetworkError",
    "Notifier",
    "PageFetcher",
    "RedirectCache",
    "RedirectError",
    "SitePattern",
    "TaggedSegment",
    "TaggingResult",
    "TitleNotFoundError",
    "TitleResolution",
    "TitlerError",
    "TitlerSettings",
    "UrlTagger",
    "apply_segments",
    "decode_entities",
    "detect_bot_protection",
    "find_candidates",
    "is_blocked",
    "load_settings",
    "parse_title",
    "raw_candidates",
    "save_settings",
    "update_settings",
]
