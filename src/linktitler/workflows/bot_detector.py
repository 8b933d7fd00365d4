"""Heuristic bot-protection (challenge page / WAF) detector.

Pure function of a completed fetch. Returns a verdict plus the list of
indicators that fired so callers can log why a page was treated as blocked.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Tuple

from .titler_config import BLOCK_CONJUNCTIONS, BLOCK_MARKERS, BLOCK_PHRASES, BLOCK_STATUS_CODES

VERDICT_BLOCKED = "blocked"
VERDICT_USABLE = "usable"


@dataclass(frozen=True, slots=True)
class BotDetection:
    verdict: str
    indicators: Tuple[str, ...] = field(default_factory=tuple)

    @property
    def blocked(self) -> bool:
        return self.verdict == VERDICT_BLOCKED

    def to_dict(self) -> dict:
        return {"verdict": self.verdict, "indicators": list(self.indicators)}


def detect_bot_protection(outcome) -> BotDetection:
    """Classify ``outcome`` (anything with ``status`` and ``body``)."""

    indicators: List[str] = []
    status = int(getattr(outcome, "status", 0) or 0)
    body = getattr(outcome, "body", "") or ""
    lowered = body.lower()

    if status in BLOCK_STATUS_CODES:
        indicators.append(f"status:{status}")
    for phrase in BLOCK_PHRASES:
        if phrase in lowered:
            indicators.append(f"phrase:{phrase}")
    for marker in BLOCK_MARKERS:
        if marker in body:
            indicators.append(f"marker:{marker}")
    for terms in BLOCK_CONJUNCTIONS:
        if all(term in lowered for term in terms):
            indicators.append("conjunction:" + "+".join(terms))

    verdict = VERDICT_BLOCKED if indicators else VERDICT_USABLE
    return BotDetection(verdict=verdict, indicators=tuple(indicators))


def is_blocked(outcome) -> bool:
    return detect_bot_protection(outcome).blocked


__all__ = ["BotDetection", "detect_bot_protection", "is_blocked", "VERDICT_BLOCKED", "VERDICT_USABLE"]
