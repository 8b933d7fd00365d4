"""Bounded in-memory map of original URL -> last resolved URL."""

from __future__ import annotations

import logging
from typing import Dict, Optional

from .titler_config import REDIRECT_CACHE_EVICT_DIVISOR, REDIRECT_CACHE_SIZE

logger = logging.getLogger(__name__)


class RedirectCache:
    """Insertion-ordered cache; evicts the oldest tenth when full.

    Not thread-safe. Shared only by tasks on a single event loop.
    """

    def __init__(self, capacity: int = REDIRECT_CACHE_SIZE) -> None:
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.capacity = capacity
        self._entries: Dict[str, str] = {}

    @property
    def evict_count(self) -> int:
        return max(1, self.capacity // REDIRECT_CACHE_EVICT_DIVISOR)

    def get(self, url: str) -> Optional[str]:
        return self._entries.get(url)

    def put(self, url: str, resolved: str) -> None:
        if url in self._entries:
            self._entries[url] = resolved
            return
        if len(self._entries) >= self.capacity:
            for key in list(self._entries)[: self.evict_count]:
                del self._entries[key]
            logger.debug("Redirect cache full; evicted %d oldest entries", self.evict_count)
        self._entries[url] = resolved

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, url: object) -> bool:
        return url in self._entries


__all__ = ["RedirectCache"]
