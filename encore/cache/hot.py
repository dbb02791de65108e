"""
Hot URL cache.

In-process mapping from logical reference to a resolved, playable URL. Bounded
by count and TTL. When full, the entry with the lowest frequency/recency score
`access_count / (1 + seconds_since_last_access)` is evicted.
"""

from __future__ import annotations

import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from encore.core.models import TierStats

logger = logging.getLogger(__name__)


@dataclass
class UrlEntry:
    """A cached URL plus the bookkeeping every URL tier needs."""

    reference: str
    url: str
    created_at: float
    last_accessed_at: float
    access_count: int = 1
    expires_hint: float | None = None
    duration: float | None = None
    generation: int = 0

    def expires_at(self, ttl_seconds: float) -> float:
        """Earlier of the tier TTL and the provider's own expiry hint."""
        deadline = self.created_at + ttl_seconds
        if self.expires_hint is not None:
            deadline = min(deadline, self.expires_hint)
        return deadline

    def is_expired(self, now: float, ttl_seconds: float) -> bool:
        return now >= self.expires_at(ttl_seconds)


def eviction_score(entry: UrlEntry, now: float) -> float:
    """Higher is more valuable. Recency is measured in seconds."""
    seconds_since_access = max(0.0, now - entry.last_accessed_at)
    return entry.access_count / (1 + seconds_since_access)


class HotURLCache:
    """Count- and TTL-bounded URL cache with frequency/recency eviction."""

    def __init__(
        self,
        *,
        max_entries: int = 50,
        ttl_seconds: float = 1800.0,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_entries = max(1, max_entries)
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[str, UrlEntry] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, reference: object) -> bool:
        entry = self._entries.get(reference) if isinstance(reference, str) else None
        return entry is not None and not entry.is_expired(self._clock(), self._ttl)

    def get(self, reference: str) -> UrlEntry | None:
        entry = self._entries.get(reference)
        if entry is None:
            return None

        now = self._clock()
        if entry.is_expired(now, self._ttl):
            del self._entries[reference]
            logger.debug("Hot entry expired: %s", reference)
            return None

        entry.last_accessed_at = now
        entry.access_count += 1
        return entry

    def put(
        self,
        reference: str,
        url: str,
        *,
        expires_hint: float | None = None,
        duration: float | None = None,
        generation: int = 0,
    ) -> bool:
        """
        Insert or replace the URL for `reference`.

        Returns False when the write was older than the cached entry and was
        dropped.
        """
        existing = self._entries.get(reference)
        if existing is not None and generation < existing.generation:
            logger.debug("Ignoring stale hot write for %s", reference)
            return False

        if existing is None and len(self._entries) >= self._max_entries:
            self._evict_one()

        now = self._clock()
        self._entries[reference] = UrlEntry(
            reference=reference,
            url=url,
            created_at=now,
            last_accessed_at=now,
            expires_hint=expires_hint,
            duration=duration,
            generation=generation,
        )
        return True

    def _evict_one(self) -> None:
        now = self._clock()
        expired = [ref for ref, e in self._entries.items() if e.is_expired(now, self._ttl)]
        if expired:
            del self._entries[expired[0]]
            return

        lowest_ref = None
        lowest_score = math.inf
        for ref, entry in self._entries.items():
            score = eviction_score(entry, now)
            if score < lowest_score:
                lowest_score = score
                lowest_ref = ref

        if lowest_ref is not None:
            del self._entries[lowest_ref]
            logger.debug("Hot eviction: %s (score %.4f)", lowest_ref, lowest_score)

    def set_duration(self, reference: str, duration: float) -> None:
        entry = self._entries.get(reference)
        if entry is not None:
            entry.duration = duration

    def remove(self, reference: str) -> bool:
        return self._entries.pop(reference, None) is not None

    def cleanup(self) -> int:
        """Drop expired entries. Returns the number removed."""
        now = self._clock()
        expired = [ref for ref, e in self._entries.items() if e.is_expired(now, self._ttl)]
        for ref in expired:
            del self._entries[ref]
        return len(expired)

    def clear(self) -> None:
        self._entries.clear()

    def stats(self) -> TierStats:
        now = self._clock()
        live = [e for e in self._entries.values() if not e.is_expired(now, self._ttl)]
        return TierStats(
            name="hot",
            count=len(live),
            oldest_entry_age=max((now - e.created_at for e in live), default=None),
        )
