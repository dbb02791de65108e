"""
Warm URL cache.

Short-TTL cache of URLs pre-resolved for tracks the predictor expects to be
needed imminently. Kept apart from the hot tier because these entries are
speculative and must expire quickly to avoid serving stale provider links.
TTL eviction only: an expired entry is treated as absent and removed on read.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from encore.cache.hot import UrlEntry
from encore.core.models import TierStats

logger = logging.getLogger(__name__)


class WarmURLCache:
    def __init__(self, *, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.time) -> None:
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
            logger.debug("Warm entry expired: %s", reference)
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
        existing = self._entries.get(reference)
        if existing is not None and generation < existing.generation:
            return False

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

    def remove(self, reference: str) -> bool:
        return self._entries.pop(reference, None) is not None

    def cleanup(self) -> int:
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
            name="warm",
            count=len(live),
            oldest_entry_age=max((now - e.created_at for e in live), default=None),
        )
