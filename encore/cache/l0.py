"""
L0 blob cache - the fastest tier.

Holds the fully materialized bytes of the current and most recently played
tracks together with an object URL wrapping them, so that resume and rollback
never touch storage or the network. Strict LRU by position with a tiny fixed
capacity.

The tier exclusively owns the object URLs it creates: every eviction,
replacement or clear revokes the URL before the entry is forgotten.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from encore.cache.object_urls import DEFAULT_CONTENT_TYPE, ObjectUrlRegistry
from encore.core.models import TierStats

logger = logging.getLogger(__name__)


@dataclass
class L0Entry:
    reference: str
    url: str
    data: bytes
    created_at: float
    last_accessed_at: float
    access_count: int = 1
    generation: int = 0
    duration: float | None = None


class L0BlobCache:
    """Tiny MRU-first list of materialized tracks."""

    def __init__(
        self,
        registry: ObjectUrlRegistry,
        *,
        max_entries: int = 3,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._registry = registry
        self._max_entries = max(1, max_entries)
        self._clock = clock
        # Index 0 is the most recently used entry
        self._entries: list[L0Entry] = []

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, reference: object) -> bool:
        return any(entry.reference == reference for entry in self._entries)

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def references(self) -> list[str]:
        """References in MRU order."""
        return [entry.reference for entry in self._entries]

    def _find(self, reference: str) -> int:
        for index, entry in enumerate(self._entries):
            if entry.reference == reference:
                return index
        return -1

    def get(self, reference: str) -> L0Entry | None:
        """Return the entry and move it to the front."""
        index = self._find(reference)
        if index < 0:
            return None

        entry = self._entries.pop(index)
        self._entries.insert(0, entry)
        entry.access_count += 1
        entry.last_accessed_at = self._clock()
        return entry

    def put(
        self,
        reference: str,
        data: bytes,
        *,
        generation: int = 0,
        duration: float | None = None,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> str:
        """
        Materialize `data` and insert it at the front.

        A write whose generation is older than the cached entry's is ignored
        and the existing URL is returned.

        Returns:
            The object URL now serving `reference`.
        """
        index = self._find(reference)
        if index >= 0:
            existing = self._entries[index]
            if generation < existing.generation:
                logger.debug(
                    "Ignoring stale L0 write for %s (gen %d < %d)",
                    reference,
                    generation,
                    existing.generation,
                )
                return existing.url
            self._entries.pop(index)
            self._registry.revoke(existing.url)
        elif len(self._entries) >= self._max_entries:
            evicted = self._entries.pop()
            self._registry.revoke(evicted.url)
            logger.debug("L0 eviction: %s", evicted.reference)

        now = self._clock()
        url = self._registry.create(data, content_type)
        self._entries.insert(
            0,
            L0Entry(
                reference=reference,
                url=url,
                data=data,
                created_at=now,
                last_accessed_at=now,
                generation=generation,
                duration=duration,
            ),
        )
        logger.debug("L0 set: %s (%d bytes)", reference, len(data))
        return url

    def remove(self, reference: str) -> bool:
        index = self._find(reference)
        if index < 0:
            return False
        entry = self._entries.pop(index)
        self._registry.revoke(entry.url)
        return True

    def clear(self) -> int:
        """Release every object URL and forget all entries."""
        count = len(self._entries)
        for entry in self._entries:
            self._registry.revoke(entry.url)
        self._entries = []
        return count

    def stats(self) -> TierStats:
        now = self._clock()
        return TierStats(
            name="l0",
            count=len(self._entries),
            total_bytes=sum(len(entry.data) for entry in self._entries),
            oldest_entry_age=max((now - e.created_at for e in self._entries), default=None),
        )
