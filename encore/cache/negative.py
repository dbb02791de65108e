"""
Negative result cache.

Remembers references that were proven unfetchable (a definitive not-found
verdict from a provider) so the resolver can fail fast instead of retrying
in a tight loop. Timeouts and transient failures must never be recorded here.

Entries are kept in insertion order; when the cache is full the oldest
`purge_fraction` of entries is dropped to make room.
"""

from __future__ import annotations

import json
import logging
import time
from collections import OrderedDict
from collections.abc import Callable
from pathlib import Path

from encore.core.models import TierStats

logger = logging.getLogger(__name__)


class NegativeResultCache:
    """Bounded set of references known to be unavailable."""

    def __init__(
        self,
        *,
        max_entries: int = 1000,
        purge_fraction: float = 0.1,
        persist_path: Path | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._max_entries = max(1, max_entries)
        self._purge_count = max(1, int(self._max_entries * purge_fraction))
        self._persist_path = persist_path
        self._clock = clock
        # reference -> time it was marked
        self._entries: OrderedDict[str, float] = OrderedDict()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, reference: object) -> bool:
        return reference in self._entries

    def is_unavailable(self, reference: str) -> bool:
        return reference in self._entries

    def mark(self, reference: str) -> None:
        """Record a definitive not-found verdict for `reference`."""
        if reference in self._entries:
            return

        if len(self._entries) >= self._max_entries:
            for _ in range(min(self._purge_count, len(self._entries))):
                self._entries.popitem(last=False)
            logger.debug("Negative cache full, purged %d oldest entries", self._purge_count)

        self._entries[reference] = self._clock()
        logger.info("Marked %s as unavailable", reference)
        self.save()

    def remove(self, reference: str) -> bool:
        """Forget a verdict (e.g. the file was uploaded again)."""
        if self._entries.pop(reference, None) is None:
            return False
        self.save()
        return True

    def clear(self) -> None:
        self._entries.clear()
        self.save()

    def stats(self) -> TierStats:
        oldest = next(iter(self._entries.values()), None)
        return TierStats(
            name="negative",
            count=len(self._entries),
            oldest_entry_age=None if oldest is None else self._clock() - oldest,
        )

    def load(self) -> None:
        """Load persisted verdicts. Unreadable files are ignored."""
        if self._persist_path is None or not self._persist_path.exists():
            return
        try:
            data = json.loads(self._persist_path.read_text())
            entries = OrderedDict((str(ref), float(ts)) for ref, ts in data)
        except (OSError, ValueError, TypeError) as e:
            logger.warning("Could not load negative cache from %s: %s", self._persist_path, e)
            return

        # Keep only the newest entries if the file outgrew the configured bound.
        while len(entries) > self._max_entries:
            entries.popitem(last=False)
        self._entries = entries
        logger.debug("Loaded %d negative cache entries", len(entries))

    def save(self) -> None:
        """Persist verdicts best-effort."""
        if self._persist_path is None:
            return
        try:
            self._persist_path.parent.mkdir(parents=True, exist_ok=True)
            self._persist_path.write_text(json.dumps(list(self._entries.items())))
        except OSError as e:
            logger.warning("Could not save negative cache: %s", e)
