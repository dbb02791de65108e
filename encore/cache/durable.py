"""
Durable blob store - the only tier that survives restarts.

Wraps a persistent key/value byte store with the retention policies of the
durable tier:

- bounded mode: two-phase cleanup at write time. Entries older than the
  absolute age limit go first; if the stored bytes plus the incoming write
  still exceed the cap, least recently accessed entries are removed until
  usage falls to `target_ratio` of the cap.
- current-song mode: only the active track and the one played immediately
  before it are kept, which is enough for instant rollback when a track
  fails shortly after starting.

An in-memory index of the stored records mirrors the store so that
membership checks and statistics never suspend.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from encore.cache.blob_store import BlobMeta, BlobRecord, SqliteBlobStore
from encore.cache.object_urls import DEFAULT_CONTENT_TYPE
from encore.config import DurableMode
from encore.core.models import TierStats

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class DurableHit:
    data: bytes
    record: BlobRecord


@dataclass(frozen=True, slots=True)
class CleanupReport:
    expired: int = 0
    evicted: int = 0
    freed_bytes: int = 0


class DurableBlobStore:
    """Capacity- and age-bounded persistent audio store."""

    def __init__(
        self,
        store: SqliteBlobStore,
        *,
        max_bytes: int = 500 * 1024 * 1024,
        max_age_seconds: float = 7 * 24 * 60 * 60,
        target_ratio: float = 0.8,
        mode: DurableMode = DurableMode.BOUNDED,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self._max_bytes = max_bytes
        self._max_age = max_age_seconds
        self._target_ratio = target_ratio
        self._mode = mode
        self._clock = clock

        self._index: dict[str, BlobRecord] = {}
        self._lock = asyncio.Lock()

        # current-song mode bookkeeping
        self._current: str | None = None
        self._previous: str | None = None

        # Physical purge scheduled by invalidate()
        self._purge_task: asyncio.Task[None] | None = None
        self._purge_pending = False

    @property
    def mode(self) -> DurableMode:
        return self._mode

    @property
    def total_bytes(self) -> int:
        return sum(record.size for record in self._index.values())

    def __len__(self) -> int:
        return len(self._index)

    def __contains__(self, reference: object) -> bool:
        return reference in self._index

    async def load_index(self) -> None:
        """Rebuild the in-memory index from the store (call after open)."""
        records = await self._store.list_all()
        self._index = {record.key: record for record in records}
        logger.info("Durable tier holds %d entries (%d bytes)", len(self._index), self.total_bytes)

    async def _settle_purge(self) -> None:
        if self._purge_pending:
            self._purge_pending = False
            await self._store.clear()
        task = self._purge_task
        if task is not None:
            self._purge_task = None
            try:
                await task
            except Exception as e:
                logger.warning("Durable purge failed: %s", e)

    async def get(self, reference: str) -> DurableHit | None:
        """Return the stored bytes and update the access time."""
        if reference not in self._index:
            return None

        async with self._lock:
            await self._settle_purge()
            data = await self._store.get(reference)
            if data is None:
                # Index drifted from the store; forget the ghost entry.
                self._index.pop(reference, None)
                return None

            now = self._clock()
            await self._store.touch(reference, now)
            old = self._index.get(reference)
            if old is None:
                return None
            record = BlobRecord(
                key=old.key,
                size=old.size,
                created_at=old.created_at,
                last_accessed_at=now,
                access_count=old.access_count + 1,
                duration=old.duration,
                content_type=old.content_type,
            )
            self._index[reference] = record
            return DurableHit(data=data, record=record)

    async def put(
        self,
        reference: str,
        data: bytes,
        *,
        created_at: float | None = None,
        duration: float | None = None,
        content_type: str = DEFAULT_CONTENT_TYPE,
    ) -> bool:
        """
        Store `data` for `reference`, evicting as needed first.

        `created_at` is the time the producing resolution started; a write
        strictly older than the stored entry is dropped.

        Returns:
            True if the bytes were stored.
        """
        now = self._clock()
        created_at = now if created_at is None else created_at

        async with self._lock:
            await self._settle_purge()

            existing = self._index.get(reference)
            if existing is not None and created_at < existing.created_at:
                logger.debug("Ignoring stale durable write for %s", reference)
                return False

            if len(data) > self._max_bytes:
                logger.warning(
                    "Not storing %s: %d bytes exceed durable capacity %d",
                    reference,
                    len(data),
                    self._max_bytes,
                )
                return False

            if self._mode is DurableMode.CURRENT_SONG:
                await self._retain_current(reference)
            else:
                incoming = len(data) - (existing.size if existing is not None else 0)
                await self._cleanup_locked(max(0, incoming), keep=reference)

            meta = BlobMeta(
                created_at=created_at,
                last_accessed_at=now,
                duration=duration,
                content_type=content_type,
            )
            await self._store.put(reference, data, meta)
            self._index[reference] = BlobRecord(
                key=reference,
                size=len(data),
                created_at=created_at,
                last_accessed_at=now,
                duration=duration if duration is not None else (existing.duration if existing else None),
                content_type=content_type,
            )
            logger.debug("Durable set: %s (%d bytes)", reference, len(data))
            return True

    async def _retain_current(self, reference: str) -> None:
        """Keep only `reference` and the previously current track."""
        if reference != self._current:
            self._previous = self._current
            self._current = reference

        keep = {ref for ref in (self._current, self._previous) if ref is not None}
        for ref in [ref for ref in self._index if ref not in keep]:
            await self._store.delete(ref)
            self._index.pop(ref, None)
            logger.debug("Current-song mode dropped %s", ref)

    async def cleanup(self, incoming_bytes: int = 0) -> CleanupReport:
        """Run the two-phase cleanup pass."""
        async with self._lock:
            await self._settle_purge()
            return await self._cleanup_locked(incoming_bytes)

    async def _cleanup_locked(self, incoming_bytes: int, keep: str | None = None) -> CleanupReport:
        now = self._clock()
        expired = 0
        evicted = 0
        freed = 0

        # Phase 1: absolute age
        for record in list(self._index.values()):
            if now - record.created_at > self._max_age:
                await self._store.delete(record.key)
                self._index.pop(record.key, None)
                expired += 1
                freed += record.size

        # Phase 2: size, least recently accessed first
        total = self.total_bytes
        if total + incoming_bytes > self._max_bytes:
            target = self._max_bytes * self._target_ratio
            by_access = sorted(self._index.values(), key=lambda r: r.last_accessed_at)
            for record in by_access:
                if total + incoming_bytes <= target:
                    break
                if record.key == keep:
                    continue
                await self._store.delete(record.key)
                self._index.pop(record.key, None)
                total -= record.size
                evicted += 1
                freed += record.size

        if expired or evicted:
            logger.info(
                "Durable cleanup: %d expired, %d evicted, %d bytes freed",
                expired,
                evicted,
                freed,
            )
        return CleanupReport(expired=expired, evicted=evicted, freed_bytes=freed)

    async def remove(self, reference: str) -> bool:
        async with self._lock:
            await self._settle_purge()
            self._index.pop(reference, None)
            return await self._store.delete(reference)

    async def flush(self) -> None:
        """Wait for a pending purge (call before closing the store)."""
        async with self._lock:
            await self._settle_purge()

    def invalidate(self) -> None:
        """
        Synchronously forget every entry.

        The index is emptied immediately so lookups miss from now on; the
        physical delete runs as a task and every later store operation waits
        for it first.
        """
        self._index.clear()
        self._current = None
        self._previous = None
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._purge_pending = True
            return
        self._purge_task = loop.create_task(self._store.clear())

    def stats(self) -> TierStats:
        now = self._clock()
        return TierStats(
            name="durable",
            count=len(self._index),
            total_bytes=self.total_bytes,
            oldest_entry_age=max((now - r.created_at for r in self._index.values()), default=None),
        )
