"""
Resolver for Encore.

Turns a logical reference into a playable URL by walking the cache tiers in
priority order and falling back to network resolution:

1. Negative cache  -> KnownUnavailable, no network attempt
2. L0              -> materialized object URL, never suspends
3. Durable         -> bytes from storage, materialized into L0
4. Hot, then Warm  -> cached provider URL; schedules a background promotion
5. Network         -> provider for the reference's source kind, hard timeout

Concurrency:
- At most one network resolution per reference is in flight. Concurrent
  callers share it through a pending-attempt registry that is cleared when
  the attempt settles, so the next call after a failure retries on its own.
- Every network attempt takes a generation from a monotonically increasing
  counter. Memory tiers drop writes older than their entry's generation and
  the durable tier drops writes whose start time is older than the stored
  entry, so a slow backfill can never clobber a fresher result.
- `invalidate()` bumps an epoch; background work started before it never
  writes afterwards.
"""

from __future__ import annotations

import asyncio
import itertools
import logging
import time
from collections import Counter
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import httpx

from encore.cache.durable import DurableBlobStore
from encore.cache.hot import HotURLCache, UrlEntry
from encore.cache.l0 import L0BlobCache
from encore.cache.negative import NegativeResultCache
from encore.cache.warm import WarmURLCache
from encore.core.models import ResolvedStream, StreamHints, Tier
from encore.resolution.breaker import CircuitBreaker
from encore.resolution.errors import (
    InvalidProviderResponse,
    InvalidResponse,
    KnownUnavailable,
    NetworkFailure,
    ProviderError,
    ResolutionTimeout,
    SourceNotFound,
)
from encore.resolution.fetch import AudioProbe, ByteFetcher, probe_audio
from encore.resolution.providers import ProviderRegistry

logger = logging.getLogger(__name__)

DEFAULT_NETWORK_TIMEOUT_SECONDS = 4.0
DEFAULT_PROMOTION_TIMEOUT_SECONDS = 30.0


@dataclass
class _Attempt:
    """One in-flight network resolution shared by all concurrent callers."""

    reference: str
    generation: int
    started_at: float
    epoch: int
    speculative: bool
    committed: bool = False


class Resolver:
    """
    Orchestrates the cache tiers and network resolution.

    All tiers are injected; the resolver owns none of them and can be
    rebuilt around existing tiers in tests.
    """

    def __init__(
        self,
        *,
        providers: ProviderRegistry,
        fetcher: ByteFetcher,
        negative: NegativeResultCache,
        l0: L0BlobCache,
        durable: DurableBlobStore,
        hot: HotURLCache,
        warm: WarmURLCache,
        breaker: CircuitBreaker | None = None,
        network_timeout: float = DEFAULT_NETWORK_TIMEOUT_SECONDS,
        promotion_timeout: float = DEFAULT_PROMOTION_TIMEOUT_SECONDS,
        promote_to_l0: bool = True,
        probe: Callable[[bytes], AudioProbe] = probe_audio,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._providers = providers
        self._fetcher = fetcher
        self._negative = negative
        self._l0 = l0
        self._durable = durable
        self._hot = hot
        self._warm = warm
        self._breaker = breaker or CircuitBreaker()
        self._network_timeout = network_timeout
        self._promotion_timeout = promotion_timeout
        self._promote_to_l0 = promote_to_l0
        self._probe = probe
        self._clock = clock

        self._generations = itertools.count(1)
        self._epoch = 0
        self._pending: dict[str, tuple[_Attempt, asyncio.Task[ResolvedStream]]] = {}
        self._promotions: dict[str, asyncio.Task[None]] = {}
        self._hits: Counter[str] = Counter()
        self._network_attempts = 0

    # ------------------------------------------------------------------
    # Tier lookups
    # ------------------------------------------------------------------

    @property
    def network_attempts(self) -> int:
        """Number of provider calls made so far."""
        return self._network_attempts

    def is_cached(self, reference: str) -> bool:
        """True if any positive tier can answer for `reference` right now."""
        return (
            reference in self._l0
            or reference in self._durable
            or reference in self._hot
            or reference in self._warm
        )

    def resolve_nowait(self, reference: str) -> ResolvedStream | None:
        """
        Answer from the in-memory tiers without suspending.

        Raises KnownUnavailable for negative references. Returns None when an
        answer would need storage or network I/O.
        """
        if reference in self._negative:
            raise KnownUnavailable(reference)

        entry = self._l0.get(reference)
        if entry is not None:
            self._hits[Tier.L0.value] += 1
            logger.debug("L0 hit: %s", reference)
            return ResolvedStream(url=entry.url, duration=entry.duration, tier=Tier.L0)

        if reference in self._durable:
            return None

        return self._lookup_urls(reference, speculative=False)

    def _lookup_urls(self, reference: str, *, speculative: bool) -> ResolvedStream | None:
        for tier, cache in ((Tier.HOT, self._hot), (Tier.WARM, self._warm)):
            url_entry = cache.get(reference)
            if url_entry is None:
                continue
            self._hits[tier.value] += 1
            logger.debug("%s hit: %s", tier.value, reference)
            if not speculative:
                self._promote_from(url_entry)
            return ResolvedStream(
                url=url_entry.url,
                expires_hint=url_entry.expires_hint,
                duration=url_entry.duration,
                tier=tier,
            )
        return None

    async def resolve(
        self,
        reference: str,
        hints: StreamHints | None = None,
        *,
        speculative: bool = False,
    ) -> ResolvedStream:
        """
        Resolve `reference` to a playable stream.

        Args:
            reference: Logical reference (cache key).
            hints: Optional title/artist used by catalog providers.
            speculative: Predictive preload. The result is not written to the
                hot tier and no bytes are fetched; the caller decides whether
                to keep it.

        Raises:
            KnownUnavailable, ResolutionTimeout, NetworkFailure, InvalidResponse
        """
        if reference in self._negative:
            raise KnownUnavailable(reference)

        entry = self._l0.get(reference)
        if entry is not None:
            self._hits[Tier.L0.value] += 1
            logger.debug("L0 hit: %s", reference)
            return ResolvedStream(url=entry.url, duration=entry.duration, tier=Tier.L0)

        if reference in self._durable:
            hit = await self._durable.get(reference)
            if hit is not None:
                self._hits[Tier.DURABLE.value] += 1
                logger.debug("Durable hit: %s", reference)
                url = self._l0.put(
                    reference,
                    hit.data,
                    duration=hit.record.duration,
                    content_type=hit.record.content_type,
                )
                return ResolvedStream(url=url, duration=hit.record.duration, tier=Tier.DURABLE)

        stream = self._lookup_urls(reference, speculative=speculative)
        if stream is not None:
            return stream

        return await self._resolve_network(reference, hints or StreamHints(), speculative)

    # ------------------------------------------------------------------
    # Network resolution
    # ------------------------------------------------------------------

    async def _resolve_network(
        self, reference: str, hints: StreamHints, speculative: bool
    ) -> ResolvedStream:
        pending = self._pending.get(reference)
        if pending is None:
            attempt = _Attempt(
                reference=reference,
                generation=next(self._generations),
                started_at=self._clock(),
                epoch=self._epoch,
                speculative=speculative,
            )
            task = asyncio.get_running_loop().create_task(self._network_attempt(attempt, hints))
            self._pending[reference] = (attempt, task)
            task.add_done_callback(lambda _t, a=attempt: self._clear_pending(a))
        else:
            attempt, task = pending
            logger.debug("Joining in-flight resolution for %s", reference)
            if not speculative:
                attempt.speculative = False

        # Shield: a cancelled caller must not cancel the shared attempt.
        stream = await asyncio.shield(task)

        if not speculative and not attempt.committed:
            self._commit(attempt, stream)
        return stream

    def _clear_pending(self, attempt: _Attempt) -> None:
        pending = self._pending.get(attempt.reference)
        if pending is not None and pending[0] is attempt:
            del self._pending[attempt.reference]

    async def _network_attempt(self, attempt: _Attempt, hints: StreamHints) -> ResolvedStream:
        reference = attempt.reference
        provider = self._providers.provider_for(reference)
        if provider is None:
            raise InvalidResponse(reference, f"no provider handles {reference!r}")

        if self._breaker.is_open(provider.name):
            raise NetworkFailure(reference, f"provider {provider.name} is temporarily bypassed")

        self._network_attempts += 1
        logger.info("Resolving %s via %s", reference, provider.name)

        try:
            location = await asyncio.wait_for(
                provider.resolve_remote(reference, hints),
                timeout=self._network_timeout,
            )
        except asyncio.TimeoutError as e:
            # No verdict: never recorded as unavailable.
            self._breaker.record_failure(provider.name)
            raise ResolutionTimeout(
                reference, f"{provider.name} did not answer within {self._network_timeout:.1f}s"
            ) from e
        except SourceNotFound as e:
            self._breaker.record_success(provider.name)
            self._negative.mark(reference)
            self._hot.remove(reference)
            self._warm.remove(reference)
            raise KnownUnavailable(reference, f"{reference} not found") from e
        except InvalidProviderResponse as e:
            raise InvalidResponse(reference, str(e)) from e
        except (ProviderError, httpx.HTTPError, OSError) as e:
            self._breaker.record_failure(provider.name)
            raise NetworkFailure(reference, str(e) or type(e).__name__) from e

        url = getattr(location, "url", None)
        if not isinstance(url, str) or not url:
            raise InvalidResponse(reference, f"{provider.name} returned no url")

        self._breaker.record_success(provider.name)
        stream = ResolvedStream(url=url, expires_hint=location.expires_hint, tier=Tier.NETWORK)

        if not attempt.speculative:
            self._commit(attempt, stream)
        return stream

    def _commit(self, attempt: _Attempt, stream: ResolvedStream) -> None:
        """Write a fresh network result to the hot tier and start the backfill."""
        if attempt.epoch != self._epoch:
            return
        attempt.committed = True
        self._hot.put(
            attempt.reference,
            stream.url,
            expires_hint=stream.expires_hint,
            generation=attempt.generation,
        )
        self._schedule_promotion(
            attempt.reference,
            stream.url,
            generation=attempt.generation,
            created_at=attempt.started_at,
        )

    # ------------------------------------------------------------------
    # Background promotion / backfill
    # ------------------------------------------------------------------

    def _promote_from(self, entry: UrlEntry) -> None:
        if entry.reference in self._l0:
            return
        self._schedule_promotion(
            entry.reference,
            entry.url,
            generation=entry.generation,
            created_at=entry.created_at,
        )

    def _schedule_promotion(
        self, reference: str, url: str, *, generation: int, created_at: float
    ) -> None:
        existing = self._promotions.get(reference)
        if existing is not None and not existing.done():
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("No running loop, skipping promotion of %s", reference)
            return

        task = loop.create_task(
            self._promote(reference, url, generation=generation, created_at=created_at, epoch=self._epoch)
        )
        self._promotions[reference] = task
        task.add_done_callback(lambda t, ref=reference: self._clear_promotion(ref, t))

    def _clear_promotion(self, reference: str, task: asyncio.Task[None]) -> None:
        if self._promotions.get(reference) is task:
            del self._promotions[reference]

    async def _promote(
        self, reference: str, url: str, *, generation: int, created_at: float, epoch: int
    ) -> None:
        """Fetch the bytes behind `url` into the durable tier and L0."""
        try:
            data = await asyncio.wait_for(
                self._fetcher.fetch_bytes(url), timeout=self._promotion_timeout
            )
        except asyncio.TimeoutError:
            logger.warning("Promotion of %s timed out after %.0fs", reference, self._promotion_timeout)
            return
        except Exception as e:
            logger.warning("Promotion of %s failed: %s", reference, e)
            return

        if epoch != self._epoch:
            logger.debug("Dropping promotion of %s: caches were cleared", reference)
            return

        probe = await asyncio.to_thread(self._probe, data)

        if epoch != self._epoch:
            return

        try:
            await self._durable.put(
                reference,
                data,
                created_at=created_at,
                duration=probe.duration,
                content_type=probe.content_type,
            )
        except Exception as e:
            logger.warning("Could not store %s in durable tier: %s", reference, e)

        if epoch != self._epoch:
            return

        if self._promote_to_l0:
            self._l0.put(
                reference,
                data,
                generation=generation,
                duration=probe.duration,
                content_type=probe.content_type,
            )
        if probe.duration is not None:
            self._hot.set_duration(reference, probe.duration)

        logger.debug("Promoted %s (%d bytes)", reference, len(data))

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def forget_unavailable(self, reference: str) -> bool:
        """Remove a negative verdict so the next resolve tries again."""
        return self._negative.remove(reference)

    def invalidate(self) -> None:
        """Detach in-flight work from the caches (used by clear_all)."""
        self._epoch += 1
        self._pending.clear()
        for task in self._promotions.values():
            if not task.done():
                task.cancel()
        self._promotions.clear()

    async def aclose(self) -> None:
        """Cancel background promotions and wait for them to finish."""
        tasks = [task for task in self._promotions.values() if not task.done()]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._promotions.clear()

    def stats(self) -> dict[str, Any]:
        return {
            "pending_resolutions": len(self._pending),
            "pending_promotions": len(self._promotions),
            "network_attempts": self._network_attempts,
            "hits": dict(self._hits),
            "breaker": self._breaker.stats(),
        }
