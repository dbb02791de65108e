"""
Encore Service - Main Engine Module

This module contains the EncoreService class that wires the cache tiers,
resolver, predictive preloader and playback controllers together from the
configuration and manages their lifecycle.
"""

from __future__ import annotations

import asyncio
import logging
import signal
import time
from collections.abc import Callable

import httpx

from encore.cache.blob_store import SqliteBlobStore
from encore.cache.durable import DurableBlobStore
from encore.cache.hot import HotURLCache
from encore.cache.l0 import L0BlobCache
from encore.cache.negative import NegativeResultCache
from encore.cache.object_urls import ObjectUrlRegistry
from encore.cache.warm import WarmURLCache
from encore.config import EncoreConfig, get_config
from encore.core.events import CacheClearedEvent, Event, EventBus, TrackChangedEvent, event_bus
from encore.core.models import ResolvedStream, StreamHints, TierStats, Track
from encore.core.queue import PlayQueue
from encore.playback.advance import AdvanceOutcome, AdvanceResult, RecommendationSource, TrackAdvancer
from encore.playback.crossfade import CrossfadeController, CrossfadeOutcome
from encore.playback.engines import EngineHandle
from encore.playback.scheduler import Scheduler
from encore.prediction.preloader import PredictivePreloader
from encore.resolution.breaker import CircuitBreaker
from encore.resolution.fetch import ByteFetcher, HttpByteFetcher
from encore.resolution.providers import ProviderRegistry
from encore.resolution.resolver import Resolver
from encore.web.server import WebServer

logger = logging.getLogger(__name__)

NEGATIVE_CACHE_FILE = "negative-cache.json"
PREDICTION_CONTEXT_FILE = "prediction-context.json"


class EncoreService:
    """
    Main Encore engine that coordinates all components.

    The service manages:
    - The cache tiers (negative, L0, durable, hot, warm)
    - The resolver and its source providers
    - The predictive preloader
    - The crossfade controller and track advancer (when engines are attached)
    - The diagnostics web server
    """

    def __init__(
        self,
        config: EncoreConfig | None = None,
        *,
        engines: tuple[EngineHandle, EngineHandle] | None = None,
        providers: ProviderRegistry | None = None,
        fetcher: ByteFetcher | None = None,
        recommender: RecommendationSource | None = None,
        scheduler: Scheduler | None = None,
        bus: EventBus | None = None,
        http_client: httpx.AsyncClient | None = None,
        enable_web: bool | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        """
        Initialize the service.

        Args:
            config: Engine configuration (defaults to the global config).
            engines: Two playback engines. Without them only resolution,
                caching and prediction are available.
            providers: Source providers (default: built from config).
            fetcher: Byte fetcher for backfill (default: HTTP).
            recommender: Similar-track source for autoplay at queue end.
            scheduler: Tick source for the crossfade ramp.
            bus: Event bus (default: the module-level bus).
            http_client: Shared HTTP client (default: created and owned here).
            enable_web: Override `config.web.enabled`.
        """
        self.config = config or get_config()
        cfg = self.config
        self.bus = bus or event_bus
        self._clock = clock

        self._owns_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(cfg.resolver.promotion_timeout_seconds)
        )

        state_dir = cfg.storage.state_dir

        # Cache tiers
        self.object_urls = ObjectUrlRegistry(cfg.object_url_base)
        self.negative = NegativeResultCache(
            max_entries=cfg.negative.max_entries,
            purge_fraction=cfg.negative.purge_fraction,
            persist_path=state_dir / NEGATIVE_CACHE_FILE if cfg.negative.persist else None,
            clock=clock,
        )
        self.l0 = L0BlobCache(self.object_urls, max_entries=cfg.l0.max_entries, clock=clock)
        self.hot = HotURLCache(
            max_entries=cfg.hot.max_entries,
            ttl_seconds=cfg.hot.ttl_seconds,
            clock=clock,
        )
        self.warm = WarmURLCache(ttl_seconds=cfg.warm.ttl_seconds, clock=clock)
        self.blob_store = SqliteBlobStore(cfg.storage.database_path)
        self.durable = DurableBlobStore(
            self.blob_store,
            max_bytes=cfg.durable.max_bytes,
            max_age_seconds=cfg.durable.max_age_seconds,
            target_ratio=cfg.durable.cleanup_target_ratio,
            mode=cfg.durable.mode,
            clock=clock,
        )

        # Resolution
        self.providers = providers or ProviderRegistry.from_config(cfg.providers, client=self.http_client)
        self.fetcher = fetcher or HttpByteFetcher(self.http_client, registry=self.object_urls)
        self.breaker = CircuitBreaker(
            max_failures=cfg.breaker.max_failures,
            reset_seconds=cfg.breaker.reset_seconds,
        )
        self.resolver = Resolver(
            providers=self.providers,
            fetcher=self.fetcher,
            negative=self.negative,
            l0=self.l0,
            durable=self.durable,
            hot=self.hot,
            warm=self.warm,
            breaker=self.breaker,
            network_timeout=cfg.resolver.network_timeout_seconds,
            promotion_timeout=cfg.resolver.promotion_timeout_seconds,
            promote_to_l0=cfg.resolver.promote_to_l0,
            clock=clock,
        )

        # Prediction
        self.preloader = PredictivePreloader(
            self.resolver,
            self.warm,
            relevance_threshold=cfg.prediction.relevance_threshold,
            top_n=cfg.prediction.top_n,
            stagger_ms=cfg.prediction.stagger_ms,
            max_jitter=cfg.prediction.max_jitter,
            genre_window=cfg.prediction.genre_window,
            artist_window=cfg.prediction.artist_window,
            history_size=cfg.prediction.history_size,
            persist_path=state_dir / PREDICTION_CONTEXT_FILE if cfg.prediction.persist else None,
        )

        # Playback
        self.queue = PlayQueue()
        self.crossfade: CrossfadeController | None = None
        self.advancer: TrackAdvancer | None = None
        if engines is not None:
            primary, secondary = engines
            if cfg.crossfade.enabled:
                self.crossfade = CrossfadeController(
                    primary,
                    secondary,
                    self.resolver,
                    scheduler=scheduler,
                    bus=self.bus,
                    overlap_seconds=cfg.crossfade.overlap_seconds,
                    step_interval_ms=cfg.crossfade.step_interval_ms,
                    ready_timeout=cfg.crossfade.ready_timeout_seconds,
                    volume=cfg.crossfade.volume,
                    on_swapped=self._commit_crossfade,
                )
            self.advancer = TrackAdvancer(
                self.queue,
                self.resolver,
                crossfade=self.crossfade,
                engine=primary,
                recommender=recommender,
                bus=self.bus,
                volume=cfg.crossfade.volume,
            )

        self._web_enabled = cfg.web.enabled if enable_web is None else enable_web
        self.web_server: WebServer | None = None

        # Service state
        self._running = False
        self._shutdown_event: asyncio.Event | None = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Open storage, restore persisted state and start the web server."""
        logger.info("Starting Encore")

        self._running = True
        self._shutdown_event = asyncio.Event()

        await self.blob_store.open()
        await self.durable.load_index()
        self.negative.load()
        self.preloader.load()

        await self.bus.subscribe("track.changed", self._on_track_changed)

        if self._web_enabled:
            self.web_server = WebServer(self, self.object_urls)
            await self.web_server.start(host=self.config.web.host, port=self.config.web.port)

        logger.info(
            "Encore started: %d providers, durable tier %d entries, crossfade %s",
            len(self.providers),
            len(self.durable),
            "on" if self.crossfade is not None else "off",
        )

    async def stop(self) -> None:
        """Stop all components and persist best-effort state."""
        if not self._running:
            return

        logger.info("Stopping Encore...")
        self._running = False

        if self.web_server is not None:
            await self.web_server.stop()
            self.web_server = None

        await self.bus.unsubscribe("track.changed", self._on_track_changed)

        if self.crossfade is not None:
            await self.crossfade.stop()
        if self.advancer is not None:
            await self.advancer.aclose()
        await self.preloader.stop()
        await self.resolver.aclose()

        self.negative.save()
        self.preloader.save()

        await self.durable.flush()
        await self.blob_store.close()
        self.l0.clear()

        if self._owns_client:
            await self.http_client.aclose()

        if self._shutdown_event:
            self._shutdown_event.set()

        logger.info("Encore stopped")

    async def run(self) -> None:
        """
        Run until shutdown is requested (SIGINT or SIGTERM).
        """
        await self.start()

        loop = asyncio.get_running_loop()

        def handle_signal() -> None:
            logger.info("Received shutdown signal")
            if self._shutdown_event:
                self._shutdown_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, handle_signal)
            except NotImplementedError:
                # Signal handlers not supported on Windows
                pass

        if self._shutdown_event:
            await self._shutdown_event.wait()

        await self.stop()

    @property
    def is_running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    async def resolve(self, reference: str, hints: StreamHints | None = None) -> ResolvedStream:
        return await self.resolver.resolve(reference, hints)

    def resolve_nowait(self, reference: str) -> ResolvedStream | None:
        return self.resolver.resolve_nowait(reference)

    def forget_unavailable(self, reference: str) -> bool:
        removed = self.resolver.forget_unavailable(reference)
        if removed:
            self.negative.save()
        return removed

    def stats(self) -> dict[str, TierStats]:
        """Read-only statistics per tier."""
        tiers = (
            self.negative.stats(),
            self.l0.stats(),
            self.durable.stats(),
            self.hot.stats(),
            self.warm.stats(),
        )
        return {stats.name: stats for stats in tiers}

    def clear_all(self) -> int:
        """
        Synchronously invalidate every tier.

        L0 object URLs are released immediately; the durable purge completes
        in the background before any later durable operation.

        Returns:
            Number of object URLs released.
        """
        self.resolver.invalidate()
        released = self.l0.clear()
        self.hot.clear()
        self.warm.clear()
        self.negative.clear()
        self.durable.invalidate()
        self.negative.save()
        logger.info("All cache tiers cleared (%d object URLs released)", released)
        self.bus.publish_sync(CacheClearedEvent(released_urls=released))
        return released

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    def on_active_track_changed(self, current: Track, candidates: list[Track] | None = None) -> None:
        """Fire-and-forget prediction update for a new active track."""
        if self.crossfade is not None:
            self.crossfade.clear_failure()
        if candidates is None:
            candidates = self.queue.snapshot()
        self.preloader.on_active_track_changed(current, candidates)

    def begin_crossfade_if_due(self, remaining_seconds: float) -> asyncio.Task[CrossfadeOutcome] | None:
        if self.crossfade is None:
            return None
        return self.crossfade.begin_crossfade_if_due(remaining_seconds, self.queue.peek_next())

    async def handle_track_ended(self) -> AdvanceOutcome:
        if self.advancer is None:
            return AdvanceOutcome(AdvanceResult.IGNORED)
        return await self.advancer.on_track_ended()

    async def skip(self) -> AdvanceOutcome:
        if self.advancer is None:
            return AdvanceOutcome(AdvanceResult.IGNORED)
        return await self.advancer.skip()

    async def stop_playback(self) -> None:
        if self.crossfade is not None:
            await self.crossfade.stop()
        elif self.advancer is not None:
            self.advancer.active_engine.stop()

    def _commit_crossfade(self, track: Track) -> None:
        """Move the queue cursor onto the track a crossfade just swapped in."""
        upcoming = self.queue.peek_next()
        if upcoming is not None and upcoming.id == track.id:
            self.queue.next()
            return
        for index, queued in enumerate(self.queue.tracks):
            if queued.id == track.id:
                self.queue.play(index)
                return
        logger.warning("Crossfaded track %s is not in the queue", track.reference)

    async def _on_track_changed(self, event: Event) -> None:
        if not isinstance(event, TrackChangedEvent):
            return
        current = self.queue.current_track
        if current is None or current.id != event.track_id:
            logger.debug("Track change for %s does not match the queue cursor", event.reference)
            return
        self.on_active_track_changed(current)
