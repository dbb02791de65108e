"""
Shared fakes and fixtures for the Encore test suite.

Everything time-related is driven by injected clocks or the virtual-time
scheduler, so no test waits on wall-clock time.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

import pytest

from encore.cache.blob_store import SqliteBlobStore
from encore.cache.durable import DurableBlobStore
from encore.cache.hot import HotURLCache
from encore.cache.l0 import L0BlobCache
from encore.cache.negative import NegativeResultCache
from encore.cache.object_urls import ObjectUrlRegistry
from encore.cache.warm import WarmURLCache
from encore.core.events import Event, EventBus
from encore.core.models import StreamHints, Track
from encore.resolution.breaker import CircuitBreaker
from encore.resolution.errors import SourceNotFound
from encore.resolution.fetch import AudioProbe
from encore.resolution.providers import ProviderRegistry, RemoteLocation
from encore.resolution.resolver import Resolver

# =============================================================================
# Fakes
# =============================================================================


class ManualClock:
    """Clock that only moves when told to."""

    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeProvider:
    """
    In-memory source provider.

    `outcomes` maps a reference to a URL string or an exception instance;
    unknown references are reported as definitively not found.
    """

    def __init__(self, name: str = "fake") -> None:
        self.name = name
        self.outcomes: dict[str, Any] = {}
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.hang = False

    def handles(self, reference: str) -> bool:
        return True

    async def resolve_remote(self, reference: str, hints: StreamHints) -> RemoteLocation:
        self.calls.append(reference)
        if self.hang:
            await asyncio.Event().wait()
        if self.gate is not None:
            await self.gate.wait()
        outcome = self.outcomes.get(reference)
        if outcome is None:
            raise SourceNotFound(reference)
        if isinstance(outcome, Exception):
            raise outcome
        return RemoteLocation(url=outcome)


class FakeFetcher:
    """Byte fetcher returning deterministic bytes per URL."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.gate: asyncio.Event | None = None
        self.error: Exception | None = None

    async def fetch_bytes(self, url: str) -> bytes:
        self.calls.append(url)
        if self.gate is not None:
            await self.gate.wait()
        if self.error is not None:
            raise self.error
        return b"audio:" + url.encode()


class FakeEngine:
    """Playback engine that records what it was asked to do."""

    def __init__(self, name: str) -> None:
        self.name = name
        self._volume = 1.0
        self.loaded: str | None = None
        self.playing = False
        self.volume_history: list[float] = []
        self.stop_count = 0
        self.load_error: Exception | None = None
        self.load_gate: asyncio.Event | None = None

    @property
    def volume(self) -> float:
        return self._volume

    def set_volume(self, volume: float) -> None:
        self._volume = volume
        self.volume_history.append(volume)

    async def load(self, url: str) -> None:
        if self.load_gate is not None:
            await self.load_gate.wait()
        if self.load_error is not None:
            raise self.load_error
        self.loaded = url

    async def play(self) -> None:
        self.playing = True

    def stop(self) -> None:
        self.playing = False
        self.stop_count += 1


class _VirtualTimer:
    def __init__(self, scheduler: InstantScheduler, interval: float, callback: Callable[[], None]) -> None:
        self._scheduler = scheduler
        self._interval = interval
        self._callback = callback
        self.cancelled = False
        asyncio.get_running_loop().call_soon(self._fire)

    def _fire(self) -> None:
        if self.cancelled:
            return
        self._scheduler.elapsed += self._interval
        self._scheduler.ticks += 1
        self._callback()
        if not self.cancelled:
            asyncio.get_running_loop().call_soon(self._fire)

    def cancel(self) -> None:
        self.cancelled = True


class InstantScheduler:
    """Virtual-time scheduler: each tick runs on the next loop iteration."""

    def __init__(self) -> None:
        self.elapsed = 0.0
        self.ticks = 0
        self.timers: list[_VirtualTimer] = []

    def call_every(self, interval: float, callback: Callable[[], None]) -> _VirtualTimer:
        timer = _VirtualTimer(self, interval, callback)
        self.timers.append(timer)
        return timer

    @property
    def active_timers(self) -> int:
        return sum(1 for t in self.timers if not t.cancelled)


class EventRecorder:
    """Collects every event published on a bus."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def __call__(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: str) -> list[Event]:
        return [e for e in self.events if e.event_type == event_type]


def make_track(
    track_id: str,
    *,
    artist: str = "",
    genre: str | None = None,
    title: str = "",
    reference: str | None = None,
) -> Track:
    return Track(
        id=track_id,
        reference=reference or f"tracks/{track_id}.mp3",
        title=title or track_id.title(),
        artist=artist,
        genre=genre,
    )


def fixed_probe(data: bytes) -> AudioProbe:
    return AudioProbe(duration=180.0, content_type="audio/mpeg")


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def clock() -> ManualClock:
    return ManualClock()


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def fetcher() -> FakeFetcher:
    return FakeFetcher()


@pytest.fixture
def object_urls() -> ObjectUrlRegistry:
    return ObjectUrlRegistry()


@pytest.fixture
async def blob_store() -> SqliteBlobStore:
    """In-memory blob store."""
    store = SqliteBlobStore(":memory:")
    await store.open()
    yield store
    await store.close()


@pytest.fixture
def tiers(clock: ManualClock, object_urls: ObjectUrlRegistry, blob_store: SqliteBlobStore) -> dict[str, Any]:
    return {
        "negative": NegativeResultCache(max_entries=1000, clock=clock),
        "l0": L0BlobCache(object_urls, max_entries=3, clock=clock),
        "durable": DurableBlobStore(blob_store, clock=clock),
        "hot": HotURLCache(max_entries=50, ttl_seconds=1800, clock=clock),
        "warm": WarmURLCache(ttl_seconds=300, clock=clock),
    }


@pytest.fixture
def resolver(
    provider: FakeProvider,
    fetcher: FakeFetcher,
    tiers: dict[str, Any],
    clock: ManualClock,
) -> Resolver:
    return Resolver(
        providers=ProviderRegistry([provider]),
        fetcher=fetcher,
        breaker=CircuitBreaker(clock=clock),
        network_timeout=0.5,
        promotion_timeout=5.0,
        probe=fixed_probe,
        clock=clock,
        **tiers,
    )


@pytest.fixture
def bus() -> EventBus:
    return EventBus()


@pytest.fixture
async def recorder(bus: EventBus) -> EventRecorder:
    rec = EventRecorder()
    await bus.subscribe("*", rec)
    return rec


@pytest.fixture
def scheduler() -> InstantScheduler:
    return InstantScheduler()


@pytest.fixture
def engines() -> tuple[FakeEngine, FakeEngine]:
    return FakeEngine("A"), FakeEngine("B")


async def settle(resolver: Resolver) -> None:
    """Wait for every background promotion the resolver has scheduled."""
    for _ in range(10):
        tasks = [t for t in resolver._promotions.values() if not t.done()]
        if not tasks:
            await asyncio.sleep(0)
            return
        await asyncio.gather(*tasks, return_exceptions=True)
