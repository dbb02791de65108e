"""
Tests for EncoreService wiring and lifecycle.
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any

import pytest

from conftest import EventRecorder, FakeEngine, FakeFetcher, FakeProvider, InstantScheduler, make_track, settle
from encore.config import parse_config
from encore.core.events import EventBus
from encore.core.models import Tier
from encore.playback.advance import AdvanceResult
from encore.resolution.errors import KnownUnavailable
from encore.resolution.providers import ProviderRegistry
from encore.service import NEGATIVE_CACHE_FILE, EncoreService


def make_service(
    tmp_path: Path,
    provider: FakeProvider,
    fetcher: FakeFetcher,
    bus: EventBus,
    *,
    database: str = ":memory:",
    **kwargs: Any,
) -> EncoreService:
    config = parse_config(
        {
            "storage": {"state_dir": str(tmp_path), "database": database},
            "resolver": {"network_timeout_seconds": 0.5},
            "prediction": {"max_jitter": 0.0, "stagger_ms": 0},
        }
    )
    return EncoreService(
        config,
        providers=ProviderRegistry([provider]),
        fetcher=fetcher,
        bus=bus,
        enable_web=False,
        **kwargs,
    )


class TestLifecycle:
    """start()/stop() and persisted state."""

    @pytest.mark.asyncio
    async def test_start_and_stop(
        self, tmp_path: Path, provider: FakeProvider, fetcher: FakeFetcher, bus: EventBus
    ) -> None:
        service = make_service(tmp_path, provider, fetcher, bus)

        await service.start()
        assert service.is_running
        await service.stop()

        assert not service.is_running
        assert not service.blob_store.is_open
        # A second stop is a no-op
        await service.stop()

    @pytest.mark.asyncio
    async def test_negative_verdicts_survive_restart(
        self, tmp_path: Path, provider: FakeProvider, fetcher: FakeFetcher, bus: EventBus
    ) -> None:
        first = make_service(tmp_path, provider, fetcher, bus)
        await first.start()
        with pytest.raises(KnownUnavailable):
            await first.resolve("songs/gone.mp3")
        await first.stop()

        assert (tmp_path / NEGATIVE_CACHE_FILE).exists()

        second = make_service(tmp_path, provider, fetcher, bus)
        await second.start()
        try:
            with pytest.raises(KnownUnavailable):
                second.resolve_nowait("songs/gone.mp3")
        finally:
            await second.stop()

    @pytest.mark.asyncio
    async def test_durable_tier_survives_restart(
        self, tmp_path: Path, provider: FakeProvider, fetcher: FakeFetcher, bus: EventBus
    ) -> None:
        """Bytes fetched in one session are served without network in the next."""
        provider.outcomes["songs/a.mp3"] = "https://cdn.example/a.mp3"
        first = make_service(tmp_path, provider, fetcher, bus, database="blobs.sqlite3")
        await first.start()
        await first.resolve("songs/a.mp3")
        await settle(first.resolver)
        await first.stop()

        second = make_service(tmp_path, provider, fetcher, bus, database="blobs.sqlite3")
        await second.start()
        try:
            stream = await second.resolve("songs/a.mp3")
        finally:
            await second.stop()

        assert stream.tier is Tier.DURABLE
        assert provider.calls == ["songs/a.mp3"]


class TestClearAll:
    @pytest.mark.asyncio
    async def test_clear_all_empties_every_tier(
        self,
        tmp_path: Path,
        provider: FakeProvider,
        fetcher: FakeFetcher,
        bus: EventBus,
        recorder: EventRecorder,
    ) -> None:
        """Every tier reports zero entries immediately after clear_all()."""
        provider.outcomes["songs/a.mp3"] = "https://cdn.example/a.mp3"
        service = make_service(tmp_path, provider, fetcher, bus)
        await service.start()
        try:
            await service.resolve("songs/a.mp3")
            await settle(service.resolver)
            with pytest.raises(KnownUnavailable):
                await service.resolve("songs/gone.mp3")

            released = service.clear_all()

            assert released == 1
            assert all(stats.count == 0 for stats in service.stats().values())
            assert service.resolve_nowait("songs/a.mp3") is None
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            assert len(recorder.of_type("cache.cleared")) == 1
        finally:
            await service.stop()

    @pytest.mark.asyncio
    async def test_inflight_resolution_does_not_repopulate(
        self, tmp_path: Path, provider: FakeProvider, fetcher: FakeFetcher, bus: EventBus
    ) -> None:
        """A resolution started before the clear never writes afterwards."""
        provider.outcomes["songs/a.mp3"] = "https://cdn.example/a.mp3"
        provider.gate = asyncio.Event()
        service = make_service(tmp_path, provider, fetcher, bus)
        await service.start()
        try:
            task = asyncio.create_task(service.resolve("songs/a.mp3"))
            await asyncio.sleep(0)
            await asyncio.sleep(0)

            service.clear_all()
            provider.gate.set()
            await task
            await settle(service.resolver)

            assert all(stats.count == 0 for stats in service.stats().values())
        finally:
            await service.stop()


class TestPlaybackWiring:
    """Crossfade, advancement and prediction working together."""

    @pytest.mark.asyncio
    async def test_crossfade_moves_queue_and_feeds_predictor(
        self,
        tmp_path: Path,
        provider: FakeProvider,
        fetcher: FakeFetcher,
        bus: EventBus,
        recorder: EventRecorder,
        scheduler: InstantScheduler,
        engines: tuple[FakeEngine, FakeEngine],
    ) -> None:
        a, b = make_track("a", artist="X", genre="Rock"), make_track("b", artist="X", genre="Rock")
        provider.outcomes[str(b.reference)] = "https://cdn.example/b.mp3"
        service = make_service(tmp_path, provider, fetcher, bus, engines=engines, scheduler=scheduler)
        service.queue.add(a)
        service.queue.add(b)
        await service.start()
        try:
            assert service.begin_crossfade_if_due(10.0) is None
            task = service.begin_crossfade_if_due(2.0)
            assert task is not None
            outcome = await task

            assert outcome.completed
            assert service.queue.current_track == b
            assert len(recorder.of_type("track.changed")) == 1
            assert service.preloader.context.play_history[0].track_id == "b"
            assert service.advancer.active_engine is engines[1]
            await settle(service.resolver)
        finally:
            await service.stop()

        assert not engines[0].playing and not engines[1].playing

    @pytest.mark.asyncio
    async def test_track_ended_without_engines_is_ignored(
        self, tmp_path: Path, provider: FakeProvider, fetcher: FakeFetcher, bus: EventBus
    ) -> None:
        service = make_service(tmp_path, provider, fetcher, bus)
        assert (await service.handle_track_ended()).result is AdvanceResult.IGNORED
        assert (await service.skip()).result is AdvanceResult.IGNORED
        assert service.begin_crossfade_if_due(1.0) is None
        await service.http_client.aclose()

    @pytest.mark.asyncio
    async def test_object_urls_follow_web_port(
        self, tmp_path: Path, provider: FakeProvider, fetcher: FakeFetcher, bus: EventBus
    ) -> None:
        """L0 hands out URLs on the port the blob route is served from."""
        config = parse_config({"storage": {"state_dir": str(tmp_path), "database": ":memory:"}})
        config.web.port = 8000
        service = EncoreService(
            config,
            providers=ProviderRegistry([provider]),
            fetcher=fetcher,
            bus=bus,
            enable_web=False,
        )

        url = service.l0.put("r", b"x")

        assert url.startswith("http://127.0.0.1:8000/blob/")
        await service.http_client.aclose()

    @pytest.mark.asyncio
    async def test_on_active_track_changed_uses_queue(
        self,
        tmp_path: Path,
        provider: FakeProvider,
        fetcher: FakeFetcher,
        bus: EventBus,
    ) -> None:
        """Without explicit candidates the upcoming queue is scored."""
        current = make_track("cur", artist="X", genre="Rock")
        nxt = make_track("nxt", artist="X", genre="Rock")
        provider.outcomes[str(nxt.reference)] = "https://cdn.example/nxt.mp3"
        service = make_service(tmp_path, provider, fetcher, bus)
        service.queue.add(current)
        service.queue.add(nxt)

        service.on_active_track_changed(current)
        await asyncio.sleep(0.01)
        for _ in range(10):
            if str(nxt.reference) in service.warm:
                break
            await asyncio.sleep(0.01)

        assert str(nxt.reference) in service.warm
        await service.preloader.stop()
        await service.http_client.aclose()
