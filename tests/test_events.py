"""
Tests for the event bus and event payloads.
"""

from __future__ import annotations

import asyncio

import pytest

from conftest import EventRecorder
from encore.core.events import (
    CacheClearedEvent,
    CrossfadeEvent,
    Event,
    EventBus,
    NoFollowUpEvent,
    ResolutionFailedEvent,
    TrackChangedEvent,
)


class TestEventBus:
    """Tests for EventBus subscription and dispatch."""

    @pytest.mark.asyncio
    async def test_exact_subscription(self) -> None:
        bus = EventBus()
        rec = EventRecorder()
        await bus.subscribe("track.changed", rec)

        assert await bus.publish(TrackChangedEvent(track_id="a")) == 1
        assert await bus.publish(CacheClearedEvent()) == 0
        assert [e.event_type for e in rec.events] == ["track.changed"]

    @pytest.mark.asyncio
    async def test_prefix_wildcard(self) -> None:
        """'crossfade.*' receives every crossfade lifecycle event."""
        bus = EventBus()
        rec = EventRecorder()
        await bus.subscribe("crossfade.*", rec)

        await bus.publish(CrossfadeEvent(event_type="crossfade.started"))
        await bus.publish(CrossfadeEvent(event_type="crossfade.aborted", reason="x"))
        await bus.publish(TrackChangedEvent())

        assert [e.event_type for e in rec.events] == ["crossfade.started", "crossfade.aborted"]

    @pytest.mark.asyncio
    async def test_catch_all(self, bus: EventBus, recorder: EventRecorder) -> None:
        await bus.publish(NoFollowUpEvent(after_reference="a"))
        await bus.publish(CacheClearedEvent(released_urls=2))
        assert len(recorder.events) == 2

    @pytest.mark.asyncio
    async def test_unsubscribe(self) -> None:
        bus = EventBus()
        rec = EventRecorder()
        await bus.subscribe("cache.cleared", rec)

        assert await bus.unsubscribe("cache.cleared", rec) is True
        assert await bus.unsubscribe("cache.cleared", rec) is False
        await bus.publish(CacheClearedEvent())
        assert rec.events == []

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self) -> None:
        """An exception in one handler is logged and the rest still run."""
        bus = EventBus()
        rec = EventRecorder()

        async def broken(event: Event) -> None:
            raise RuntimeError("handler bug")

        await bus.subscribe("cache.cleared", broken)
        await bus.subscribe("cache.cleared", rec)

        assert await bus.publish(CacheClearedEvent()) == 1
        assert len(rec.events) == 1

    @pytest.mark.asyncio
    async def test_publish_sync_schedules(self) -> None:
        bus = EventBus()
        rec = EventRecorder()
        await bus.subscribe("cache.cleared", rec)

        bus.publish_sync(CacheClearedEvent(released_urls=3))
        assert rec.events == []
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert rec.events[0].released_urls == 3

    def test_publish_sync_without_loop(self) -> None:
        """Outside a running loop the event is dropped with a warning."""
        EventBus().publish_sync(CacheClearedEvent())

    @pytest.mark.asyncio
    async def test_clear(self) -> None:
        bus = EventBus()
        rec = EventRecorder()
        await bus.subscribe("*", rec)
        await bus.clear()
        await bus.publish(CacheClearedEvent())
        assert rec.events == []


class TestEventPayloads:
    """to_dict() payloads handed to UI collaborators."""

    def test_track_changed(self) -> None:
        event = TrackChangedEvent(track_id="t1", reference="songs/a.mp3", title="A", artist="B", cause="skip")
        assert event.to_dict() == {
            "type": "track.changed",
            "track_id": "t1",
            "reference": "songs/a.mp3",
            "title": "A",
            "artist": "B",
            "cause": "skip",
        }

    def test_crossfade_reason_only_when_set(self) -> None:
        assert "reason" not in CrossfadeEvent(reference="a").to_dict()
        aborted = CrossfadeEvent(event_type="crossfade.aborted", reference="a", reason="timeout")
        assert aborted.to_dict()["reason"] == "timeout"

    def test_resolution_failed(self) -> None:
        data = ResolutionFailedEvent(reference="a", error="timeout").to_dict()
        assert data["type"] == "resolution.failed"
        assert data["retryable"] is True
        assert data["user_visible"] is True
