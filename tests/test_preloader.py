"""
Tests for encore.prediction (context + predictive preloader).
"""

from __future__ import annotations

import asyncio
import random
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from conftest import FakeProvider, make_track
from encore.prediction.context import PredictionContext, load_context, save_context
from encore.prediction.preloader import PredictivePreloader, time_of_day_bonus
from encore.resolution.resolver import Resolver

# 14:00 on a Monday: no time-of-day bonus for Rock or Jazz
NOON_ISH = datetime(2026, 10, 19, 14, 0)


class FrozenNow:
    def __init__(self, value: datetime) -> None:
        self.value = value

    def __call__(self) -> datetime:
        return self.value


@pytest.fixture
def now() -> FrozenNow:
    return FrozenNow(NOON_ISH)


@pytest.fixture
def preloader(resolver: Resolver, tiers: dict[str, Any], now: FrozenNow) -> PredictivePreloader:
    return PredictivePreloader(
        resolver,
        tiers["warm"],
        stagger_ms=0,
        max_jitter=0.0,
        now=now,
    )


class TestTimeOfDay:
    """Tests for the time-of-day genre table."""

    def test_morning_energetic(self) -> None:
        assert time_of_day_bonus(7, "Rock") == 0.15

    def test_evening_calm_wraps_midnight(self) -> None:
        assert time_of_day_bonus(21, "Jazz") == 0.15
        assert time_of_day_bonus(1, "Ambient") == 0.15

    def test_working_hours_focus(self) -> None:
        """A genre that misses earlier rules can still match a later one."""
        assert time_of_day_bonus(10, "Classical") == 0.1

    def test_no_match(self) -> None:
        assert time_of_day_bonus(14, "Rock") == 0.0
        assert time_of_day_bonus(7, None) == 0.0


class TestScoring:
    """Tests for PredictivePreloader.score and predict."""

    def test_shared_artist_and_genre_beats_neither(self, resolver: Resolver, tiers: dict[str, Any]) -> None:
        """Sharing artist and genre always outscores sharing nothing, jitter included."""
        preloader = PredictivePreloader(resolver, tiers["warm"], rng=random.Random(7), now=lambda: NOON_ISH)
        current = make_track("cur", artist="X", genre="Rock")
        match = make_track("m", artist="X", genre="Rock")
        other = make_track("o", artist="Y", genre="Jazz")

        for _ in range(50):
            assert preloader.score(match, current).score > preloader.score(other, current).score

    def test_scores_are_clamped(self, preloader: PredictivePreloader) -> None:
        """Weights add up past 1 but the score does not."""
        current = make_track("cur", artist="X", genre="Rock")
        preloader.context.record(current, NOON_ISH)
        match = make_track("m", artist="X", genre="Rock")

        result = preloader.score(match, current)

        assert result.score == 1.0
        assert "same artist" in result.reasons
        assert "same genre" in result.reasons
        assert "recent genre" in result.reasons
        assert "recent artist" in result.reasons

    def test_threshold_is_strict(self, preloader: PredictivePreloader) -> None:
        """A candidate scoring exactly 0.3 is not kept."""
        current = make_track("cur", artist="X", genre="Rock")
        same_genre = make_track("g", artist="Z", genre="Rock")

        assert preloader.score(same_genre, current).score == pytest.approx(0.3)
        assert preloader.predict(current, [same_genre]) == []

    def test_keeps_top_five(self, preloader: PredictivePreloader) -> None:
        """At most five predictions, best first, never the current track."""
        current = make_track("cur", artist="X", genre="Rock")
        candidates = [current] + [make_track(f"t{i}", artist="X") for i in range(8)]
        candidates.append(make_track("best", artist="X", genre="Rock"))

        predictions = preloader.predict(current, candidates)

        assert len(predictions) == 5
        assert predictions[0][0].id == "best"
        assert all(track.id != "cur" for track, _ in predictions)

    def test_matching_track_selected_over_unrelated(self, preloader: PredictivePreloader) -> None:
        """Artist X / Rock picks the X / Rock candidate with a strictly higher score."""
        current = make_track("cur", artist="X", genre="Rock")
        match = make_track("m", artist="X", genre="Rock")
        unrelated = make_track("u", artist="Y", genre="Jazz")

        predictions = preloader.predict(current, [unrelated, match])

        assert [track.id for track, _ in predictions] == ["m"]
        assert preloader.score(match, current).score > preloader.score(unrelated, current).score

    def test_followed_before(self, preloader: PredictivePreloader) -> None:
        """A learned transition adds its signal."""
        a = make_track("a", artist="P")
        b = make_track("b", artist="Q")
        preloader.context.record(a, NOON_ISH)
        preloader.context.record(b, NOON_ISH + timedelta(minutes=4))

        result = preloader.score(b, a)

        assert "followed before" in result.reasons

    def test_played_recently_window(self, preloader: PredictivePreloader, now: FrozenNow) -> None:
        """Plays within the last 24 h count, older ones do not."""
        current = make_track("cur", artist="P")
        earlier = make_track("e", artist="Q")
        preloader.context.record(earlier, NOON_ISH)

        assert "played recently" in preloader.score(earlier, current).reasons

        now.value = NOON_ISH + timedelta(hours=25)
        assert "played recently" not in preloader.score(earlier, current).reasons


class TestPredictionContext:
    """Tests for PredictionContext bookkeeping and persistence."""

    def test_windows_are_most_recent_first_and_bounded(self) -> None:
        """Record unshifts and truncates."""
        context = PredictionContext()
        for i in range(7):
            context.record(make_track(f"t{i}", artist=f"A{i}", genre=f"G{i}"), NOON_ISH)

        assert context.recent_genres == ["G6", "G5", "G4", "G3", "G2"]
        assert context.recent_artists[0] == "A6"
        assert len(context.recent_artists) == 5
        assert context.play_history[0].track_id == "t6"

    def test_history_bounded(self) -> None:
        context = PredictionContext()
        for i in range(60):
            context.record(make_track(f"t{i}"), NOON_ISH, history_size=50)
        assert len(context.play_history) == 50

    def test_records_time_of_day(self) -> None:
        context = PredictionContext()
        context.record(make_track("t"), datetime(2026, 10, 24, 21, 30))
        assert context.time_of_day == 21
        assert context.day_of_week == 5

    def test_missing_genre_leaves_window_alone(self) -> None:
        context = PredictionContext()
        context.record(make_track("t", artist="A"), NOON_ISH)
        assert context.recent_genres == []
        assert context.recent_artists == ["A"]

    def test_save_and_load(self, tmp_path: Path) -> None:
        """Context survives a round trip through disk."""
        path = tmp_path / "context.json"
        context = PredictionContext()
        context.record(make_track("a", artist="X", genre="Rock"), NOON_ISH)
        context.record(make_track("b", artist="Y", genre="Jazz"), NOON_ISH)

        assert save_context(context, path) is True
        restored = load_context(path)

        assert restored.recent_genres == ["Jazz", "Rock"]
        assert restored.transition_count("a", "b") == 1
        assert len(restored.play_history) == 2

    def test_corrupt_file_gives_fresh_context(self, tmp_path: Path) -> None:
        path = tmp_path / "context.json"
        path.write_text("[1, 2, 3]")
        assert load_context(path).play_history == []

    def test_missing_path(self) -> None:
        assert load_context(None).recent_genres == []
        assert save_context(PredictionContext(), None) is False


class TestPreloading:
    """Tests for on_active_track_changed and the background preload."""

    @pytest.mark.asyncio
    async def test_context_updated_once_per_change(self, preloader: PredictivePreloader) -> None:
        """Each active-track change adds exactly one history entry."""
        current = make_track("cur", artist="X", genre="Rock")

        task = preloader.on_active_track_changed(current, [])

        assert task is None
        assert len(preloader.context.play_history) == 1
        assert preloader.context.recent_genres == ["Rock"]

    @pytest.mark.asyncio
    async def test_preloads_into_warm_tier(
        self, preloader: PredictivePreloader, provider: FakeProvider, tiers: dict[str, Any]
    ) -> None:
        """Predicted tracks land in the warm tier, not the hot tier."""
        current = make_track("cur", artist="X", genre="Rock")
        match = make_track("m", artist="X", genre="Rock")
        provider.outcomes[str(match.reference)] = "https://cdn.example/m.mp3"

        task = preloader.on_active_track_changed(current, [match])
        assert task is not None
        await task

        entry = tiers["warm"].get(str(match.reference))
        assert entry is not None
        assert entry.url == "https://cdn.example/m.mp3"
        assert str(match.reference) not in tiers["hot"]
        assert preloader.stats()["preloaded"] == 1

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(
        self, preloader: PredictivePreloader, provider: FakeProvider
    ) -> None:
        """A failing preload is logged and counted, never raised."""
        current = make_track("cur", artist="X", genre="Rock")
        missing = make_track("gone", artist="X", genre="Rock")

        task = preloader.on_active_track_changed(current, [missing])
        await task

        assert preloader.stats()["failed"] == 1
        assert provider.calls == [str(missing.reference)]

    @pytest.mark.asyncio
    async def test_cached_candidates_are_skipped(
        self, preloader: PredictivePreloader, provider: FakeProvider, tiers: dict[str, Any]
    ) -> None:
        """Nothing is resolved for a track another tier already holds."""
        current = make_track("cur", artist="X", genre="Rock")
        match = make_track("m", artist="X", genre="Rock")
        tiers["hot"].put(str(match.reference), "https://cdn.example/m.mp3")

        await preloader.on_active_track_changed(current, [match])

        assert provider.calls == []
        assert preloader.stats()["skipped"] == 1

    @pytest.mark.asyncio
    async def test_stale_preload_is_discarded(
        self, preloader: PredictivePreloader, provider: FakeProvider, tiers: dict[str, Any]
    ) -> None:
        """A preload still running when the track changes again is dropped."""
        first = make_track("first", artist="X", genre="Rock")
        match = make_track("m", artist="X", genre="Rock")
        provider.outcomes[str(match.reference)] = "https://cdn.example/m.mp3"
        provider.gate = asyncio.Event()

        task = preloader.on_active_track_changed(first, [match])
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        preloader.on_active_track_changed(make_track("second", artist="Y", genre="Jazz"), [])
        provider.gate.set()
        await asyncio.gather(task, return_exceptions=True)
        await asyncio.sleep(0)

        assert str(match.reference) not in tiers["warm"]
        assert len(preloader.context.play_history) == 2

    @pytest.mark.asyncio
    async def test_stop_cancels_batch(
        self, preloader: PredictivePreloader, provider: FakeProvider, resolver: Resolver
    ) -> None:
        """stop() leaves no preload running."""
        current = make_track("cur", artist="X", genre="Rock")
        match = make_track("m", artist="X", genre="Rock")
        provider.outcomes[str(match.reference)] = "https://cdn.example/m.mp3"
        provider.gate = asyncio.Event()

        task = preloader.on_active_track_changed(current, [match])
        await asyncio.sleep(0)
        await preloader.stop()

        assert task.done()
        provider.gate.set()
        await resolver.aclose()

    @pytest.mark.asyncio
    async def test_persistence(
        self, resolver: Resolver, tiers: dict[str, Any], tmp_path: Path
    ) -> None:
        """save()/load() carry the context across instances."""
        path = tmp_path / "prediction.json"
        first = PredictivePreloader(resolver, tiers["warm"], persist_path=path, now=lambda: NOON_ISH)
        first.on_active_track_changed(make_track("a", artist="X", genre="Rock"), [])
        assert first.save() is True

        second = PredictivePreloader(resolver, tiers["warm"], persist_path=path, now=lambda: NOON_ISH)
        second.load()

        stats = second.stats()
        assert stats["history_size"] == 1
        assert stats["recent_genres"] == ["Rock"]
        assert stats["time_of_day"] == 14
