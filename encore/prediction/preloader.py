"""
Predictive preloader for Encore.

On every active-track change the preloader updates its listening context,
scores the queued candidates and quietly resolves the most likely next
tracks through the Resolver, parking the URLs in the warm tier.

Scoring is a plain weighted sum clamped to [0, 1]:

    same artist                 +0.40
    same genre                  +0.30
    followed this track before  +0.25
    genre in recent window      +0.20
    artist in recent window     +0.20
    played in the last 24 h     +0.15
    time-of-day genre affinity  up to +0.15
    random jitter               up to max_jitter

Preloading is fire-and-forget: failures are logged and swallowed, and
results that arrive after the active track changed again are discarded.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any

from encore.cache.warm import WarmURLCache
from encore.core.models import Track
from encore.prediction.context import PredictionContext, load_context, save_context
from encore.resolution.errors import ResolutionError
from encore.resolution.resolver import Resolver

logger = logging.getLogger(__name__)

SAME_ARTIST_WEIGHT = 0.4
SAME_GENRE_WEIGHT = 0.3
FOLLOWED_BEFORE_WEIGHT = 0.25
RECENT_GENRE_WEIGHT = 0.2
RECENT_ARTIST_WEIGHT = 0.2
PLAYED_RECENTLY_WEIGHT = 0.15
RECENT_PLAY_WINDOW = timedelta(hours=24)


@dataclass(frozen=True, slots=True)
class TimeOfDayRule:
    name: str
    hours: frozenset[int]
    genres: frozenset[str]
    bonus: float


# Checked in order; the first rule matching both hour and genre wins.
TIME_OF_DAY_RULES: tuple[TimeOfDayRule, ...] = (
    TimeOfDayRule("morning", frozenset(range(6, 11)), frozenset({"Pop", "Rock", "Electronic"}), 0.15),
    TimeOfDayRule(
        "evening", frozenset({20, 21, 22, 23, 0, 1, 2}), frozenset({"Jazz", "Classical", "Ambient"}), 0.15
    ),
    TimeOfDayRule(
        "working hours", frozenset(range(9, 18)), frozenset({"Lo-fi", "Instrumental", "Classical"}), 0.10
    ),
)


def time_of_day_bonus(hour: int, genre: str | None) -> float:
    """
    Genre affinity for the hour of day.

    >>> time_of_day_bonus(7, "Rock")
    0.15
    >>> time_of_day_bonus(10, "Classical")
    0.1
    >>> time_of_day_bonus(14, "Rock")
    0.0
    """
    if not genre:
        return 0.0
    for rule in TIME_OF_DAY_RULES:
        if hour in rule.hours and genre in rule.genres:
            return rule.bonus
    return 0.0


@dataclass(frozen=True, slots=True)
class PredictionScore:
    """Relevance of one candidate as the next track."""

    reference: str
    track_id: str
    score: float
    reasons: tuple[str, ...] = ()


class PredictivePreloader:
    """Scores queued candidates and warms the most likely next tracks."""

    def __init__(
        self,
        resolver: Resolver,
        warm: WarmURLCache,
        *,
        relevance_threshold: float = 0.3,
        top_n: int = 5,
        stagger_ms: int = 10,
        max_jitter: float = 0.1,
        genre_window: int = 5,
        artist_window: int = 5,
        history_size: int = 50,
        persist_path: Path | None = None,
        rng: random.Random | None = None,
        now: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._resolver = resolver
        self._warm = warm
        self._threshold = relevance_threshold
        self._top_n = top_n
        self._stagger = stagger_ms / 1000.0
        self._max_jitter = max_jitter
        self._genre_window = genre_window
        self._artist_window = artist_window
        self._history_size = history_size
        self._persist_path = persist_path
        self._rng = rng or random.Random()
        self._now = now

        self._context = PredictionContext()
        self._generation = 0
        self._task: asyncio.Task[None] | None = None
        self._counters = {"preloaded": 0, "skipped": 0, "failed": 0, "discarded": 0}

    @property
    def context(self) -> PredictionContext:
        return self._context

    @property
    def generation(self) -> int:
        return self._generation

    # ------------------------------------------------------------------
    # Scoring
    # ------------------------------------------------------------------

    def score(
        self, candidate: Track, current: Track, context: PredictionContext | None = None
    ) -> PredictionScore:
        """Score `candidate` as the track to follow `current`."""
        ctx = context or self._context
        score = 0.0
        reasons: list[str] = []

        if candidate.artist and candidate.artist == current.artist:
            score += SAME_ARTIST_WEIGHT
            reasons.append("same artist")

        if candidate.genre and candidate.genre == current.genre:
            score += SAME_GENRE_WEIGHT
            reasons.append("same genre")

        if ctx.transition_count(current.id, candidate.id) > 0:
            score += FOLLOWED_BEFORE_WEIGHT
            reasons.append("followed before")

        if candidate.genre and candidate.genre in ctx.recent_genres:
            score += RECENT_GENRE_WEIGHT
            reasons.append("recent genre")

        if candidate.artist and candidate.artist in ctx.recent_artists:
            score += RECENT_ARTIST_WEIGHT
            reasons.append("recent artist")

        since = (self._now() - RECENT_PLAY_WINDOW).timestamp()
        if ctx.played_since(candidate.id, since):
            score += PLAYED_RECENTLY_WEIGHT
            reasons.append("played recently")

        bonus = time_of_day_bonus(ctx.time_of_day, candidate.genre)
        if bonus > 0:
            score += bonus
            reasons.append("time of day")

        if self._max_jitter > 0:
            score += self._rng.random() * self._max_jitter

        return PredictionScore(
            reference=str(candidate.reference),
            track_id=candidate.id,
            score=max(0.0, min(score, 1.0)),
            reasons=tuple(reasons),
        )

    def predict(self, current: Track, candidates: Iterable[Track]) -> list[tuple[Track, PredictionScore]]:
        """Top candidates above the relevance threshold, best first."""
        scored = [
            (track, self.score(track, current))
            for track in candidates
            if track.id != current.id
        ]
        kept = [item for item in scored if item[1].score > self._threshold]
        kept.sort(key=lambda item: item[1].score, reverse=True)
        return kept[: self._top_n]

    # ------------------------------------------------------------------
    # Preloading
    # ------------------------------------------------------------------

    def on_active_track_changed(
        self, current: Track, candidates: Sequence[Track]
    ) -> asyncio.Task[None] | None:
        """
        Update the context and start preloading. Never blocks the caller.

        Returns the background task (mainly for tests), or None when there
        is nothing to preload.
        """
        self._generation += 1
        generation = self._generation

        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

        self._context.record(
            current,
            self._now(),
            genre_window=self._genre_window,
            artist_window=self._artist_window,
            history_size=self._history_size,
        )

        predictions = self.predict(current, candidates)
        if not predictions:
            return None

        logger.debug(
            "Preloading %d predictions after %s: %s",
            len(predictions),
            current.reference,
            ", ".join(f"{p.reference}={p.score:.2f}" for _, p in predictions),
        )
        self._task = asyncio.get_running_loop().create_task(self._preload(predictions, generation))
        return self._task

    async def _preload(self, predictions: list[tuple[Track, PredictionScore]], generation: int) -> None:
        jobs: list[asyncio.Task[None]] = []
        try:
            for index, (track, _) in enumerate(predictions):
                if index and self._stagger > 0:
                    await asyncio.sleep(self._stagger)
                if generation != self._generation:
                    break
                jobs.append(asyncio.get_running_loop().create_task(self._preload_one(track, generation)))
            await asyncio.gather(*jobs)
        except asyncio.CancelledError:
            for job in jobs:
                job.cancel()
            raise

    async def _preload_one(self, track: Track, generation: int) -> None:
        reference = str(track.reference)
        if self._resolver.is_cached(reference):
            self._counters["skipped"] += 1
            return

        try:
            stream = await self._resolver.resolve(reference, track.hints, speculative=True)
        except ResolutionError as e:
            self._counters["failed"] += 1
            logger.debug("Preload of %s failed: %s", reference, e)
            return
        except Exception as e:
            self._counters["failed"] += 1
            logger.warning("Preload of %s failed unexpectedly: %s", reference, e)
            return

        if generation != self._generation:
            self._counters["discarded"] += 1
            logger.debug("Discarding stale preload of %s", reference)
            return

        self._warm.put(
            reference,
            stream.url,
            expires_hint=stream.expires_hint,
            duration=stream.duration,
            generation=generation,
        )
        self._counters["preloaded"] += 1

    async def stop(self) -> None:
        """Cancel any preload batch in progress."""
        self._generation += 1
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    # ------------------------------------------------------------------
    # Persistence / diagnostics
    # ------------------------------------------------------------------

    def load(self) -> None:
        self._context = load_context(self._persist_path)

    def save(self) -> bool:
        return save_context(self._context, self._persist_path)

    def stats(self) -> dict[str, Any]:
        ctx = self._context
        return {
            "history_size": len(ctx.play_history),
            "recent_genres": list(ctx.recent_genres),
            "recent_artists": list(ctx.recent_artists),
            "time_of_day": ctx.time_of_day,
            "day_of_week": ctx.day_of_week,
            "learned_transitions": sum(len(v) for v in ctx.transitions.values()),
            **self._counters,
        }
