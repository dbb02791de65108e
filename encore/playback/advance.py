"""
Track advancement outside the crossfade state machine.

Handles the two ways playback moves on without a crossfade:

- Natural end of track: play the next queued track at full volume. When the
  queue is provably empty, ask the recommendation source for a similar
  track; finding nothing is an informational outcome, not an error.
- Manual skip: play the next queued track. Never autoplays.

A natural end reported while a crossfade is running is left to the
crossfade; if that crossfade then fails, the normal advance runs instead.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Protocol

from encore.core.events import EventBus, NoFollowUpEvent, ResolutionFailedEvent, TrackChangedEvent, event_bus
from encore.core.models import Track
from encore.core.queue import PlayQueue
from encore.playback.crossfade import CrossfadeController, CrossfadeOutcome
from encore.playback.engines import EngineHandle
from encore.resolution.errors import ResolutionError
from encore.resolution.resolver import Resolver

logger = logging.getLogger(__name__)


class RecommendationSource(Protocol):
    async def find_similar(self, track: Track) -> Track | None:
        """A track similar to `track`, or None if there is none."""
        ...


class AdvanceResult(Enum):
    ADVANCED = "advanced"
    AUTOPLAYED = "autoplayed"
    SKIPPED = "skipped"
    NO_FOLLOW_UP = "no_follow_up"
    END_OF_QUEUE = "end_of_queue"
    IGNORED = "ignored"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class AdvanceOutcome:
    result: AdvanceResult
    track: Track | None = None
    error: ResolutionError | None = None


class TrackAdvancer:
    """
    Moves playback to the next track on natural end or manual skip.

    The active engine comes from the crossfade controller when there is one,
    so advancement always targets whichever engine is currently audible.
    """

    def __init__(
        self,
        queue: PlayQueue,
        resolver: Resolver,
        *,
        crossfade: CrossfadeController | None = None,
        engine: EngineHandle | None = None,
        recommender: RecommendationSource | None = None,
        bus: EventBus | None = None,
        volume: float = 1.0,
    ) -> None:
        if crossfade is None and engine is None:
            raise ValueError("TrackAdvancer needs a crossfade controller or an engine")
        self._queue = queue
        self._resolver = resolver
        self._crossfade = crossfade
        self._engine = engine
        self._recommender = recommender
        self._bus = bus or event_bus
        self._volume = volume
        self._ended_while_fading = False
        self._resumed: asyncio.Task[AdvanceOutcome] | None = None

    @property
    def active_engine(self) -> EngineHandle:
        if self._crossfade is not None:
            return self._crossfade.active
        if self._engine is None:
            raise RuntimeError("TrackAdvancer has no playback engine")
        return self._engine

    @property
    def pending_advance(self) -> asyncio.Task[AdvanceOutcome] | None:
        """Advance scheduled for after a crossfade that failed past track end."""
        return self._resumed

    async def on_track_ended(self) -> AdvanceOutcome:
        """Natural end of the active track."""
        if self._crossfade is not None and self._crossfade.is_busy:
            # The running crossfade owns the transition unless it fails.
            session_task = self._crossfade.session_task
            if session_task is not None and not self._ended_while_fading:
                self._ended_while_fading = True
                session_task.add_done_callback(self._resume_after_crossfade)
            return AdvanceOutcome(AdvanceResult.IGNORED)

        current = self._queue.current_track
        upcoming = self._queue.next()
        if upcoming is not None:
            return await self._play(upcoming, "advance", AdvanceResult.ADVANCED)

        similar = await self._find_similar(current)
        if similar is None:
            reference = str(current.reference) if current is not None else ""
            logger.info("Queue finished and no similar track found after %s", reference or "start")
            await self._bus.publish(NoFollowUpEvent(after_reference=reference))
            return AdvanceOutcome(AdvanceResult.NO_FOLLOW_UP)

        index = self._queue.add(similar)
        self._queue.play(index)
        return await self._play(similar, "autoplay", AdvanceResult.AUTOPLAYED)

    async def skip(self) -> AdvanceOutcome:
        """Manual skip to the next queued track."""
        if self._crossfade is not None:
            await self._crossfade.abort("skipped")

        upcoming = self._queue.next()
        if upcoming is None:
            return AdvanceOutcome(AdvanceResult.END_OF_QUEUE)
        return await self._play(upcoming, "skip", AdvanceResult.SKIPPED)

    def _resume_after_crossfade(self, task: asyncio.Task[CrossfadeOutcome]) -> None:
        if not self._ended_while_fading:
            return
        self._ended_while_fading = False
        if task.cancelled() or task.exception() is not None or task.result().completed:
            return
        logger.info("Crossfade failed after the track ended, advancing without it")
        self._resumed = asyncio.get_running_loop().create_task(self.on_track_ended())

    async def aclose(self) -> None:
        """Cancel an advance still scheduled after a failed crossfade."""
        self._ended_while_fading = False
        task, self._resumed = self._resumed, None
        if task is not None and not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    async def _find_similar(self, current: Track | None) -> Track | None:
        if self._recommender is None or current is None:
            return None
        try:
            return await self._recommender.find_similar(current)
        except Exception as e:
            logger.warning("Recommendation lookup after %s failed: %s", current.reference, e)
            return None

    async def _play(self, track: Track, cause: str, result: AdvanceResult) -> AdvanceOutcome:
        reference = str(track.reference)
        try:
            stream = await self._resolver.resolve(reference, track.hints)
        except ResolutionError as e:
            logger.warning("Cannot play %s: %s", reference, e)
            await self._bus.publish(
                ResolutionFailedEvent(
                    reference=reference,
                    error=e.kind,
                    retryable=e.retryable,
                    user_visible=True,
                )
            )
            return AdvanceOutcome(AdvanceResult.FAILED, track, e)

        engine = self.active_engine
        engine.stop()
        await engine.load(stream.url)
        engine.set_volume(self._volume)
        await engine.play()
        if self._crossfade is not None:
            self._crossfade.clear_failure()

        logger.info("Now playing %s (%s)", reference, cause)
        await self._bus.publish(
            TrackChangedEvent(
                track_id=track.id,
                reference=reference,
                title=track.title,
                artist=track.artist,
                cause=cause,
            )
        )
        return AdvanceOutcome(result, track)
