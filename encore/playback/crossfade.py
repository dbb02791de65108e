"""
Crossfade controller for Encore.

Overlaps the end of the active track with the start of the next one using
two independent engines. The controller is an explicit state machine:

    IDLE -> PRIMING -> FADING -> SWAPPED -> IDLE
              |          |
              +----------+--> ABORTED -> IDLE

- IDLE -> PRIMING happens in `begin_crossfade_if_due()` with a
  check-and-set that has no suspension point, so two callers racing on the
  same remaining-time report can never start two sessions.
- PRIMING resolves the upcoming track and loads it into the standby engine,
  waiting (bounded) for ready-to-play.
- FADING starts the standby at volume 0 and ramps outgoing -> 0 and
  incoming -> target volume on a fixed-step timer.
- SWAPPED stops the outgoing engine, swaps the handles and publishes the
  track change exactly once.
- Any failure moves to ABORTED: the standby is torn down and the active
  engine keeps playing, unfaded. No new session starts into the same
  track until the active track changes.

`stop()` tears down both engines and the ramp timer deterministically.
Prediction activity never touches a running fade.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum

from encore.core.events import CrossfadeEvent, EventBus, TrackChangedEvent, event_bus
from encore.core.models import Track
from encore.playback.engines import EngineHandle
from encore.playback.scheduler import AsyncioScheduler, Scheduler, TickHandle
from encore.resolution.errors import ResolutionError
from encore.resolution.resolver import Resolver

logger = logging.getLogger(__name__)

DEFAULT_OVERLAP_SECONDS = 3.0
DEFAULT_STEP_INTERVAL_MS = 20
DEFAULT_READY_TIMEOUT_SECONDS = 10.0


class CrossfadeState(Enum):
    IDLE = "idle"
    PRIMING = "priming"
    FADING = "fading"
    SWAPPED = "swapped"
    ABORTED = "aborted"


class CrossfadeAborted(Exception):
    """A crossfade session could not complete."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


@dataclass(slots=True)
class CrossfadeSession:
    """The one crossfade in progress."""

    outgoing: str
    incoming: str
    reference: str
    started_at: float
    overlap_duration_seconds: float
    step_interval_ms: int


@dataclass(frozen=True, slots=True)
class CrossfadeOutcome:
    state: CrossfadeState
    reference: str
    reason: str = ""

    @property
    def completed(self) -> bool:
        return self.state is CrossfadeState.SWAPPED


class CrossfadeController:
    """Runs at most one crossfade between two engines at a time."""

    def __init__(
        self,
        primary: EngineHandle,
        secondary: EngineHandle,
        resolver: Resolver,
        *,
        scheduler: Scheduler | None = None,
        bus: EventBus | None = None,
        overlap_seconds: float = DEFAULT_OVERLAP_SECONDS,
        step_interval_ms: int = DEFAULT_STEP_INTERVAL_MS,
        ready_timeout: float = DEFAULT_READY_TIMEOUT_SECONDS,
        volume: float = 1.0,
        on_swapped: Callable[[Track], None] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._active = primary
        self._standby = secondary
        self._resolver = resolver
        self._scheduler: Scheduler = scheduler or AsyncioScheduler()
        self._bus = bus or event_bus
        self._overlap = overlap_seconds
        self._step_interval_ms = step_interval_ms
        self._ready_timeout = ready_timeout
        self._volume = volume
        self._on_swapped = on_swapped
        self._clock = clock

        self._state = CrossfadeState.IDLE
        self._session: CrossfadeSession | None = None
        self._task: asyncio.Task[CrossfadeOutcome] | None = None
        self._tick_handle: TickHandle | None = None
        self._outgoing_volume: float | None = None
        self._sessions_started = 0
        self._failed_reference: str | None = None

    @property
    def state(self) -> CrossfadeState:
        return self._state

    @property
    def session(self) -> CrossfadeSession | None:
        return self._session

    @property
    def active(self) -> EngineHandle:
        return self._active

    @property
    def standby(self) -> EngineHandle:
        return self._standby

    @property
    def overlap_seconds(self) -> float:
        return self._overlap

    @property
    def is_busy(self) -> bool:
        return self._state is not CrossfadeState.IDLE

    @property
    def sessions_started(self) -> int:
        return self._sessions_started

    @property
    def session_task(self) -> asyncio.Task[CrossfadeOutcome] | None:
        return self._task

    def clear_failure(self) -> None:
        """Allow crossfades again after the active track changed."""
        self._failed_reference = None

    def begin_crossfade_if_due(
        self, remaining_seconds: float, upcoming: Track | None
    ) -> asyncio.Task[CrossfadeOutcome] | None:
        """
        Start a crossfade into `upcoming` if the active track is close enough
        to its end and no crossfade is running.

        Returns the session task, or None if nothing was started.
        """
        if upcoming is None or remaining_seconds <= 0 or remaining_seconds > self._overlap:
            return None

        # Check-and-set: no await between the check and the transition.
        if self._state is not CrossfadeState.IDLE:
            return None
        if self._failed_reference == str(upcoming.reference):
            return None
        self._state = CrossfadeState.PRIMING

        session = CrossfadeSession(
            outgoing=self._active.name,
            incoming=self._standby.name,
            reference=str(upcoming.reference),
            started_at=self._clock(),
            overlap_duration_seconds=min(remaining_seconds, self._overlap),
            step_interval_ms=self._step_interval_ms,
        )
        self._session = session
        self._sessions_started += 1

        logger.info(
            "Crossfade priming %s on %s (%.2fs overlap)",
            session.reference,
            session.incoming,
            session.overlap_duration_seconds,
        )
        self._task = asyncio.get_running_loop().create_task(self._run(session, upcoming))
        return self._task

    async def _run(self, session: CrossfadeSession, track: Track) -> CrossfadeOutcome:
        await self._bus.publish(
            CrossfadeEvent(
                event_type="crossfade.started",
                reference=session.reference,
                overlap_seconds=session.overlap_duration_seconds,
            )
        )
        try:
            await self._prime(session, track)
            self._state = CrossfadeState.FADING
            await self._fade(session)
        except CrossfadeAborted as e:
            return await self._abort(session, e.reason)
        except ResolutionError as e:
            return await self._abort(session, f"resolution failed: {e.kind}")
        except asyncio.TimeoutError:
            return await self._abort(session, "standby engine not ready")
        except Exception as e:
            logger.warning("Crossfade into %s failed: %s", session.reference, e)
            return await self._abort(session, str(e) or type(e).__name__)

        return await self._swap(session, track)

    async def _prime(self, session: CrossfadeSession, track: Track) -> None:
        stream = await self._resolver.resolve(session.reference, track.hints)
        standby = self._standby
        standby.set_volume(0.0)
        await asyncio.wait_for(standby.load(stream.url), timeout=self._ready_timeout)

    async def _fade(self, session: CrossfadeSession) -> None:
        outgoing = self._active
        incoming = self._standby
        target = self._volume
        start_volume = outgoing.volume
        self._outgoing_volume = start_volume

        incoming.set_volume(0.0)
        await incoming.play()

        interval = session.step_interval_ms / 1000.0
        steps = max(1, math.ceil(session.overlap_duration_seconds / interval))
        done: asyncio.Future[None] = asyncio.get_running_loop().create_future()
        step = 0

        def tick() -> None:
            nonlocal step
            if done.done():
                return
            step += 1
            progress = min(1.0, step / steps)
            try:
                outgoing.set_volume(start_volume * (1.0 - progress))
                incoming.set_volume(target * progress)
            except Exception as e:
                done.set_exception(CrossfadeAborted(f"volume ramp failed: {e}"))
                return
            if step >= steps:
                done.set_result(None)

        logger.debug("Fading over %d steps of %dms", steps, session.step_interval_ms)
        self._tick_handle = self._scheduler.call_every(interval, tick)
        try:
            await done
        finally:
            self._cancel_ticks()

    async def _swap(self, session: CrossfadeSession, track: Track) -> CrossfadeOutcome:
        outgoing = self._active
        outgoing.stop()
        outgoing.set_volume(0.0)
        self._active, self._standby = self._standby, outgoing
        self._state = CrossfadeState.SWAPPED
        self._session = None
        self._failed_reference = None
        self._outgoing_volume = None

        if self._on_swapped is not None:
            try:
                self._on_swapped(track)
            except Exception:
                logger.exception("Error in crossfade swap callback")

        logger.info("Crossfade complete: %s now active on %s", session.reference, self._active.name)
        try:
            await self._bus.publish(
                TrackChangedEvent(
                    track_id=track.id,
                    reference=session.reference,
                    title=track.title,
                    artist=track.artist,
                    cause="crossfade",
                )
            )
            await self._bus.publish(
                CrossfadeEvent(
                    event_type="crossfade.completed",
                    reference=session.reference,
                    overlap_seconds=session.overlap_duration_seconds,
                )
            )
        finally:
            self._state = CrossfadeState.IDLE
        return CrossfadeOutcome(CrossfadeState.SWAPPED, session.reference)

    def _teardown_standby(self) -> None:
        self._cancel_ticks()
        try:
            self._standby.stop()
            self._standby.set_volume(0.0)
        except Exception:
            logger.exception("Error stopping standby engine %s", self._standby.name)
        if self._outgoing_volume is not None:
            try:
                self._active.set_volume(self._outgoing_volume)
            except Exception:
                logger.exception("Error restoring volume on %s", self._active.name)
            self._outgoing_volume = None

    async def _abort(self, session: CrossfadeSession, reason: str) -> CrossfadeOutcome:
        logger.info("Crossfade into %s aborted: %s", session.reference, reason)
        self._teardown_standby()
        self._state = CrossfadeState.ABORTED
        self._failed_reference = session.reference
        self._session = None
        try:
            await self._bus.publish(
                CrossfadeEvent(
                    event_type="crossfade.aborted",
                    reference=session.reference,
                    overlap_seconds=session.overlap_duration_seconds,
                    reason=reason,
                )
            )
        finally:
            self._state = CrossfadeState.IDLE
        return CrossfadeOutcome(CrossfadeState.ABORTED, session.reference, reason)

    def _cancel_ticks(self) -> None:
        if self._tick_handle is not None:
            self._tick_handle.cancel()
            self._tick_handle = None

    async def _cancel_task(self) -> CrossfadeSession | None:
        session = self._session
        task, self._task = self._task, None
        self._cancel_ticks()
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)
        return session

    async def abort(self, reason: str = "cancelled") -> bool:
        """
        Abandon a running crossfade; the active engine keeps playing.

        Returns True if a session was running.
        """
        was_fading = self._state in (CrossfadeState.PRIMING, CrossfadeState.FADING)
        session = await self._cancel_task()
        if was_fading and session is not None:
            self._teardown_standby()
            self._bus.publish_sync(
                CrossfadeEvent(
                    event_type="crossfade.aborted",
                    reference=session.reference,
                    overlap_seconds=session.overlap_duration_seconds,
                    reason=reason,
                )
            )
        self._session = None
        self._state = CrossfadeState.IDLE
        return was_fading

    async def stop(self) -> None:
        """Explicit stop: cancel any session and silence both engines."""
        await self.abort("stopped")
        for engine in (self._active, self._standby):
            try:
                engine.stop()
            except Exception:
                logger.exception("Error stopping engine %s", engine.name)
