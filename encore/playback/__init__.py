"""Playback core: dual-engine crossfade and track advancement."""

from encore.playback.advance import AdvanceOutcome, AdvanceResult, RecommendationSource, TrackAdvancer
from encore.playback.crossfade import (
    CrossfadeAborted,
    CrossfadeController,
    CrossfadeOutcome,
    CrossfadeSession,
    CrossfadeState,
)
from encore.playback.engines import EngineError, EngineHandle
from encore.playback.scheduler import AsyncioScheduler, RepeatingTimer, Scheduler, TickHandle

__all__ = [
    "AdvanceOutcome",
    "AdvanceResult",
    "AsyncioScheduler",
    "CrossfadeAborted",
    "CrossfadeController",
    "CrossfadeOutcome",
    "CrossfadeSession",
    "CrossfadeState",
    "EngineError",
    "EngineHandle",
    "RecommendationSource",
    "RepeatingTimer",
    "Scheduler",
    "TickHandle",
    "TrackAdvancer",
]
