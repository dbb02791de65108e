"""
Listening context for predictive preloading.

The context is the only state the predictor keeps between track changes:
sliding windows of recent genres and artists, a bounded play history, the
time of day of the last change and learned "followed by" transitions.

It is mutated exactly once per active-track change and persisted
best-effort as JSON.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from encore.core.models import Track

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class PlayRecord:
    """One entry in the play history."""

    track_id: str
    reference: str
    played_at: float


@dataclass
class PredictionContext:
    time_of_day: int = 0
    day_of_week: int = 0
    recent_genres: list[str] = field(default_factory=list)
    recent_artists: list[str] = field(default_factory=list)
    play_history: list[PlayRecord] = field(default_factory=list)
    # previous track id -> {next track id -> count}
    transitions: dict[str, dict[str, int]] = field(default_factory=dict)

    def record(
        self,
        track: Track,
        now: datetime,
        *,
        genre_window: int = 5,
        artist_window: int = 5,
        history_size: int = 50,
    ) -> None:
        """Push `track` onto every window (most recent first) and truncate."""
        previous = self.play_history[0].track_id if self.play_history else None

        self.time_of_day = now.hour
        self.day_of_week = now.weekday()

        if track.genre:
            self.recent_genres.insert(0, track.genre)
            del self.recent_genres[genre_window:]

        if track.artist:
            self.recent_artists.insert(0, track.artist)
            del self.recent_artists[artist_window:]

        self.play_history.insert(
            0,
            PlayRecord(track_id=track.id, reference=str(track.reference), played_at=now.timestamp()),
        )
        del self.play_history[history_size:]

        if previous is not None and previous != track.id:
            followers = self.transitions.setdefault(previous, {})
            followers[track.id] = followers.get(track.id, 0) + 1

    def played_since(self, track_id: str, since: float) -> bool:
        return any(r.track_id == track_id and r.played_at >= since for r in self.play_history)

    def transition_count(self, from_id: str, to_id: str) -> int:
        return self.transitions.get(from_id, {}).get(to_id, 0)

    def to_dict(self) -> dict[str, Any]:
        return {
            "time_of_day": self.time_of_day,
            "day_of_week": self.day_of_week,
            "recent_genres": list(self.recent_genres),
            "recent_artists": list(self.recent_artists),
            "play_history": [
                {"track_id": r.track_id, "reference": r.reference, "played_at": r.played_at}
                for r in self.play_history
            ],
            "transitions": {k: dict(v) for k, v in self.transitions.items()},
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PredictionContext:
        history = [
            PlayRecord(
                track_id=str(item["track_id"]),
                reference=str(item.get("reference", "")),
                played_at=float(item["played_at"]),
            )
            for item in data.get("play_history", [])
        ]
        transitions = {
            str(src): {str(dst): int(n) for dst, n in dict(followers).items()}
            for src, followers in dict(data.get("transitions", {})).items()
        }
        return cls(
            time_of_day=int(data.get("time_of_day", 0)),
            day_of_week=int(data.get("day_of_week", 0)),
            recent_genres=[str(g) for g in data.get("recent_genres", [])],
            recent_artists=[str(a) for a in data.get("recent_artists", [])],
            play_history=history,
            transitions=transitions,
        )


def load_context(path: Path | None) -> PredictionContext:
    """Load a persisted context, or a fresh one if missing or unreadable."""
    if path is None or not path.exists():
        return PredictionContext()
    try:
        context = PredictionContext.from_dict(json.loads(path.read_text()))
    except (OSError, ValueError, TypeError, KeyError, AttributeError) as e:
        logger.warning("Could not restore prediction context from %s: %s", path, e)
        return PredictionContext()
    logger.debug("Restored prediction context (%d plays)", len(context.play_history))
    return context


def save_context(context: PredictionContext, path: Path | None) -> bool:
    """Persist `context` best-effort. Returns False on failure."""
    if path is None:
        return False
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(context.to_dict()))
    except OSError as e:
        logger.warning("Could not save prediction context: %s", e)
        return False
    return True
