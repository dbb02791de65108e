"""
Play queue for Encore.

The queue is owned by the orchestration layer; the playback core reads it to
find the upcoming track for crossfade priming and natural end-of-track
advancement, and hands snapshots of it to the predictive preloader.

Design decisions:
- Simple in-memory list with a current index (not persisted)
- `peek_next()` never moves the cursor; `next()` does
- An empty or exhausted queue is reported as None, never as an error
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from encore.core.models import Track

logger = logging.getLogger(__name__)


@dataclass
class PlayQueue:
    """
    Ordered queue of tracks with a cursor on the active one.

    Supports:
    - Adding tracks (at end or at specific position)
    - Removing tracks
    - Navigation (next, previous, jump to index)
    - Read-only snapshots for prediction
    """

    tracks: list[Track] = field(default_factory=list)
    current_index: int = 0

    def __len__(self) -> int:
        return len(self.tracks)

    @property
    def is_empty(self) -> bool:
        return len(self.tracks) == 0

    @property
    def current_track(self) -> Track | None:
        """Get the current track, or None if the queue is empty."""
        if self.is_empty or self.current_index >= len(self.tracks):
            return None
        return self.tracks[self.current_index]

    @property
    def has_next(self) -> bool:
        return not self.is_empty and self.current_index < len(self.tracks) - 1

    def add(self, track: Track, *, position: int | None = None) -> int:
        """
        Add a track to the queue.

        Args:
            track: The track to add.
            position: Optional position to insert at. None = append at end.

        Returns:
            The index where the track was inserted.
        """
        was_empty = self.is_empty

        if position is None:
            self.tracks.append(track)
            idx = len(self.tracks) - 1
        else:
            position = max(0, min(position, len(self.tracks)))
            self.tracks.insert(position, track)
            idx = position
            # An empty queue keeps current_index at 0 so the inserted track becomes current.
            if not was_empty and position <= self.current_index:
                self.current_index += 1

        logger.debug("queue.add: track=%s idx=%d len=%d", track.title or track.reference, idx, len(self))
        return idx

    def remove(self, index: int) -> Track | None:
        """Remove the track at `index`; returns None for an invalid index."""
        if index < 0 or index >= len(self.tracks):
            return None

        track = self.tracks.pop(index)

        if index < self.current_index:
            self.current_index -= 1
        elif index == self.current_index and self.current_index >= len(self.tracks):
            self.current_index = max(0, len(self.tracks) - 1)

        return track

    def clear(self) -> int:
        """Clear all tracks. Returns number of tracks that were cleared."""
        count = len(self.tracks)
        self.tracks.clear()
        self.current_index = 0
        return count

    def play(self, index: int = 0) -> Track | None:
        """Jump to `index` (clamped) and return the track there."""
        if self.is_empty:
            return None
        self.current_index = max(0, min(index, len(self.tracks) - 1))
        return self.current_track

    def peek_next(self) -> Track | None:
        """Return the upcoming track without moving the cursor."""
        if not self.has_next:
            return None
        return self.tracks[self.current_index + 1]

    def next(self) -> Track | None:
        """Move to the next track. Returns None at the end of the queue."""
        if not self.has_next:
            return None
        self.current_index += 1
        return self.current_track

    def previous(self) -> Track | None:
        """Move to the previous track. Returns None at the beginning."""
        if self.is_empty or self.current_index == 0:
            return None
        self.current_index -= 1
        return self.current_track

    def snapshot(self) -> list[Track]:
        """Copy of the tracks after the current one (prediction candidates)."""
        return list(self.tracks[self.current_index + 1 :])
