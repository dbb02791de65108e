"""
Playback engine contract.

The crossfade controller drives two independent engines. Audio output is
out of scope for Encore; anything that can load a URL, play it and have its
volume set fits this protocol (a media element bridge, a player process,
a networked renderer).
"""

from __future__ import annotations

from typing import Protocol


class EngineError(Exception):
    """An engine could not load or play a stream."""


class EngineHandle(Protocol):
    """One playback engine."""

    name: str

    @property
    def volume(self) -> float: ...

    def set_volume(self, volume: float) -> None:
        """Set output volume in [0, 1]."""
        ...

    async def load(self, url: str) -> None:
        """Load `url` and return once the engine is ready to play."""
        ...

    async def play(self) -> None: ...

    def stop(self) -> None:
        """Stop output and reset the position. Must not raise."""
        ...
