"""
Shared data types for Encore.

LogicalReference is the cache key used by every tier: an opaque string that
identifies where a track's audio lives (storage path, provider pointer or
catalog id). It is stable for the lifetime of a track entity.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import NewType

LogicalReference = NewType("LogicalReference", str)


class Tier(Enum):
    """Where a resolved stream came from."""

    L0 = "l0"
    DURABLE = "durable"
    HOT = "hot"
    WARM = "warm"
    NETWORK = "network"


@dataclass(frozen=True, slots=True)
class StreamHints:
    """Optional metadata that helps catalog providers locate a track."""

    title: str = ""
    artist: str = ""


@dataclass(frozen=True, slots=True)
class ResolvedStream:
    """
    A playable stream for a logical reference.

    `expires_hint` is an epoch timestamp after which a provider URL may stop
    working; `duration` is in seconds when known.
    """

    url: str
    expires_hint: float | None = None
    duration: float | None = None
    tier: Tier = Tier.NETWORK


@dataclass(frozen=True, slots=True)
class Track:
    """
    A queued or playing track as seen by the playback core.

    Only the fields the core needs are modelled; library metadata lives in
    the collaborating layers.
    """

    id: str
    reference: LogicalReference
    title: str = ""
    artist: str = ""
    genre: str | None = None
    duration: float | None = None

    @property
    def hints(self) -> StreamHints:
        return StreamHints(title=self.title, artist=self.artist)


@dataclass(frozen=True, slots=True)
class TierStats:
    """Read-only diagnostics for one cache tier."""

    name: str
    count: int
    total_bytes: int = 0
    oldest_entry_age: float | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "name": self.name,
            "count": self.count,
            "total_bytes": self.total_bytes,
            "oldest_entry_age": self.oldest_entry_age,
        }
