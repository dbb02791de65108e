"""
Core types, events and queue for Encore.
"""

from encore.core.models import (
    LogicalReference,
    ResolvedStream,
    StreamHints,
    Tier,
    TierStats,
    Track,
)

__all__ = [
    "LogicalReference",
    "ResolvedStream",
    "StreamHints",
    "Tier",
    "TierStats",
    "Track",
]
