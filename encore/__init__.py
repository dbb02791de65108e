"""
Encore - audio resolution, caching and crossfade core for music streaming clients.

Encore turns logical track references into playable URLs through a hierarchy
of cache tiers, keeps the next tracks warm through predictive preloading and
swaps between two playback engines with a timed crossfade.
"""

__version__ = "0.1.0"
__author__ = "Encore Contributors"
__license__ = "GPL-2.0"

from encore.service import EncoreService

__all__ = ["EncoreService", "__version__"]
