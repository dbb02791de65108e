"""
Cache tiers for Encore.

Components:
    NegativeResultCache: References proven unfetchable.
    L0BlobCache: Materialized bytes + object URLs of the hottest tracks.
    WarmURLCache: Short-TTL speculative URLs from the predictor.
    HotURLCache: Resolved URLs with frequency/recency eviction.
    DurableBlobStore: Persistent, capacity- and age-bounded audio bytes.
"""

from encore.cache.blob_store import BlobMeta, BlobRecord, BlobStoreNotOpenError, SqliteBlobStore
from encore.cache.durable import CleanupReport, DurableBlobStore, DurableHit
from encore.cache.hot import HotURLCache, UrlEntry
from encore.cache.l0 import L0BlobCache, L0Entry
from encore.cache.negative import NegativeResultCache
from encore.cache.object_urls import ObjectUrlRegistry
from encore.cache.warm import WarmURLCache

__all__ = [
    "BlobMeta",
    "BlobRecord",
    "BlobStoreNotOpenError",
    "CleanupReport",
    "DurableBlobStore",
    "DurableHit",
    "HotURLCache",
    "L0BlobCache",
    "L0Entry",
    "NegativeResultCache",
    "ObjectUrlRegistry",
    "SqliteBlobStore",
    "UrlEntry",
    "WarmURLCache",
]
