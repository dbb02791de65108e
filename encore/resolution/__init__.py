"""Reference resolution: providers, error taxonomy and the tiered Resolver."""

from encore.resolution.breaker import CircuitBreaker
from encore.resolution.errors import (
    InvalidProviderResponse,
    InvalidResponse,
    KnownUnavailable,
    NetworkFailure,
    ProviderError,
    ResolutionError,
    ResolutionTimeout,
    SourceNotFound,
)
from encore.resolution.fetch import AudioProbe, ByteFetcher, HttpByteFetcher, probe_audio
from encore.resolution.providers import (
    HttpApiProvider,
    ObjectStorageProvider,
    ProviderRegistry,
    RemoteLocation,
    SourceProvider,
    split_reference,
)
from encore.resolution.resolver import Resolver

__all__ = [
    "AudioProbe",
    "ByteFetcher",
    "CircuitBreaker",
    "HttpApiProvider",
    "HttpByteFetcher",
    "InvalidProviderResponse",
    "InvalidResponse",
    "KnownUnavailable",
    "NetworkFailure",
    "ObjectStorageProvider",
    "ProviderError",
    "ProviderRegistry",
    "RemoteLocation",
    "ResolutionError",
    "ResolutionTimeout",
    "Resolver",
    "SourceNotFound",
    "SourceProvider",
    "probe_audio",
    "split_reference",
]
