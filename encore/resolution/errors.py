"""
Resolution error taxonomy.

Callers can catch the base class or a specific kind, either directly or
through the class attributes on the base (`ResolutionError.Timeout`).

Provider implementations raise the provider-level exceptions at the bottom of
this module; the resolver maps them onto the taxonomy.
"""

from __future__ import annotations


class ResolutionError(Exception):
    """Base error for a reference that could not be turned into a URL."""

    kind = "resolution_error"
    retryable = True

    # Populated below, once the subclasses exist
    KnownUnavailable: type[KnownUnavailable]
    Timeout: type[ResolutionTimeout]
    NetworkFailure: type[NetworkFailure]
    InvalidResponse: type[InvalidResponse]

    def __init__(self, reference: str, message: str = "") -> None:
        self.reference = reference
        super().__init__(message or f"{self.kind}: {reference}")


class KnownUnavailable(ResolutionError):
    """The reference was proven absent; fail fast without a network attempt."""

    kind = "known_unavailable"
    retryable = False


class ResolutionTimeout(ResolutionError):
    """No verdict within the network timeout. Not proof of absence."""

    kind = "timeout"


class NetworkFailure(ResolutionError):
    """Transient transport or provider failure."""

    kind = "network_failure"


class InvalidResponse(ResolutionError):
    """The provider answered but the payload had no usable URL."""

    kind = "invalid_response"


ResolutionError.KnownUnavailable = KnownUnavailable
ResolutionError.Timeout = ResolutionTimeout
ResolutionError.NetworkFailure = NetworkFailure
ResolutionError.InvalidResponse = InvalidResponse


class ProviderError(Exception):
    """Transient failure inside a source provider."""


class SourceNotFound(ProviderError):
    """Definitive not-found verdict from a source provider."""


class InvalidProviderResponse(ProviderError):
    """Provider returned a malformed payload."""
