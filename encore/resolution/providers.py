"""
Source providers: turn a logical reference into a fresh remote URL.

One provider per source kind:
- ObjectStorageProvider: public object-storage buckets (plain storage paths)
- HttpApiProvider: an HTTP function that resolves drive pointers or catalog
  ids (optionally using title/artist hints) and answers with JSON

References carry their source kind as a scheme prefix (`dropbox://...`,
`deezer:123`); plain paths have no scheme and go to the provider registered
with scheme "*".
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol
from urllib.parse import quote

import httpx

from encore.core.models import StreamHints
from encore.resolution.errors import InvalidProviderResponse, ProviderError, SourceNotFound

if TYPE_CHECKING:
    from encore.config import ProviderConfig

logger = logging.getLogger(__name__)

WILDCARD_SCHEME = "*"

_SCHEME_RE = re.compile(r"^([a-zA-Z][a-zA-Z0-9+.-]*):(//)?(.*)$", re.DOTALL)


@dataclass(frozen=True, slots=True)
class RemoteLocation:
    url: str
    expires_hint: float | None = None


def split_reference(reference: str) -> tuple[str | None, str]:
    """
    Split a reference into (scheme, remainder).

    >>> split_reference("dropbox://Music/a.mp3")
    ('dropbox', 'Music/a.mp3')
    >>> split_reference("songs/a.mp3")
    (None, 'songs/a.mp3')
    """
    match = _SCHEME_RE.match(reference)
    if match is None:
        return None, reference
    return match.group(1).lower(), match.group(3)


class SourceProvider(Protocol):
    name: str

    def handles(self, reference: str) -> bool: ...

    async def resolve_remote(self, reference: str, hints: StreamHints) -> RemoteLocation: ...


class _SchemeMatcher:
    """Mixin implementing scheme-based routing."""

    scheme: str

    def handles(self, reference: str) -> bool:
        scheme, _ = split_reference(reference)
        if self.scheme == WILDCARD_SCHEME:
            return scheme is None
        return scheme == self.scheme


class ObjectStorageProvider(_SchemeMatcher):
    """
    Signs (builds) public URLs for files in an object-storage bucket.

    With `verify` enabled a HEAD request confirms the object exists, which is
    what lets a missing file be recorded as definitively unavailable.
    """

    def __init__(
        self,
        base_url: str,
        *,
        client: httpx.AsyncClient,
        scheme: str = WILDCARD_SCHEME,
        verify: bool = True,
        name: str = "storage",
    ) -> None:
        self.name = name
        self.scheme = scheme
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._verify = verify

    async def resolve_remote(self, reference: str, hints: StreamHints) -> RemoteLocation:
        _, path = split_reference(reference)
        path = path.lstrip("/")
        if not path:
            raise InvalidProviderResponse(f"empty storage path in {reference!r}")

        url = f"{self._base_url}/{quote(path)}"
        if self._verify:
            response = await self._client.head(url)
            if response.status_code == 404:
                raise SourceNotFound(reference)
            if response.status_code >= 400:
                raise ProviderError(f"storage HEAD {url} returned {response.status_code}")
        return RemoteLocation(url=url)


class HttpApiProvider(_SchemeMatcher):
    """
    Resolves references through an HTTP endpoint.

    Request: GET <endpoint>?reference=...&title=...&artist=...
    Response: {"url": "...", "expires_at": <epoch seconds, optional>}
    A 404 status or `{"found": false}` is a definitive not-found verdict.
    """

    def __init__(
        self,
        endpoint: str,
        *,
        client: httpx.AsyncClient,
        scheme: str,
        headers: dict[str, str] | None = None,
        name: str | None = None,
    ) -> None:
        self.name = name or f"api:{scheme}"
        self.scheme = scheme.lower()
        self._endpoint = endpoint
        self._client = client
        self._headers = headers or {}

    async def resolve_remote(self, reference: str, hints: StreamHints) -> RemoteLocation:
        params = {"reference": reference}
        if hints.title:
            params["title"] = hints.title
        if hints.artist:
            params["artist"] = hints.artist

        response = await self._client.get(self._endpoint, params=params, headers=self._headers)
        if response.status_code == 404:
            raise SourceNotFound(reference)
        if response.status_code >= 400:
            raise ProviderError(f"{self.name} returned {response.status_code}")

        try:
            payload = response.json()
        except ValueError as e:
            raise InvalidProviderResponse(f"{self.name} returned non-JSON body") from e

        if not isinstance(payload, dict):
            raise InvalidProviderResponse(f"{self.name} returned {type(payload).__name__}")
        if payload.get("found") is False:
            raise SourceNotFound(reference)

        url = payload.get("url")
        if not isinstance(url, str) or not url.strip():
            raise InvalidProviderResponse(f"{self.name} response has no url")

        expires = payload.get("expires_at")
        try:
            expires_hint = float(expires) if expires is not None else None
        except (TypeError, ValueError):
            expires_hint = None

        return RemoteLocation(url=url.strip(), expires_hint=expires_hint)


class ProviderRegistry:
    """Ordered list of providers; the first one that handles a reference wins."""

    def __init__(self, providers: Iterable[SourceProvider] = ()) -> None:
        self._providers: list[SourceProvider] = list(providers)

    def __len__(self) -> int:
        return len(self._providers)

    def register(self, provider: SourceProvider) -> None:
        self._providers.append(provider)
        logger.debug("Registered provider %s", provider.name)

    def provider_for(self, reference: str) -> SourceProvider | None:
        for provider in self._providers:
            if provider.handles(reference):
                return provider
        return None

    @classmethod
    def from_config(
        cls, configs: Iterable[ProviderConfig], *, client: httpx.AsyncClient
    ) -> ProviderRegistry:
        registry = cls()
        for cfg in configs:
            if cfg.kind == "storage":
                registry.register(
                    ObjectStorageProvider(
                        cfg.base_url,
                        client=client,
                        scheme=cfg.scheme,
                        verify=cfg.verify,
                    )
                )
            elif cfg.kind == "api":
                registry.register(
                    HttpApiProvider(
                        cfg.endpoint,
                        client=client,
                        scheme=cfg.scheme,
                        headers=cfg.headers,
                    )
                )
            else:
                logger.warning("Unknown provider kind %r, skipping", cfg.kind)
        return registry
