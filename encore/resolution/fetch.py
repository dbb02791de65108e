"""
Byte fetching and audio probing for cache backfill.

`HttpByteFetcher` downloads the full body behind a resolved URL. URLs that
point at an already materialized object URL are served from the registry
without touching the network.

`probe_audio` inspects downloaded bytes with mutagen to learn the duration
and MIME type; it is synchronous and meant to run in a worker thread.
"""

from __future__ import annotations

import io
import logging
from dataclasses import dataclass
from typing import Protocol

import httpx
from mutagen import File as mutagen_file
from mutagen import MutagenError

from encore.cache.object_urls import DEFAULT_CONTENT_TYPE, ObjectUrlRegistry

logger = logging.getLogger(__name__)


class ByteFetcher(Protocol):
    async def fetch_bytes(self, url: str) -> bytes: ...


@dataclass(frozen=True, slots=True)
class AudioProbe:
    duration: float | None = None
    content_type: str = DEFAULT_CONTENT_TYPE


class HttpByteFetcher:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        registry: ObjectUrlRegistry | None = None,
    ) -> None:
        self._client = client
        self._registry = registry

    async def fetch_bytes(self, url: str) -> bytes:
        if self._registry is not None:
            blob = self._registry.get(url)
            if blob is not None:
                return blob.data

        response = await self._client.get(url, follow_redirects=True)
        response.raise_for_status()
        logger.debug("Fetched %d bytes from %s", len(response.content), url)
        return response.content


def probe_audio(data: bytes) -> AudioProbe:
    """
    Extract duration and MIME type from in-memory audio.

    Unknown or unreadable data yields an empty probe rather than an error.
    """
    try:
        audio = mutagen_file(io.BytesIO(data))
    except (MutagenError, ValueError, OSError) as e:
        logger.debug("Could not probe audio: %s", e)
        return AudioProbe()

    if audio is None:
        return AudioProbe()

    duration = None
    info = getattr(audio, "info", None)
    length = getattr(info, "length", None)
    if isinstance(length, (int, float)) and length > 0:
        duration = float(length)

    mimes = getattr(audio, "mime", None) or [DEFAULT_CONTENT_TYPE]
    return AudioProbe(duration=duration, content_type=str(mimes[0]))
