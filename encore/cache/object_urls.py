"""
Materialized object URLs.

An object URL wraps an in-memory byte buffer so that a playback engine can be
pointed at fully downloaded audio. The registry is the only owner of the
buffers; whoever creates a URL must revoke it, otherwise the bytes stay alive
for the lifetime of the process.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass

logger = logging.getLogger(__name__)

DEFAULT_CONTENT_TYPE = "audio/mpeg"


@dataclass(frozen=True, slots=True)
class ObjectBlob:
    data: bytes
    content_type: str = DEFAULT_CONTENT_TYPE


class ObjectUrlRegistry:
    """Maps opaque URLs of the form `<base><token>` to byte buffers."""

    def __init__(self, base_url: str = "blob:encore/") -> None:
        self._base_url = base_url
        self._blobs: dict[str, ObjectBlob] = {}

    @property
    def base_url(self) -> str:
        return self._base_url

    def __len__(self) -> int:
        return len(self._blobs)

    def __contains__(self, url: object) -> bool:
        return isinstance(url, str) and self.token_for(url) in self._blobs

    def create(self, data: bytes, content_type: str = DEFAULT_CONTENT_TYPE) -> str:
        token = uuid.uuid4().hex
        self._blobs[token] = ObjectBlob(data=data, content_type=content_type)
        return self._base_url + token

    def revoke(self, url: str) -> bool:
        """Release the buffer behind `url`. Returns False if it was unknown."""
        token = self.token_for(url)
        if token is None:
            return False
        return self._blobs.pop(token, None) is not None

    def get(self, url: str) -> ObjectBlob | None:
        token = self.token_for(url)
        if token is None:
            return None
        return self._blobs.get(token)

    def get_by_token(self, token: str) -> ObjectBlob | None:
        return self._blobs.get(token)

    def token_for(self, url: str) -> str | None:
        if not url.startswith(self._base_url):
            return None
        return url[len(self._base_url) :]

    def revoke_all(self) -> int:
        count = len(self._blobs)
        self._blobs.clear()
        return count
