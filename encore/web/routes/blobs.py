"""
Blob Routes for Encore.

Serves the bytes behind L0 object URLs at /blob/{token}. A URL stops
working as soon as L0 revokes it (eviction, replacement or clear).
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import APIRouter, HTTPException
from fastapi.responses import Response

if TYPE_CHECKING:
    from encore.cache.object_urls import ObjectUrlRegistry

logger = logging.getLogger(__name__)

router = APIRouter(tags=["blobs"])

# Reference to the registry, set during route registration
_object_urls: ObjectUrlRegistry | None = None


def register_blob_routes(app, object_urls: ObjectUrlRegistry) -> None:
    """
    Register blob routes with the FastAPI app.

    Args:
        app: FastAPI application instance
        object_urls: Registry holding the materialized blobs
    """
    global _object_urls
    _object_urls = object_urls
    app.include_router(router)


@router.get("/blob/{token}")
async def get_blob(token: str) -> Response:
    """Return the bytes for an object URL token."""
    if _object_urls is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")

    blob = _object_urls.get_by_token(token)
    if blob is None:
        raise HTTPException(status_code=404, detail="Object URL revoked or unknown")

    return Response(
        content=blob.data,
        media_type=blob.content_type,
        headers={"Cache-Control": "no-store"},
    )
