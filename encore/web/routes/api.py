"""
REST API Routes for Encore.

Provides REST endpoints for diagnostics and control:
- /api/status: Engine status
- /api/cache/*: Per-tier statistics, clearing, negative-cache maintenance
- /api/resolve: Manual resolution of a reference
- /api/prediction/stats: Predictor context and counters
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, HTTPException

from encore import __version__
from encore.core.models import StreamHints
from encore.resolution.errors import (
    InvalidResponse,
    KnownUnavailable,
    NetworkFailure,
    ResolutionError,
    ResolutionTimeout,
)

if TYPE_CHECKING:
    from encore.service import EncoreService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["api"])

# Reference set during route registration
_service: EncoreService | None = None

# ResolutionError kind -> HTTP status
_ERROR_STATUS: dict[type[ResolutionError], int] = {
    KnownUnavailable: 404,
    ResolutionTimeout: 504,
    NetworkFailure: 502,
    InvalidResponse: 502,
}


def register_api_routes(app, service: EncoreService) -> None:
    """
    Register API routes with the FastAPI app.

    Args:
        app: FastAPI application instance
        service: EncoreService backing the endpoints
    """
    global _service
    _service = service
    app.include_router(router)


def _require_service() -> EncoreService:
    if _service is None:
        raise HTTPException(status_code=503, detail="Engine not initialized")
    return _service


# =============================================================================
# Status
# =============================================================================


@router.get("/api/status")
async def engine_status() -> dict[str, Any]:
    """Get engine status and basic info."""
    service = _require_service()
    current = service.queue.current_track

    return {
        "server": "encore",
        "version": __version__,
        "running": service.is_running,
        "crossfade": service.crossfade.state.value if service.crossfade is not None else "disabled",
        "queue_length": len(service.queue),
        "current": str(current.reference) if current is not None else None,
    }


# =============================================================================
# Cache
# =============================================================================


@router.get("/api/cache/stats")
async def cache_stats() -> dict[str, Any]:
    """Read-only statistics for every cache tier."""
    service = _require_service()
    return {
        "tiers": {name: stats.to_dict() for name, stats in service.stats().items()},
        "resolver": service.resolver.stats(),
    }


@router.post("/api/cache/clear")
async def clear_cache() -> dict[str, Any]:
    """Invalidate every tier and release materialized URLs."""
    service = _require_service()
    released = service.clear_all()
    return {"cleared": True, "released_urls": released}


@router.delete("/api/cache/negative")
async def forget_unavailable(reference: str) -> dict[str, Any]:
    """Drop a negative verdict so the reference is tried again."""
    service = _require_service()
    removed = service.forget_unavailable(reference)
    if not removed:
        raise HTTPException(status_code=404, detail="Reference not in negative cache")
    return {"reference": reference, "removed": True}


# =============================================================================
# Resolution
# =============================================================================


@router.post("/api/resolve")
async def resolve_reference(request: dict[str, Any]) -> dict[str, Any]:
    """
    Resolve a reference through the tier hierarchy.

    Body: {"reference": "...", "title": "...", "artist": "..."}
    """
    service = _require_service()

    reference = request.get("reference")
    if not isinstance(reference, str) or not reference:
        raise HTTPException(status_code=400, detail="Missing 'reference'")

    hints = StreamHints(
        title=str(request.get("title") or ""),
        artist=str(request.get("artist") or ""),
    )

    try:
        stream = await service.resolve(reference, hints)
    except ResolutionError as e:
        status = _ERROR_STATUS.get(type(e), 502)
        logger.debug("Resolve of %s failed via API: %s", reference, e)
        raise HTTPException(
            status_code=status,
            detail={"error": e.kind, "retryable": e.retryable, "message": str(e)},
        ) from e

    return {
        "reference": reference,
        "url": stream.url,
        "expires_hint": stream.expires_hint,
        "duration": stream.duration,
        "tier": stream.tier.value,
    }


# =============================================================================
# Prediction
# =============================================================================


@router.get("/api/prediction/stats")
async def prediction_stats() -> dict[str, Any]:
    """Predictor context windows and preload counters."""
    service = _require_service()
    return service.preloader.stats()
