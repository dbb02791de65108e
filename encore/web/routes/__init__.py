"""
Web Routes Package.

This package contains FastAPI route modules:
- api: REST API endpoints (/api/*)
- blobs: Materialized object URLs (/blob/*)
"""

from encore.web.routes.api import register_api_routes
from encore.web.routes.blobs import register_blob_routes

__all__ = [
    "register_api_routes",
    "register_blob_routes",
]
