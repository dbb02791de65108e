"""
Web Server Module for Encore.

This module provides the WebServer class that creates and manages the
FastAPI application for diagnostics and control:

- REST API for cache statistics, cache clearing, manual resolution and
  prediction diagnostics
- Blob endpoint serving the bytes behind L0 object URLs, so external
  playback engines can consume materialized streams over HTTP
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

import uvicorn
from fastapi import FastAPI

from encore import __version__
from encore.web.routes.api import register_api_routes
from encore.web.routes.blobs import register_blob_routes

if TYPE_CHECKING:
    from encore.cache.object_urls import ObjectUrlRegistry
    from encore.service import EncoreService

logger = logging.getLogger(__name__)


class WebServer:
    """FastAPI-based diagnostics/control server for Encore."""

    def __init__(self, service: EncoreService, object_urls: ObjectUrlRegistry | None = None) -> None:
        """
        Initialize the WebServer.

        Args:
            service: The running EncoreService
            object_urls: Registry whose blobs are served under /blob/
        """
        self.service = service
        self.object_urls = object_urls if object_urls is not None else service.object_urls

        self.app = FastAPI(
            title="Encore",
            description="Audio resolution, caching and crossfade engine",
            version=__version__,
        )

        self._server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task[None] | None = None
        self._host = "127.0.0.1"
        self._port = 9100

        self._register_routes()

    def _register_routes(self) -> None:
        """Register all routes with the FastAPI app."""

        @self.app.get("/health")
        async def health_check() -> dict[str, str]:
            """Health check endpoint."""
            return {"status": "ok", "server": "encore"}

        register_api_routes(self.app, service=self.service)
        register_blob_routes(self.app, object_urls=self.object_urls)

    async def start(self, host: str = "127.0.0.1", port: int = 9100) -> None:
        """
        Start the web server.

        Args:
            host: Host address to bind to
            port: Port to listen on
        """
        self._host = host
        self._port = port

        config = uvicorn.Config(
            self.app,
            host=host,
            port=port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._server.serve())

        logger.info("Web server started on http://%s:%d", host, port)

    async def stop(self) -> None:
        """Stop the web server."""
        if self._server is not None:
            self._server.should_exit = True
            self._server = None

        if self._serve_task is not None:
            try:
                await asyncio.wait_for(self._serve_task, timeout=5.0)
            except asyncio.TimeoutError:
                self._serve_task.cancel()
            self._serve_task = None

        logger.info("Web server stopped")

    @property
    def port(self) -> int:
        """Get the server port."""
        return self._port

    @property
    def host(self) -> str:
        """Get the server host."""
        return self._host
