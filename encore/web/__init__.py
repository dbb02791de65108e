"""
Encore Web Layer.

Diagnostics and control over HTTP, plus the blob endpoint that backs
L0 object URLs.
"""

from encore.web.server import WebServer

__all__ = ["WebServer"]
