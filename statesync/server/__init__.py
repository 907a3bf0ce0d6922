"""HTTP server for statesync.

Exposes conditional reads, full-document writes and a server-sent event
stream over FastAPI.
"""

from .app import create_app

__all__ = ["create_app"]
