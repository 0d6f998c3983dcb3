"""HTTP API."""

from notedraft.server.app import create_app

__all__ = ["create_app"]
