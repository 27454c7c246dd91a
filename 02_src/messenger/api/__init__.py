"""API layer."""

from .app import create_fastapi_app, get_app

__all__ = ["create_fastapi_app", "get_app"]
