"""ASGI entrypoint exposing the configured app."""

from apps.api.app.main import app

__all__ = ["app"]
