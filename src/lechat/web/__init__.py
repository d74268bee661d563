"""Web server for the LeChat endpoints."""

from .server import app, configure, start_server

__all__ = ["app", "configure", "start_server"]
