"""Gatehouse: abuse mitigation and admin sessions for a FastAPI web server."""

__version__ = "1.0.0"
