"""HTTP surface of the Gatehouse application."""

from .endpoints import (
    auth_router,
    notifications_router,
    security_router,
    settings_router,
    system_router,
    track_router,
)

__all__ = [
    "auth_router",
    "notifications_router",
    "security_router",
    "settings_router",
    "system_router",
    "track_router",
]
