"""API endpoint modules."""

from .auth import router as auth_router
from .notifications import router as notifications_router
from .security import router as security_router
from .settings import router as settings_router
from .system import router as system_router
from .track import router as track_router

__all__ = [
    "auth_router",
    "notifications_router",
    "security_router",
    "settings_router",
    "system_router",
    "track_router",
]
