# src/gatehouse/models/__init__.py
"""SQLAlchemy models for the Gatehouse durable state."""

from .admin import AdminAccount
from .appeal import Appeal
from .block import BlockedAddress
from .notification import Notification

__all__ = [
    "AdminAccount",
    "Appeal",
    "BlockedAddress",
    "Notification",
]
