"""
Pydantic schemas for API request/response models.

Request bodies use the camelCase field names of the public HTTP surface.
"""

from .auth import LoginRequest, LoginResponse, PasswordChangeRequest
from .security import AppealDecisionRequest, AppealRequest, ManualBlockRequest
from .track import TrackRequest

__all__ = [
    "LoginRequest", "LoginResponse", "PasswordChangeRequest",
    "AppealDecisionRequest", "AppealRequest", "ManualBlockRequest",
    "TrackRequest",
]
