"""Operator authentication schemas."""

from pydantic import BaseModel, ConfigDict, Field


class LoginRequest(BaseModel):
    """Credentials submitted to ``POST /login``.

    Length rules are enforced by the endpoint so that malformed attempts can
    be audited rather than rejected by validation.
    """

    username: str | None = Field(None, description="Operator username")
    password: str | None = Field(None, description="Operator password")


class LoginResponse(BaseModel):
    """Session credential returned after a successful login."""

    success: bool = True
    token: str = Field(..., description="Opaque session token, also set as a cookie")
    expires_in_ms: int = Field(..., alias="expiresInMs")
    expires_at: str = Field(..., alias="expiresAt")

    model_config = ConfigDict(populate_by_name=True)


class PasswordChangeRequest(BaseModel):
    """Body of ``POST /settings/password``."""

    username: str | None = Field(None, description="Operator username being updated")
    new_password: str | None = Field(None, alias="newPassword")

    model_config = ConfigDict(populate_by_name=True)
