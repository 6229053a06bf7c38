"""Schemas for block status, appeals and manual bans."""

from pydantic import BaseModel, ConfigDict, Field


class AppealRequest(BaseModel):
    """Unban appeal filed by a blocked client."""

    message: str | None = Field(None, description="Justification, at least 10 characters")
    contact: str | None = Field(None, description="Optional way to reach the appellant")


class AppealDecisionRequest(BaseModel):
    """Operator decision on a pending appeal."""

    decision: str = Field(..., description="Either `unblock` or `keep`")
    admin_note: str | None = Field(None, alias="adminNote")

    model_config = ConfigDict(populate_by_name=True)


class ManualBlockRequest(BaseModel):
    """Ban placed by an operator from the security console."""

    ip: str = Field(..., min_length=1, max_length=64)
    duration_seconds: float | None = Field(None, gt=0, alias="durationSeconds")
    reason: str | None = Field(None, max_length=220)

    model_config = ConfigDict(populate_by_name=True)
