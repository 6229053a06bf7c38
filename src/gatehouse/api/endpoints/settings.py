"""Operator account settings."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, status

from gatehouse.api.dependencies import AdminSessionDep, ClientAddressDep, ServicesDep
from gatehouse.schemas.auth import PasswordChangeRequest
from gatehouse.services.accounts import PASSWORD_MIN_LENGTH, valid_password
from gatehouse.services.notifications import CATEGORY_SECURITY

router = APIRouter(prefix="/settings", tags=["settings"])


@router.post("/password")
async def change_password(
    payload: PasswordChangeRequest,
    services: ServicesDep,
    session: AdminSessionDep,
    client: ClientAddressDep,
) -> dict[str, object]:
    """Rotate the signed-in operator's password."""
    if payload.username != session.subject:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid username")
    if not valid_password(payload.new_password):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Password must be at least {PASSWORD_MIN_LENGTH} characters",
        )

    await services.accounts.set_password(session.subject, payload.new_password)
    await services.audit.record(
        CATEGORY_SECURITY,
        "Password Changed",
        f"Admin password changed from IP: {client}",
        client_address=client,
    )
    return {"success": True, "message": "Password updated"}
