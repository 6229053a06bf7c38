"""Operator access to the audit notification log."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, status

from gatehouse.api.dependencies import AdminSessionDep, ServicesDep

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("")
async def list_notifications(
    services: ServicesDep,
    session: AdminSessionDep,
    limit: int = Query(100, ge=1, le=500),
) -> dict[str, Any]:
    """Return the most recent notifications, newest first."""
    notifications = await services.audit.recent(limit)
    unread = sum(1 for item in notifications if not item["read"])
    return {"success": True, "notifications": notifications, "unread": unread}


@router.post("/clear")
async def clear_notifications(services: ServicesDep, session: AdminSessionDep) -> dict[str, Any]:
    cleared = await services.audit.clear()
    return {"success": True, "cleared": cleared}


@router.post("/{notification_id}/read")
async def mark_notification_read(
    notification_id: str,
    services: ServicesDep,
    session: AdminSessionDep,
) -> dict[str, bool]:
    if not await services.audit.mark_read(notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"success": True}


@router.delete("/{notification_id}")
async def delete_notification(
    notification_id: str,
    services: ServicesDep,
    session: AdminSessionDep,
) -> dict[str, bool]:
    if not await services.audit.delete(notification_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Notification not found")
    return {"success": True}
