"""Block status, unban appeals and the operator security console."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request, status

from gatehouse.api.dependencies import AdminSessionDep, ClientAddressDep, ServicesDep
from gatehouse.schemas.security import AppealDecisionRequest, AppealRequest, ManualBlockRequest
from gatehouse.services.appeals import (
    AppealAlreadyResolvedError,
    AppealError,
    AppealNotFoundError,
    AppealTooSoonError,
    serialize_appeal,
)
from gatehouse.services.ip_blocks import SOURCE_ADMIN
from gatehouse.services.notifications import CATEGORY_SECURITY

MANUAL_BLOCK_REASON = "Blocked by admin"

router = APIRouter(prefix="/security", tags=["security"])


@router.get("/block-status")
async def get_block_status(services: ServicesDep, client: ClientAddressDep) -> dict[str, Any]:
    """Report whether the requesting client is banned; reachable while banned."""
    ban = await services.registry.status(client)
    return {"ip": client, **ban.as_dict()}


@router.post("/appeal")
async def submit_appeal(
    payload: AppealRequest,
    request: Request,
    services: ServicesDep,
    client: ClientAddressDep,
) -> dict[str, Any]:
    """File an unban appeal for the requesting client.

    Returns:
        The id of the stored appeal

    Raises:
        HTTPException: 429 while the submission interval has not elapsed,
            400 when the client is not banned or the message is too short
    """
    try:
        appeal = await services.appeals.submit(
            client,
            payload.message,
            payload.contact,
            request.headers.get("user-agent"),
        )
    except AppealTooSoonError as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error": str(exc), "retryAfterSeconds": exc.wait_seconds},
        ) from exc
    except AppealError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return {
        "success": True,
        "appealId": appeal.id,
        "message": "Appeal submitted. Admin will review your request.",
    }


@router.get("/appeals")
async def list_appeals(
    services: ServicesDep,
    session: AdminSessionDep,
    appeal_status: str | None = Query(None, alias="status"),
) -> dict[str, Any]:
    """List stored appeals, newest first, optionally filtered by status."""
    appeals = services.appeals.history(appeal_status)
    return {"success": True, "appeals": [serialize_appeal(appeal) for appeal in appeals]}


@router.post("/appeals/{appeal_id}/decision")
async def decide_appeal(
    appeal_id: str,
    payload: AppealDecisionRequest,
    services: ServicesDep,
    session: AdminSessionDep,
) -> dict[str, Any]:
    """Resolve a pending appeal by lifting or keeping the ban."""
    try:
        appeal = await services.appeals.decide(appeal_id, payload.decision, payload.admin_note)
    except AppealNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except AppealAlreadyResolvedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    except AppealError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return {"success": True, "appeal": serialize_appeal(appeal)}


@router.get("/blocked")
async def list_blocked(services: ServicesDep, session: AdminSessionDep) -> dict[str, Any]:
    """List active bans."""
    now = services.clock.now()
    entries = await services.registry.active()
    return {"success": True, "blocked": [entry.as_dict(now) for entry in entries]}


@router.post("/blocked", status_code=status.HTTP_201_CREATED)
async def add_block(
    payload: ManualBlockRequest,
    services: ServicesDep,
    session: AdminSessionDep,
) -> dict[str, Any]:
    """Ban an address by hand."""
    address = payload.ip.strip()
    if not address:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="IP is required")

    duration = payload.duration_seconds or services.settings.temp_block_duration_seconds
    reason = (payload.reason or "").strip() or MANUAL_BLOCK_REASON
    entry = await services.registry.block(address, duration, reason, source=SOURCE_ADMIN)
    await services.audit.record(
        CATEGORY_SECURITY,
        "IP Blocked By Admin",
        f'IP {address} blocked by {session.subject}. reason="{reason}"',
        client_address=address,
    )
    return {"success": True, "block": entry.as_dict(services.clock.now())}


@router.delete("/blocked/{address}")
async def remove_block(
    address: str,
    services: ServicesDep,
    session: AdminSessionDep,
) -> dict[str, Any]:
    """Lift a ban by hand."""
    if not await services.registry.unblock(address):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="IP is not blocked")

    await services.audit.record(
        CATEGORY_SECURITY,
        "IP Unblocked By Admin",
        f"IP {address} unblocked by {session.subject}.",
        client_address=address,
    )
    return {"success": True}
