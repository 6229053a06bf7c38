"""Operator login, logout and session validation."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException, Request, Response, status

from gatehouse.api.dependencies import (
    AdminSessionDep,
    ClientAddressDep,
    ServicesDep,
    SessionTokenDep,
)
from gatehouse.core.settings import Settings
from gatehouse.db.time import to_iso
from gatehouse.schemas.auth import LoginRequest, LoginResponse
from gatehouse.services.accounts import valid_password, valid_username
from gatehouse.services.login_guard import LoginLockedError
from gatehouse.services.notifications import CATEGORY_SECURITY, CATEGORY_WARNING

router = APIRouter(tags=["auth"])


def _set_session_cookie(response: Response, config: Settings, token: str) -> None:
    response.set_cookie(
        key=config.session_cookie_name,
        value=token,
        max_age=int(config.session_ttl_seconds),
        httponly=True,
        secure=config.session_cookie_secure,
        samesite="strict",
        path="/",
    )


@router.post("/login", response_model=LoginResponse)
async def login(
    payload: LoginRequest,
    request: Request,
    response: Response,
    services: ServicesDep,
    client: ClientAddressDep,
) -> LoginResponse:
    """Authenticate the operator and open a session.

    Failed attempts are counted per (username, client); each failure past
    the first is answered after a growing delay, and the pair is locked out
    once the threshold is reached.

    Raises:
        HTTPException: 400 on malformed input, 429 while locked out,
            401 on bad credentials
    """
    username, password = payload.username, payload.password
    if not valid_username(username) or not valid_password(password):
        await services.audit.record(
            CATEGORY_WARNING,
            "Invalid Login Attempt",
            f"Login rejected due to invalid input format from IP: {client}",
            client_address=client,
        )
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid username or password format",
        )

    try:
        await services.login_guard.ensure_not_locked(username, client)
    except LoginLockedError as exc:
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail={"error": str(exc), "retryAfterSeconds": exc.retry_after_seconds},
        ) from exc

    if await services.accounts.authenticate(username, password):
        await services.login_guard.clear(username, client)
        session = await services.sessions.create(
            username,
            {"ip": client, "username": username, "userAgent": request.headers.get("user-agent")},
        )
        _set_session_cookie(response, services.settings, session.token)
        await services.audit.record(
            CATEGORY_SECURITY,
            "Login Success",
            f"Admin login from IP: {client}",
            client_address=client,
        )
        return LoginResponse(
            token=session.token,
            expires_in_ms=int(services.sessions.ttl_seconds * 1000),
            expires_at=to_iso(session.expires_at),
        )

    failure = await services.login_guard.register_failure(username, client)
    await services.audit.record(
        CATEGORY_WARNING,
        "Failed Login Attempt",
        f'Failed login for username "{username}" from IP: {client} '
        f"(attempt {failure.failed_attempts}, delayed {failure.delay_seconds:.0f}s)",
        client_address=client,
    )
    if failure.locked:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail={
                "error": "Too many failed attempts. Account temporarily locked.",
                "lockUntil": to_iso(failure.lock_until),
            },
        )
    raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")


@router.post("/logout")
async def logout(
    response: Response,
    services: ServicesDep,
    session: AdminSessionDep,
    token: SessionTokenDep,
) -> dict[str, bool]:
    """Revoke the current session and clear its cookie."""
    await services.sessions.delete(token)
    response.delete_cookie(services.settings.session_cookie_name, path="/")
    return {"success": True}


@router.post("/validate-token")
async def validate_token(session: AdminSessionDep) -> dict[str, Any]:
    """Confirm that the presented session is still live."""
    return {"success": True, "valid": True, "expiresAt": to_iso(session.expires_at)}
