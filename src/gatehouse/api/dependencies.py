"""Shared API dependencies for services, client identity and operator sessions."""

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from gatehouse.core.security import resolve_client_address
from gatehouse.services.container import SecurityServices
from gatehouse.services.sessions import AdminSession

# Bearer tokens are optional; the session cookie is checked first
bearer_scheme = HTTPBearer(auto_error=False)


def get_services(request: Request) -> SecurityServices:
    """Return the services object attached to the running application."""
    return request.app.state.services


ServicesDep = Annotated[SecurityServices, Depends(get_services)]


def get_client_address(request: Request) -> str:
    """Resolve the requesting client's address once per request."""
    cached = getattr(request.state, "client_address", None)
    if cached:
        return cached
    peer = request.client.host if request.client else None
    return resolve_client_address(request.headers, peer)


ClientAddressDep = Annotated[str, Depends(get_client_address)]


def session_token(
    request: Request,
    services: ServicesDep,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(bearer_scheme)],
) -> str | None:
    """Return the session token from the cookie or the ``Authorization`` header."""
    token = request.cookies.get(services.settings.session_cookie_name)
    if token:
        return token
    if credentials is not None:
        return credentials.credentials
    return None


SessionTokenDep = Annotated[str | None, Depends(session_token)]


async def require_admin_session(token: SessionTokenDep, services: ServicesDep) -> AdminSession:
    """Return the live operator session or answer 401.

    Raises:
        HTTPException: If no token was presented or the session has expired
    """
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
        )
    session = await services.sessions.get(token)
    if session is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Session expired or invalid",
        )
    return session


AdminSessionDep = Annotated[AdminSession, Depends(require_admin_session)]
