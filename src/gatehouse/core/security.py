"""Password hashing, opaque credential generation and client address resolution."""

from __future__ import annotations

import secrets
from collections.abc import Mapping

from passlib.context import CryptContext

from gatehouse.core.settings import settings

SESSION_TOKEN_BYTES = 32


def build_password_context(rounds: int) -> CryptContext:
    """Return a bcrypt context using the given work factor."""
    return CryptContext(schemes=["bcrypt"], deprecated="auto", bcrypt__rounds=rounds)


pwd_context = build_password_context(settings.password_hash_rounds)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str | None) -> bool:
    """Check a password against a stored hash; a missing or malformed hash never matches."""
    if not hashed:
        return False
    try:
        return pwd_context.verify(plain, hashed)
    except (ValueError, TypeError):
        return False


def generate_session_token() -> str:
    """Return a 256-bit random token rendered as hex."""
    return secrets.token_hex(SESSION_TOKEN_BYTES)


def generate_csp_nonce() -> str:
    return secrets.token_urlsafe(16)


def resolve_client_address(headers: Mapping[str, str], peer: str | None = None) -> str:
    """Pick the client address from proxy headers, falling back to the socket peer.

    Order: first ``X-Forwarded-For`` hop, ``X-Real-IP``, ``CF-Connecting-IP``,
    then the peer address; ``"unknown"`` when none is present.
    """
    forwarded = headers.get("x-forwarded-for")
    if forwarded:
        first = forwarded.split(",", 1)[0].strip()
        if first:
            return first
    for header in ("x-real-ip", "cf-connecting-ip"):
        value = (headers.get(header) or "").strip()
        if value:
            return value
    return peer or "unknown"
