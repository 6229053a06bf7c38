"""Admin session issuance, validation and revocation."""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from gatehouse.core.clock import Clock
from gatehouse.core.security import generate_session_token
from gatehouse.db.time import to_iso
from gatehouse.services.store import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AdminSession:
    """Server-held record addressed by an opaque token."""

    token: str
    subject: str
    issued_at: float
    expires_at: float
    client: dict[str, Any] = field(default_factory=dict)

    def to_document(self) -> dict[str, Any]:
        data = asdict(self)
        data.pop("token")
        return data

    def as_dict(self) -> dict[str, Any]:
        return {
            "subject": self.subject,
            "issuedAt": to_iso(self.issued_at),
            "expiresAt": to_iso(self.expires_at),
        }


class SessionStore:
    """Sessions live in the key-value store with a TTL equal to their lifetime."""

    def __init__(self, store: KeyValueStore, clock: Clock, ttl_seconds: float) -> None:
        self._store = store
        self._clock = clock
        self.ttl_seconds = ttl_seconds

    @staticmethod
    def _key(token: str) -> str:
        return f"session:{token}"

    async def create(self, subject: str, client: dict[str, Any] | None = None) -> AdminSession:
        now = self._clock.now()
        session = AdminSession(
            token=generate_session_token(),
            subject=subject,
            issued_at=now,
            expires_at=now + self.ttl_seconds,
            client=dict(client or {}),
        )
        await self._store.set_json(
            self._key(session.token), session.to_document(), ttl_seconds=self.ttl_seconds
        )
        logger.debug("Issued session for %s until %s", subject, session.expires_at)
        return session

    async def get(self, token: str | None) -> AdminSession | None:
        """Return the live session for ``token``; expired sessions are deleted."""
        if not token:
            return None
        document = await self._store.get_json(self._key(token))
        if not document:
            return None
        expires_at = float(document.get("expires_at") or 0)
        if expires_at <= self._clock.now():
            await self._store.delete(self._key(token))
            return None
        return AdminSession(
            token=token,
            subject=str(document.get("subject", "")),
            issued_at=float(document.get("issued_at") or 0),
            expires_at=expires_at,
            client=dict(document.get("client") or {}),
        )

    async def delete(self, token: str | None) -> None:
        if token:
            await self._store.delete(self._key(token))
