"""Temporary IP bans.

The registry keeps the live ban map in process and mirrors every change to
the database so a restart can rebuild it. Entries whose ``blocked_until`` has
passed are purged lazily on read and by the background sweep. Database
failures are logged and reported to the audit log; the in-memory map stays
authoritative for the rest of the process lifetime.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from gatehouse.core.clock import Clock
from gatehouse.db.repository import StateRepository
from gatehouse.db.time import to_iso
from gatehouse.models import BlockedAddress

logger = logging.getLogger(__name__)

SOURCE_AUTO = "auto"
SOURCE_PERSISTED = "persisted"
SOURCE_ADMIN = "admin"

DEFAULT_REASON = "Security policy triggered"

PersistErrorCallback = Callable[[str, Exception], Awaitable[Any]]


@dataclass(frozen=True)
class BlockEntry:
    """A ban on one client address."""

    address: str
    blocked_until: float
    reason: str
    source: str
    created_at: float
    updated_at: float

    def to_row(self) -> BlockedAddress:
        return BlockedAddress(
            address=self.address,
            blocked_until=self.blocked_until,
            reason=self.reason,
            source=self.source,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )

    def as_dict(self, now: float) -> dict[str, Any]:
        return {
            "ip": self.address,
            "blockedUntil": to_iso(self.blocked_until),
            "remainingSeconds": max(0, math.ceil(self.blocked_until - now)),
            "reason": self.reason,
            "source": self.source,
            "createdAt": to_iso(self.created_at),
            "updatedAt": to_iso(self.updated_at),
        }


@dataclass(frozen=True)
class BlockStatus:
    """Answer to "is this client banned right now?"."""

    blocked: bool
    reason: str | None = None
    blocked_until: float | None = None
    remaining_seconds: float = 0.0

    def as_dict(self) -> dict[str, Any]:
        return {
            "blocked": self.blocked,
            "reason": self.reason,
            "blockedUntil": to_iso(self.blocked_until),
            "remainingSeconds": max(0, math.ceil(self.remaining_seconds)),
        }


UNBLOCKED = BlockStatus(blocked=False)


class IPBlockRegistry:
    """Authoritative ban state consulted before every other gate."""

    def __init__(
        self,
        clock: Clock,
        repository: StateRepository,
        on_persist_error: PersistErrorCallback | None = None,
    ) -> None:
        self._clock = clock
        self._repository = repository
        self._on_persist_error = on_persist_error
        self._entries: dict[str, BlockEntry] = {}

    async def load(self) -> int:
        """Rebuild the ban map from the database, discarding expired rows."""
        rows = await asyncio.to_thread(self._repository.load_blocks)
        now = self._clock.now()
        expired: list[str] = []
        for row in rows:
            if row.blocked_until <= now:
                expired.append(row.address)
                continue
            self._entries[row.address] = BlockEntry(
                address=row.address,
                blocked_until=row.blocked_until,
                reason=row.reason or DEFAULT_REASON,
                source=SOURCE_PERSISTED,
                created_at=row.created_at,
                updated_at=row.updated_at,
            )
        if expired:
            await self._persist("delete", expired)
        logger.info("Hydrated %d active bans, discarded %d expired", len(self._entries), len(expired))
        return len(self._entries)

    async def status(self, client_id: str) -> BlockStatus:
        entry = self._entries.get(client_id)
        if entry is None:
            return UNBLOCKED
        now = self._clock.now()
        if entry.blocked_until <= now:
            await self._evict([client_id])
            return UNBLOCKED
        return BlockStatus(
            blocked=True,
            reason=entry.reason or DEFAULT_REASON,
            blocked_until=entry.blocked_until,
            remaining_seconds=entry.blocked_until - now,
        )

    async def get(self, client_id: str) -> BlockEntry | None:
        status = await self.status(client_id)
        return self._entries.get(client_id) if status.blocked else None

    async def active(self) -> list[BlockEntry]:
        await self.sweep()
        return sorted(self._entries.values(), key=lambda entry: entry.blocked_until, reverse=True)

    async def block(
        self,
        client_id: str,
        duration_seconds: float,
        reason: str,
        source: str = SOURCE_AUTO,
    ) -> BlockEntry:
        now = self._clock.now()
        previous = self._entries.get(client_id)
        entry = BlockEntry(
            address=client_id,
            blocked_until=now + duration_seconds,
            reason=reason,
            source=source,
            created_at=previous.created_at if previous else now,
            updated_at=now,
        )
        self._entries[client_id] = entry
        logger.info(
            "Blocked %s for %.0fs (%s, source=%s)", client_id, duration_seconds, reason, source
        )
        await self._persist("save", entry)
        return entry

    async def unblock(self, client_id: str) -> bool:
        removed = self._entries.pop(client_id, None) is not None
        await self._persist("delete", [client_id])
        if removed:
            logger.info("Unblocked %s", client_id)
        return removed

    async def sweep(self) -> int:
        """Purge expired bans from memory and the database."""
        now = self._clock.now()
        expired = [address for address, entry in self._entries.items() if entry.blocked_until <= now]
        if expired:
            await self._evict(expired)
        return len(expired)

    async def _evict(self, addresses: list[str]) -> None:
        for address in addresses:
            self._entries.pop(address, None)
        logger.debug("Evicted %d expired bans", len(addresses))
        await self._persist("delete", addresses)

    async def _persist(self, action: str, payload: BlockEntry | list[str]) -> None:
        try:
            if isinstance(payload, BlockEntry):
                await asyncio.to_thread(self._repository.save_block, payload.to_row())
            else:
                await asyncio.to_thread(self._repository.delete_blocks, payload)
        except SQLAlchemyError as exc:
            logger.warning("Failed to %s persisted ban state: %s", action, exc)
            if self._on_persist_error is not None:
                await self._on_persist_error(f"Ban state {action} failed", exc)

    def __len__(self) -> int:
        return len(self._entries)
