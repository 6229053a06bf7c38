"""Operator-facing audit log.

Every escalation, login outcome, appeal event and administrative action is
written here. The log is capped to the most recent entries; recording never
raises, so a failing database cannot turn a rejected request into a 500.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from gatehouse.core.clock import Clock
from gatehouse.db.repository import StateRepository
from gatehouse.db.time import to_iso
from gatehouse.models import Notification

logger = logging.getLogger(__name__)

CATEGORY_ATTACK_BLOCKED = "attack_blocked"
CATEGORY_SECURITY = "security"
CATEGORY_WARNING = "warning"
CATEGORY_ERROR = "error"
CATEGORY_APPEAL = "appeal"

MAX_MESSAGE_LENGTH = 450


def truncate(value: str | None, limit: int) -> str:
    """Clip to ``limit`` characters, then trim surrounding whitespace."""
    if not isinstance(value, str):
        return ""
    return value[:limit].strip()


def serialize_notification(row: Notification) -> dict[str, Any]:
    return {
        "id": row.id,
        "category": row.category,
        "title": row.title,
        "message": row.message,
        "clientAddress": row.client_address,
        "metadata": row.meta,
        "timestamp": to_iso(row.timestamp),
        "read": row.read,
    }


class AuditLog:
    """Append-only notification log persisted through :class:`StateRepository`."""

    def __init__(self, repository: StateRepository, clock: Clock, limit: int = 500) -> None:
        self._repository = repository
        self._clock = clock
        self._limit = limit
        self._last_timestamp = 0.0

    def _next_timestamp(self) -> float:
        # Strictly increasing so entries written within one clock tick keep their order.
        self._last_timestamp = max(self._clock.now(), self._last_timestamp + 1e-6)
        return self._last_timestamp

    async def record(
        self,
        category: str,
        title: str,
        message: str,
        *,
        client_address: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> str | None:
        """Append an entry and return its id, or ``None`` if it could not be stored."""
        row = Notification(
            id=str(uuid.uuid4()),
            category=category,
            title=title,
            message=truncate(message, MAX_MESSAGE_LENGTH),
            client_address=client_address,
            meta=metadata,
            timestamp=self._next_timestamp(),
            read=False,
        )
        try:
            await asyncio.to_thread(self._repository.add_notification, row, self._limit)
        except SQLAlchemyError:
            logger.exception("Failed to record %s notification %r", category, title)
            return None
        logger.debug("Recorded %s notification %r for %s", category, title, client_address)
        return row.id

    async def report_error(
        self, title: str, exc: BaseException, client_address: str | None = None
    ) -> str | None:
        return await self.record(
            CATEGORY_ERROR,
            title,
            f"{exc.__class__.__name__}: {exc}",
            client_address=client_address,
        )

    async def merge_metadata(self, notification_id: str, patch: dict[str, Any]) -> bool:
        try:
            return await asyncio.to_thread(
                self._repository.merge_notification_metadata, notification_id, patch
            )
        except SQLAlchemyError:
            logger.exception("Failed to update notification %s", notification_id)
            return False

    async def recent(self, limit: int | None = None) -> list[dict[str, Any]]:
        rows = await asyncio.to_thread(self._repository.list_notifications, limit)
        return [serialize_notification(row) for row in rows]

    async def get(self, notification_id: str) -> dict[str, Any] | None:
        row = await asyncio.to_thread(self._repository.get_notification, notification_id)
        return serialize_notification(row) if row is not None else None

    async def mark_read(self, notification_id: str) -> bool:
        return await asyncio.to_thread(self._repository.mark_notification_read, notification_id)

    async def delete(self, notification_id: str) -> bool:
        return await asyncio.to_thread(self._repository.delete_notification, notification_id)

    async def clear(self) -> int:
        return await asyncio.to_thread(self._repository.clear_notifications)
