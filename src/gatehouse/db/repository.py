# src/gatehouse/db/repository.py
"""Durable state access for bans, appeals, notifications and operator accounts.

Every write is an idempotent upsert keyed by address or id, so callers may
retry a failed write without creating duplicates. Methods are synchronous and
are expected to run in a worker thread (``asyncio.to_thread``) from async code.
SQLAlchemy errors are rolled back and re-raised; callers decide whether a
failure is fatal.
"""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from sqlalchemy import delete, func, select
from sqlalchemy.orm import Session, sessionmaker

from gatehouse.models import AdminAccount, Appeal, BlockedAddress, Notification


class StateRepository:
    """Thin persistence gateway over a SQLAlchemy session factory."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    # --- Bans -----------------------------------------------------------------------
    def load_blocks(self) -> list[BlockedAddress]:
        with self._session_factory() as db:
            return list(db.scalars(select(BlockedAddress)))

    def save_block(self, row: BlockedAddress) -> None:
        with self._session_factory.begin() as db:
            db.merge(row)

    def delete_blocks(self, addresses: Iterable[str]) -> int:
        targets = list(addresses)
        if not targets:
            return 0
        with self._session_factory.begin() as db:
            result = db.execute(
                delete(BlockedAddress).where(BlockedAddress.address.in_(targets))
            )
            return result.rowcount or 0

    # --- Appeals --------------------------------------------------------------------
    def load_appeals(self, limit: int) -> list[Appeal]:
        """Return the newest ``limit`` appeals, newest first."""
        with self._session_factory() as db:
            stmt = select(Appeal).order_by(Appeal.created_at.desc()).limit(limit)
            return list(db.scalars(stmt))

    def save_appeal(self, appeal: Appeal) -> None:
        with self._session_factory.begin() as db:
            db.merge(appeal)

    def delete_appeals(self, appeal_ids: Iterable[str]) -> None:
        targets = list(appeal_ids)
        if not targets:
            return
        with self._session_factory.begin() as db:
            db.execute(delete(Appeal).where(Appeal.id.in_(targets)))

    # --- Notifications --------------------------------------------------------------
    def add_notification(self, notification: Notification, limit: int) -> None:
        """Insert an entry and evict the oldest ones beyond ``limit``."""
        with self._session_factory.begin() as db:
            db.merge(notification)
            db.flush()
            total = db.scalar(select(func.count()).select_from(Notification)) or 0
            overflow = total - limit
            if overflow > 0:
                oldest = select(Notification.id).order_by(
                    Notification.timestamp.asc(), Notification.id.asc()
                ).limit(overflow)
                db.execute(delete(Notification).where(Notification.id.in_(oldest)))

    def list_notifications(self, limit: int | None = None) -> list[Notification]:
        with self._session_factory() as db:
            stmt = select(Notification).order_by(Notification.timestamp.desc())
            if limit is not None:
                stmt = stmt.limit(limit)
            return list(db.scalars(stmt))

    def get_notification(self, notification_id: str) -> Notification | None:
        with self._session_factory() as db:
            return db.get(Notification, notification_id)

    def mark_notification_read(self, notification_id: str) -> bool:
        with self._session_factory.begin() as db:
            row = db.get(Notification, notification_id)
            if row is None:
                return False
            row.read = True
            return True

    def merge_notification_metadata(self, notification_id: str, patch: dict[str, Any]) -> bool:
        with self._session_factory.begin() as db:
            row = db.get(Notification, notification_id)
            if row is None:
                return False
            row.meta = {**(row.meta or {}), **patch}
            return True

    def delete_notification(self, notification_id: str) -> bool:
        with self._session_factory.begin() as db:
            result = db.execute(delete(Notification).where(Notification.id == notification_id))
            return bool(result.rowcount)

    def clear_notifications(self) -> int:
        with self._session_factory.begin() as db:
            result = db.execute(delete(Notification))
            return result.rowcount or 0

    # --- Operator accounts ----------------------------------------------------------
    def get_admin(self, username: str) -> AdminAccount | None:
        with self._session_factory() as db:
            return db.get(AdminAccount, username)

    def count_admins(self) -> int:
        with self._session_factory() as db:
            return db.scalar(select(func.count()).select_from(AdminAccount)) or 0

    def save_admin(self, account: AdminAccount) -> None:
        with self._session_factory.begin() as db:
            db.merge(account)
