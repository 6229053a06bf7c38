"""Operator credential checks backed by the ``admin_accounts`` table."""

from __future__ import annotations

import asyncio
import logging

from gatehouse.core.clock import Clock
from gatehouse.core.security import hash_password, verify_password
from gatehouse.db.repository import StateRepository
from gatehouse.models import AdminAccount

logger = logging.getLogger(__name__)

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 8


def valid_username(username: object) -> bool:
    return isinstance(username, str) and USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH


def valid_password(password: object) -> bool:
    return isinstance(password, str) and len(password) >= PASSWORD_MIN_LENGTH


class AdminAccounts:
    """Verify and rotate operator passwords; hashing runs in a worker thread."""

    def __init__(self, repository: StateRepository, clock: Clock) -> None:
        self._repository = repository
        self._clock = clock

    async def authenticate(self, username: str, password: str) -> bool:
        account = await asyncio.to_thread(self._repository.get_admin, username)
        stored_hash = account.password_hash if account is not None else None
        matched = await asyncio.to_thread(verify_password, password, stored_hash)
        return account is not None and matched

    async def exists(self, username: str) -> bool:
        return await asyncio.to_thread(self._repository.get_admin, username) is not None

    async def set_password(self, username: str, password: str) -> None:
        password_hash = await asyncio.to_thread(hash_password, password)
        await self.store_hash(username, password_hash)

    async def store_hash(self, username: str, password_hash: str) -> None:
        account = AdminAccount(
            username=username,
            password_hash=password_hash,
            updated_at=self._clock.now(),
        )
        await asyncio.to_thread(self._repository.save_admin, account)
        logger.info("Stored credentials for operator %r", username)

    async def seed(self, username: str | None, password_hash: str | None) -> bool:
        """Provision the configured operator when no account exists yet."""
        if not username or not password_hash:
            return False
        if await asyncio.to_thread(self._repository.count_admins):
            return False
        await self.store_hash(username, password_hash)
        return True
