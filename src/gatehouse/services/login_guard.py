"""Brute-force protection for operator logins.

Failures are counted per (username, client) pair inside a trailing window.
Each failure past the first is answered after an artificial delay that grows
with the failure count up to a cap; reaching the threshold locks the pair out
for a fixed duration. A successful login clears the state.
"""

from __future__ import annotations

import asyncio
import logging
import math
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from gatehouse.core.clock import Clock
from gatehouse.services.store import KeyValueStore

logger = logging.getLogger(__name__)

SleepFn = Callable[[float], Awaitable[None]]


class LoginLockedError(RuntimeError):
    """Raised while a (username, client) pair is locked out."""

    def __init__(self, retry_after_seconds: int) -> None:
        super().__init__(f"Too many failed attempts. Try again in {retry_after_seconds}s.")
        self.retry_after_seconds = retry_after_seconds


@dataclass(frozen=True)
class LoginFailure:
    """State after recording one failed attempt."""

    failed_attempts: int
    lock_until: float | None
    delay_seconds: float

    @property
    def locked(self) -> bool:
        return self.lock_until is not None


class LoginGuard:
    """Track failed attempts and enforce backoff and lockout."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock,
        *,
        window_seconds: float = 15 * 60,
        lock_duration_seconds: float = 15 * 60,
        threshold: int = 5,
        backoff_step_seconds: float = 1.0,
        backoff_max_seconds: float = 10.0,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self._store = store
        self._clock = clock
        self._window = window_seconds
        self._lock_duration = lock_duration_seconds
        self._threshold = threshold
        self._step = backoff_step_seconds
        self._max_delay = backoff_max_seconds
        self._sleep = sleep

    @staticmethod
    def _key(username: str, client_id: str) -> str:
        return f"login:{username[:60].strip().lower()}:{client_id}"

    def backoff_seconds(self, failed_attempts: int) -> float:
        if failed_attempts <= 1:
            return 0.0
        return min(self._max_delay, (failed_attempts - 1) * self._step)

    async def ensure_not_locked(self, username: str, client_id: str) -> None:
        """Raise :class:`LoginLockedError` if the pair is currently locked out."""
        state = await self._store.get_json(self._key(username, client_id))
        if not state:
            return
        lock_until = float(state.get("lockUntil") or 0)
        now = self._clock.now()
        if lock_until > now:
            raise LoginLockedError(max(1, math.ceil(lock_until - now)))

    async def register_failure(self, username: str, client_id: str) -> LoginFailure:
        """Count a failure, lock the pair at the threshold, then apply the delay."""
        key = self._key(username, client_id)
        now = self._clock.now()
        previous = await self._store.get_json(key)
        if previous and now - float(previous.get("firstFailureAt") or 0) <= self._window:
            failed_attempts = int(previous.get("failedAttempts") or 0) + 1
            first_failure_at = float(previous["firstFailureAt"])
        else:
            failed_attempts = 1
            first_failure_at = now

        lock_until = now + self._lock_duration if failed_attempts >= self._threshold else None
        await self._store.set_json(
            key,
            {
                "failedAttempts": failed_attempts,
                "firstFailureAt": first_failure_at,
                "lockUntil": lock_until or 0,
                "lastFailureAt": now,
            },
            ttl_seconds=self._window + self._lock_duration,
        )

        delay = self.backoff_seconds(failed_attempts)
        if delay > 0:
            await self._sleep(delay)
        if lock_until is not None:
            logger.warning("Locked login for %r from %s after %d failures", username, client_id, failed_attempts)
        return LoginFailure(failed_attempts, lock_until, delay)

    async def clear(self, username: str, client_id: str) -> None:
        await self._store.delete(self._key(username, client_id))
