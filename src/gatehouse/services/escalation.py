"""Promotion of repeated soft rejections into temporary bans.

Two escalators run side by side: one counts rate-limit rejections, the other
malicious payload detections. Each keeps a per-client violation record in the
store and bans the client once its own threshold is reached within the
tracking window.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from gatehouse.core.clock import Clock
from gatehouse.services.ip_blocks import SOURCE_AUTO, BlockEntry, IPBlockRegistry
from gatehouse.services.store import KeyValueStore

logger = logging.getLogger(__name__)

RATE_LIMIT_BLOCK_REASON = "Repeated rate-limit violations / possible DoS pattern"
MALICIOUS_INPUT_BLOCK_REASON = "Repeated malicious payloads (injection defense)"


async def register_violation(
    store: KeyValueStore, key: str, window_seconds: float, now: float
) -> int:
    """Count one violation under ``key`` and return the running total.

    The record restarts at one when its first violation is older than the
    window. The record expires from the store one window after the last hit.
    """
    existing = await store.get_json(key)
    if not existing or now - float(existing.get("firstSeenAt", 0)) > window_seconds:
        record = {"count": 1, "firstSeenAt": now, "lastSeenAt": now}
    else:
        record = {
            "count": int(existing.get("count", 0)) + 1,
            "firstSeenAt": existing["firstSeenAt"],
            "lastSeenAt": now,
        }
    await store.set_json(key, record, ttl_seconds=window_seconds)
    return record["count"]


@dataclass(frozen=True)
class EscalationResult:
    """Violation count after one incident and the ban it triggered, if any."""

    violations: int
    threshold: int
    block: BlockEntry | None = None

    @property
    def blocked(self) -> bool:
        return self.block is not None


class ViolationEscalator:
    """Count violations of one kind and ban clients that repeat them."""

    def __init__(
        self,
        name: str,
        store: KeyValueStore,
        registry: IPBlockRegistry,
        clock: Clock,
        *,
        threshold: int,
        window_seconds: float,
        block_duration_seconds: float,
        reason: str,
    ) -> None:
        self.name = name
        self.threshold = threshold
        self.reason = reason
        self._store = store
        self._registry = registry
        self._clock = clock
        self._window = window_seconds
        self._block_duration = block_duration_seconds

    def _key(self, client_id: str) -> str:
        return f"violations:{self.name}:{client_id}"

    async def register_violation(self, client_id: str) -> int:
        return await register_violation(
            self._store, self._key(client_id), self._window, self._clock.now()
        )

    async def escalate(self, client_id: str) -> EscalationResult:
        """Record a violation and ban ``client_id`` if the threshold is reached."""
        count = await self.register_violation(client_id)
        if count < self.threshold:
            return EscalationResult(violations=count, threshold=self.threshold)

        entry = await self._registry.block(
            client_id, self._block_duration, self.reason, source=SOURCE_AUTO
        )
        await self._store.delete(self._key(client_id))
        logger.warning(
            "Escalated %s to a ban after %d %s violations", client_id, count, self.name
        )
        return EscalationResult(violations=count, threshold=self.threshold, block=entry)

    async def reset(self, client_id: str) -> None:
        await self._store.delete(self._key(client_id))
