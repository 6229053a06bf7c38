"""Background eviction of expired security state.

Lazy eviction on read keeps each structure correct; this worker bounds memory
between reads by periodically purging expired buckets, sessions, attempt and
violation records, bans and geo cache entries.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from sqlalchemy.exc import SQLAlchemyError

from gatehouse.services.geo import GeoResolver
from gatehouse.services.ip_blocks import IPBlockRegistry
from gatehouse.services.store import KeyValueStore, StoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SweepReport:
    """How many entries one pass evicted from each structure."""

    store: int = 0
    bans: int = 0
    geo: int = 0

    @property
    def total(self) -> int:
        return self.store + self.bans + self.geo


class SecuritySweeper:
    """Periodically evicts expired entries until stopped."""

    def __init__(
        self,
        store: KeyValueStore,
        registry: IPBlockRegistry,
        geo: GeoResolver,
        interval_seconds: float = 60.0,
    ) -> None:
        self._store = store
        self._registry = registry
        self._geo = geo
        self._interval = max(0.1, float(interval_seconds))
        self._task: asyncio.Task[None] | None = None
        self._stopping = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        """Start the background sweep loop."""
        if self._task is None or self._task.done():
            self._stopping.clear()
            self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Stop the background sweep loop."""
        if self._task is None:
            return

        self._stopping.set()
        await self._task
        self._task = None

    async def sweep_once(self) -> SweepReport:
        report = SweepReport(
            store=await self._store.sweep(),
            bans=await self._registry.sweep(),
            geo=self._geo.expire(),
        )
        if report.total:
            logger.info(
                "Swept %d store entries, %d bans, %d geo entries",
                report.store,
                report.bans,
                report.geo,
            )
        return report

    async def _run(self) -> None:
        while not self._stopping.is_set():
            try:
                await self.sweep_once()
            except (StoreError, SQLAlchemyError) as exc:
                logger.warning("SecuritySweeper pass failed: %s", exc)
            except Exception:
                logger.exception("SecuritySweeper pass raised unexpectedly")

            try:
                await asyncio.wait_for(self._stopping.wait(), timeout=self._interval)
            except TimeoutError:
                continue
