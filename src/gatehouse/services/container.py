"""Wiring of the security services into one object owned by the application."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass

import httpx
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from gatehouse.core.clock import Clock, system_clock
from gatehouse.core.settings import Settings
from gatehouse.db.repository import StateRepository
from gatehouse.db.session import create_tables
from gatehouse.db.session import engine as default_engine
from gatehouse.services.accounts import AdminAccounts
from gatehouse.services.appeals import AppealWorkflow
from gatehouse.services.escalation import (
    MALICIOUS_INPUT_BLOCK_REASON,
    RATE_LIMIT_BLOCK_REASON,
    ViolationEscalator,
)
from gatehouse.services.geo import GeoProvider, GeoResolver, build_providers
from gatehouse.services.ip_blocks import IPBlockRegistry
from gatehouse.services.login_guard import LoginGuard, SleepFn
from gatehouse.services.notifications import CATEGORY_WARNING, AuditLog
from gatehouse.services.rate_limiter import RateLimiter, default_rules
from gatehouse.services.sessions import SessionStore
from gatehouse.services.store import KeyValueStore, build_store
from gatehouse.services.sweeper import SecuritySweeper
from gatehouse.services.threat_scanner import ThreatScanner

logger = logging.getLogger(__name__)


@dataclass
class SecurityServices:
    """Every collaborator the request pipeline and endpoints depend on."""

    settings: Settings
    clock: Clock
    engine: Engine
    repository: StateRepository
    audit: AuditLog
    store: KeyValueStore
    registry: IPBlockRegistry
    rate_limiter: RateLimiter
    rate_escalator: ViolationEscalator
    threat_escalator: ViolationEscalator
    scanner: ThreatScanner
    sessions: SessionStore
    login_guard: LoginGuard
    accounts: AdminAccounts
    geo: GeoResolver
    appeals: AppealWorkflow
    sweeper: SecuritySweeper
    http_client: httpx.AsyncClient | None = None
    started_at: float = 0.0

    async def start(self, *, run_sweeper: bool = True) -> None:
        """Create tables, rebuild persisted state and start background work."""
        self.started_at = self.clock.now()
        await asyncio.to_thread(create_tables, self.engine)
        # Touch the shared store once so an unreachable backend degrades at startup.
        await self.store.get_json("startup:probe")
        await self.registry.load()
        await self.appeals.load()
        if await self.accounts.seed(
            self.settings.admin_username, self.settings.admin_password_hash
        ):
            logger.info("Provisioned operator account %r", self.settings.admin_username)
        if run_sweeper:
            await self.sweeper.start()

    async def close(self) -> None:
        await self.sweeper.stop()
        await self.store.close()
        if self.http_client is not None:
            await self.http_client.aclose()


def build_services(
    config: Settings,
    *,
    clock: Clock | None = None,
    engine: Engine | None = None,
    store: KeyValueStore | None = None,
    geo_providers: Sequence[GeoProvider] | None = None,
    sleep: SleepFn = asyncio.sleep,
) -> SecurityServices:
    """Assemble the services from configuration; arguments override collaborators."""
    clock = clock or system_clock
    engine = engine or default_engine
    repository = StateRepository(sessionmaker(bind=engine, autoflush=False))
    audit = AuditLog(repository, clock, limit=config.notification_limit)

    async def _store_degraded(exc: Exception) -> None:
        await audit.record(
            CATEGORY_WARNING,
            "Shared Store Unavailable",
            f"Redis unavailable; security state is now kept in-process. {exc}",
        )

    async def _persist_failed(title: str, exc: Exception) -> None:
        await audit.report_error(title, exc)

    store = store or build_store(config, clock, on_degraded=_store_degraded)
    registry = IPBlockRegistry(clock, repository, on_persist_error=_persist_failed)

    http_client: httpx.AsyncClient | None = None
    if geo_providers is None:
        http_client = httpx.AsyncClient(
            timeout=httpx.Timeout(config.geo_provider_timeout_seconds),
            headers={"User-Agent": f"{config.app_name}/{config.app_version}"},
        )
        geo_providers = build_providers(config.geo_providers, http_client)
    geo = GeoResolver(
        geo_providers,
        clock,
        ttl_seconds=config.geo_cache_ttl_seconds,
        max_entries=config.geo_cache_max_entries,
        timeout_seconds=config.geo_provider_timeout_seconds,
    )

    escalation_options = {
        "window_seconds": config.violation_window_seconds,
        "block_duration_seconds": config.temp_block_duration_seconds,
    }
    return SecurityServices(
        settings=config,
        clock=clock,
        engine=engine,
        repository=repository,
        audit=audit,
        store=store,
        registry=registry,
        rate_limiter=RateLimiter(store, default_rules(config), config.rate_limit_window_seconds),
        rate_escalator=ViolationEscalator(
            "rate_limit",
            store,
            registry,
            clock,
            threshold=config.rate_limit_block_threshold,
            reason=RATE_LIMIT_BLOCK_REASON,
            **escalation_options,
        ),
        threat_escalator=ViolationEscalator(
            "malicious_input",
            store,
            registry,
            clock,
            threshold=config.malicious_input_block_threshold,
            reason=MALICIOUS_INPUT_BLOCK_REASON,
            **escalation_options,
        ),
        scanner=ThreatScanner(config.threat_exempt_prefixes, config.threat_sample_length),
        sessions=SessionStore(store, clock, config.session_ttl_seconds),
        login_guard=LoginGuard(
            store,
            clock,
            window_seconds=config.login_lock_window_seconds,
            lock_duration_seconds=config.login_lock_duration_seconds,
            threshold=config.login_lock_threshold,
            backoff_step_seconds=config.login_backoff_step_seconds,
            backoff_max_seconds=config.login_backoff_max_seconds,
            sleep=sleep,
        ),
        accounts=AdminAccounts(repository, clock),
        geo=geo,
        appeals=AppealWorkflow(
            store,
            clock,
            registry,
            geo,
            audit,
            repository,
            min_interval_seconds=config.appeal_min_interval_seconds,
            min_message_length=config.appeal_min_message_length,
            max_message_length=config.appeal_max_message_length,
            history_limit=config.appeal_history_limit,
            block_duration_seconds=config.temp_block_duration_seconds,
        ),
        sweeper=SecuritySweeper(store, registry, geo, config.sweep_interval_seconds),
        http_client=http_client,
    )
