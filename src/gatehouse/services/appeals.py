"""Unban appeals filed by blocked clients and decided by an operator.

An appeal moves from ``pending`` to ``resolved`` exactly once. Submission is
only open to clients that are blocked right now, is throttled per client by a
minimum interval tracked separately from the rate-limit rules, and requires a
short justification. The operator's decision either lifts the ban or keeps
it, re-applying it when it lapsed in the meantime, and marks the audit entry
raised at submission as resolved.
"""

from __future__ import annotations

import asyncio
import logging
import math
import uuid
from typing import Any

from sqlalchemy.exc import SQLAlchemyError

from gatehouse.core.clock import Clock
from gatehouse.db.repository import StateRepository
from gatehouse.db.time import to_iso
from gatehouse.models import Appeal
from gatehouse.models.appeal import APPEAL_STATUS_PENDING, APPEAL_STATUS_RESOLVED
from gatehouse.services.geo import GeoResolver
from gatehouse.services.ip_blocks import DEFAULT_REASON, SOURCE_ADMIN, IPBlockRegistry
from gatehouse.services.notifications import (
    CATEGORY_APPEAL,
    CATEGORY_SECURITY,
    CATEGORY_WARNING,
    MAX_MESSAGE_LENGTH,
    AuditLog,
    truncate,
)
from gatehouse.services.store import KeyValueStore

logger = logging.getLogger(__name__)

DECISION_UNBLOCK = "unblock"
DECISION_KEEP = "keep"
DECISIONS = (DECISION_UNBLOCK, DECISION_KEEP)

APPEAL_DENIED_REASON = "Appeal denied by admin"
CONTACT_MAX_LENGTH = 120
ADMIN_NOTE_MAX_LENGTH = 220


class AppealError(ValueError):
    """Base class for appeal submissions and decisions that cannot proceed."""


class AppealNotBlockedError(AppealError):
    def __init__(self) -> None:
        super().__init__("IP is not currently blocked.")


class AppealTooSoonError(AppealError):
    def __init__(self, wait_seconds: int) -> None:
        super().__init__(f"Please wait {wait_seconds}s before submitting another appeal.")
        self.wait_seconds = wait_seconds


class AppealMessageError(AppealError):
    def __init__(self, min_length: int) -> None:
        super().__init__(f"Please provide more detail (minimum {min_length} characters).")


class InvalidDecisionError(AppealError):
    def __init__(self) -> None:
        super().__init__("Decision must be `unblock` or `keep`.")


class AppealNotFoundError(AppealError):
    def __init__(self, appeal_id: str) -> None:
        super().__init__("Appeal not found.")
        self.appeal_id = appeal_id


class AppealAlreadyResolvedError(AppealError):
    def __init__(self, appeal_id: str) -> None:
        super().__init__("Appeal has already been resolved.")
        self.appeal_id = appeal_id


def serialize_appeal(appeal: Appeal) -> dict[str, Any]:
    return {
        "id": appeal.id,
        "ip": appeal.client_address,
        "reason": appeal.reason,
        "blockedUntil": to_iso(appeal.blocked_until),
        "message": appeal.message,
        "contact": appeal.contact or "",
        "geo": appeal.geo,
        "userAgent": appeal.user_agent,
        "status": appeal.status,
        "decision": appeal.decision,
        "adminNote": appeal.admin_note,
        "createdAt": to_iso(appeal.created_at),
        "resolvedAt": to_iso(appeal.resolved_at),
    }


class AppealWorkflow:
    """Accept, store and resolve unban appeals."""

    def __init__(
        self,
        store: KeyValueStore,
        clock: Clock,
        registry: IPBlockRegistry,
        geo: GeoResolver,
        audit: AuditLog,
        repository: StateRepository,
        *,
        min_interval_seconds: float = 120,
        min_message_length: int = 10,
        max_message_length: int = MAX_MESSAGE_LENGTH,
        history_limit: int = 500,
        block_duration_seconds: float = 20 * 60,
    ) -> None:
        self._store = store
        self._clock = clock
        self._registry = registry
        self._geo = geo
        self._audit = audit
        self._repository = repository
        self._min_interval = min_interval_seconds
        self._min_length = min_message_length
        self._max_length = max_message_length
        self._history_limit = history_limit
        self._block_duration = block_duration_seconds
        # Newest first.
        self._appeals: list[Appeal] = []

    async def load(self) -> int:
        self._appeals = await asyncio.to_thread(self._repository.load_appeals, self._history_limit)
        logger.info("Loaded %d appeals", len(self._appeals))
        return len(self._appeals)

    def history(self, status: str | None = None) -> list[Appeal]:
        if status is None:
            return list(self._appeals)
        return [appeal for appeal in self._appeals if appeal.status == status]

    def get(self, appeal_id: str) -> Appeal | None:
        return next((appeal for appeal in self._appeals if appeal.id == appeal_id), None)

    @staticmethod
    def _throttle_key(client_id: str) -> str:
        return f"appeal:last:{client_id}"

    async def submit(
        self,
        client_id: str,
        message: str | None,
        contact: str | None = None,
        user_agent: str | None = None,
    ) -> Appeal:
        """File an appeal for a blocked client.

        Checks run in a fixed order: the client must be blocked, then the
        per-client interval must have elapsed, then the message must be long
        enough. The interval is only consumed by an accepted submission.
        """
        status = await self._registry.status(client_id)
        if not status.blocked:
            raise AppealNotBlockedError()

        now = self._clock.now()
        last_submitted = await self._store.get_json(self._throttle_key(client_id))
        if last_submitted is not None and now - float(last_submitted) < self._min_interval:
            wait = math.ceil(self._min_interval - (now - float(last_submitted)))
            raise AppealTooSoonError(max(1, wait))

        text = truncate(message, self._max_length)
        if len(text) < self._min_length:
            raise AppealMessageError(self._min_length)

        await self._store.set_json(
            self._throttle_key(client_id), now, ttl_seconds=self._min_interval
        )

        geo = await self._geo.resolve(client_id)
        appeal = Appeal(
            id=str(uuid.uuid4()),
            client_address=client_id,
            reason=status.reason or DEFAULT_REASON,
            blocked_until=status.blocked_until,
            message=text,
            contact=truncate(contact, CONTACT_MAX_LENGTH) or None,
            user_agent=(user_agent or "Unknown")[:500],
            geo=None if geo.is_local else geo.as_dict(),
            status=APPEAL_STATUS_PENDING,
            decision=None,
            admin_note=None,
            created_at=now,
            resolved_at=None,
        )

        geo_summary = (
            "Geo unavailable"
            if geo.is_local
            else f"{geo.city}, {geo.country} | ISP: {geo.isp} | VPN: {'yes' if geo.is_vpn else 'no'}"
        )
        appeal.notification_id = await self._audit.record(
            CATEGORY_APPEAL,
            "Unban Appeal Received",
            f'Appeal submitted. reason="{appeal.reason}" | user="{text}"'
            f' | contact="{appeal.contact or "n/a"}" | {geo_summary}',
            client_address=client_id,
            metadata={
                "appealId": appeal.id,
                "status": APPEAL_STATUS_PENDING,
                "blockedUntil": to_iso(status.blocked_until),
            },
        )

        self._appeals.insert(0, appeal)
        await self._save(appeal)
        await self._trim()
        logger.info("Appeal %s filed by %s", appeal.id, client_id)
        return appeal

    async def decide(
        self, appeal_id: str, decision: str, admin_note: str | None = None
    ) -> Appeal:
        """Apply an operator decision to a pending appeal."""
        decision = (decision or "").strip().lower()
        if decision not in DECISIONS:
            raise InvalidDecisionError()
        appeal = self.get(appeal_id)
        if appeal is None:
            raise AppealNotFoundError(appeal_id)
        if appeal.status == APPEAL_STATUS_RESOLVED:
            raise AppealAlreadyResolvedError(appeal_id)

        # Claimed before the first await so a concurrent decision sees it resolved.
        appeal.status = APPEAL_STATUS_RESOLVED
        appeal.decision = decision
        appeal.admin_note = truncate(admin_note, ADMIN_NOTE_MAX_LENGTH) or None
        appeal.resolved_at = self._clock.now()

        address = appeal.client_address
        if decision == DECISION_UNBLOCK:
            await self._registry.unblock(address)
            await self._audit.record(
                CATEGORY_SECURITY,
                "IP Unblocked By Admin",
                f"Appeal {appeal_id} approved. IP {address} was unblocked.",
                client_address=address,
            )
        else:
            active = await self._registry.status(address)
            if not active.blocked:
                await self._registry.block(
                    address, self._block_duration, APPEAL_DENIED_REASON, source=SOURCE_ADMIN
                )
            await self._audit.record(
                CATEGORY_WARNING,
                "Appeal Denied",
                f"Appeal {appeal_id} denied. IP {address} remains blocked.",
                client_address=address,
            )

        await self._save(appeal)

        if appeal.notification_id:
            await self._audit.merge_metadata(
                appeal.notification_id,
                {"status": APPEAL_STATUS_RESOLVED, "decision": decision},
            )
        logger.info("Appeal %s resolved with decision %s", appeal_id, decision)
        return appeal

    async def _save(self, appeal: Appeal) -> None:
        try:
            await asyncio.to_thread(self._repository.save_appeal, appeal)
        except SQLAlchemyError as exc:
            logger.warning("Failed to persist appeal %s: %s", appeal.id, exc)
            await self._audit.report_error("Appeal Persist Error", exc, appeal.client_address)

    async def _trim(self) -> None:
        if len(self._appeals) <= self._history_limit:
            return
        dropped = self._appeals[self._history_limit:]
        del self._appeals[self._history_limit:]
        try:
            await asyncio.to_thread(
                self._repository.delete_appeals, [appeal.id for appeal in dropped]
            )
        except SQLAlchemyError as exc:
            logger.warning("Failed to trim appeal history: %s", exc)
