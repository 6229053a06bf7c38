"""Sliding-window request limits per client and rule.

Rules are evaluated in order and the first whose predicate matches the
request path applies; the last rule matches everything. Every rule shares the
same window length. Counting is delegated to the store's ``record_hit``
primitive, which prunes, appends and counts for one key.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from dataclasses import dataclass

from gatehouse.core.settings import Settings
from gatehouse.services.store import KeyValueStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitRule:
    """A named request ceiling applied to paths accepted by ``matches``."""

    name: str
    max_requests: int
    matches: Callable[[str], bool]


@dataclass(frozen=True)
class RateDecision:
    """Outcome of one limiter check."""

    allowed: bool
    rule: str
    count: int
    limit: int


def _prefixed(*prefixes: str) -> Callable[[str], bool]:
    return lambda path: any(path.startswith(prefix) for prefix in prefixes)


def default_rules(config: Settings) -> list[RateLimitRule]:
    """Return the rule table in priority order."""
    api = config.api_prefix.rstrip("/")
    limits = config.rate_limits
    return [
        RateLimitRule("login", limits["login"], lambda path: path == f"{api}/login"),
        RateLimitRule("appeal", limits["appeal"], _prefixed(f"{api}/security/appeal")),
        RateLimitRule("settings", limits["settings"], _prefixed(f"{api}/settings")),
        RateLimitRule(
            "admin_write",
            limits["admin_write"],
            _prefixed(f"{api}/content", f"{api}/upload", f"{api}/notifications"),
        ),
        RateLimitRule("tracking", limits["tracking"], _prefixed(f"{api}/track")),
        RateLimitRule("default", limits["default"], lambda path: True),
    ]


class RateLimiter:
    """Check requests against the first matching rule's sliding window."""

    def __init__(
        self,
        store: KeyValueStore,
        rules: Sequence[RateLimitRule],
        window_seconds: float,
    ) -> None:
        if not rules:
            raise ValueError("RateLimiter requires at least one rule")
        self._store = store
        self._rules = list(rules)
        self._window = window_seconds

    @property
    def window_seconds(self) -> float:
        return self._window

    @property
    def rules(self) -> list[RateLimitRule]:
        return list(self._rules)

    def match(self, path: str) -> RateLimitRule:
        for rule in self._rules:
            if rule.matches(path):
                return rule
        return self._rules[-1]

    async def check(self, client_id: str, path: str) -> RateDecision:
        """Record one request for ``client_id`` and decide whether it may proceed."""
        rule = self.match(path)
        count = await self._store.record_hit(f"rate:{rule.name}:{client_id}", self._window)
        allowed = count <= rule.max_requests
        if not allowed:
            logger.debug(
                "Rate limit %s exceeded by %s: %d/%d", rule.name, client_id, count, rule.max_requests
            )
        return RateDecision(allowed=allowed, rule=rule.name, count=count, limit=rule.max_requests)
