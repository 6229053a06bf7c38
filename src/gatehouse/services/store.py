"""Key-value store with TTL semantics shared by all security services.

Two interchangeable backends implement :class:`KeyValueStore`: a Redis backend
for state shared between workers and an in-process backend. Callers depend
only on the interface. :class:`FallbackStore` wraps the Redis backend and
switches permanently to the in-process one on the first connection failure,
so request handling continues with degraded (per-process) state.
"""

from __future__ import annotations

import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections import deque
from collections.abc import Awaitable, Callable
from threading import Lock
from typing import Any

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from gatehouse.core.clock import Clock
from gatehouse.core.settings import Settings

# Configure logger for this module
logger = logging.getLogger(__name__)

STATUS_CONNECTED = "connected"
STATUS_FALLBACK = "fallback-memory"
STATUS_DISABLED = "disabled"

# Sliding-window sets outlive their window slightly so a late prune still sees them.
_HIT_EXPIRY_GRACE_SECONDS = 5.0


class StoreError(RuntimeError):
    """Raised when the backing store cannot serve a request."""


class KeyValueStore(ABC):
    """Async key-value store holding JSON documents and sliding-window hit sets."""

    backend: str = "abstract"

    @property
    @abstractmethod
    def status(self) -> str:
        """Return one of ``connected``, ``fallback-memory`` or ``disabled``."""

    @abstractmethod
    async def get_json(self, key: str) -> Any | None:
        """Return the decoded document at ``key`` or ``None`` if absent or expired."""

    @abstractmethod
    async def set_json(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        """Store a JSON-serialisable document, optionally expiring after ``ttl_seconds``."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""

    @abstractmethod
    async def record_hit(self, key: str, window_seconds: float) -> int:
        """Prune hits older than the window, append one at now, return the count."""

    @abstractmethod
    async def sweep(self) -> int:
        """Evict expired documents and empty hit sets; return how many were evicted."""

    async def close(self) -> None:
        return None


class MemoryStore(KeyValueStore):
    """In-process backend; documents are kept JSON-encoded to match Redis semantics."""

    backend = "memory"

    def __init__(self, clock: Clock) -> None:
        self._clock = clock
        self._lock = Lock()
        self._values: dict[str, tuple[str, float | None]] = {}
        self._hits: dict[str, tuple[deque[float], float]] = {}

    @property
    def status(self) -> str:
        return STATUS_DISABLED

    async def get_json(self, key: str) -> Any | None:
        now = self._clock.now()
        with self._lock:
            entry = self._values.get(key)
            if entry is None:
                return None
            raw, expires_at = entry
            if expires_at is not None and expires_at <= now:
                self._values.pop(key, None)
                return None
        return json.loads(raw)

    async def set_json(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        raw = json.dumps(value)
        expires_at = self._clock.now() + ttl_seconds if ttl_seconds else None
        with self._lock:
            self._values[key] = (raw, expires_at)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._values.pop(key, None)
            self._hits.pop(key, None)

    async def record_hit(self, key: str, window_seconds: float) -> int:
        now = self._clock.now()
        cutoff = now - window_seconds
        with self._lock:
            hits, _ = self._hits.get(key, (deque(), window_seconds))
            while hits and hits[0] <= cutoff:
                hits.popleft()
            hits.append(now)
            self._hits[key] = (hits, window_seconds)
            return len(hits)

    async def sweep(self) -> int:
        now = self._clock.now()
        evicted = 0
        with self._lock:
            for key, (_, expires_at) in list(self._values.items()):
                if expires_at is not None and expires_at <= now:
                    del self._values[key]
                    evicted += 1
            for key, (hits, window) in list(self._hits.items()):
                cutoff = now - window
                while hits and hits[0] <= cutoff:
                    hits.popleft()
                if not hits:
                    del self._hits[key]
                    evicted += 1
        return evicted

    def __len__(self) -> int:
        with self._lock:
            return len(self._values) + len(self._hits)


class RedisStore(KeyValueStore):
    """Redis backend; hit sets are sorted sets scored by timestamp."""

    backend = "redis"

    def __init__(
        self,
        clock: Clock,
        *,
        url: str | None = None,
        client: aioredis.Redis | None = None,
        prefix: str = "gatehouse:",
    ) -> None:
        if client is None and url is None:
            raise ValueError("RedisStore requires a url or a client")
        self._clock = clock
        self._prefix = prefix
        self._redis = client or aioredis.from_url(url, decode_responses=True)

    @property
    def status(self) -> str:
        return STATUS_CONNECTED

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def ping(self) -> None:
        try:
            await self._redis.ping()
        except (RedisError, OSError) as exc:
            raise StoreError(f"Redis ping failed: {exc}") from exc

    async def get_json(self, key: str) -> Any | None:
        try:
            raw = await self._redis.get(self._key(key))
        except (RedisError, OSError) as exc:
            raise StoreError(f"Redis GET failed: {exc}") from exc
        return json.loads(raw) if raw is not None else None

    async def set_json(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        px = int(ttl_seconds * 1000) if ttl_seconds else None
        try:
            await self._redis.set(self._key(key), json.dumps(value), px=px)
        except (RedisError, OSError) as exc:
            raise StoreError(f"Redis SET failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._redis.delete(self._key(key))
        except (RedisError, OSError) as exc:
            raise StoreError(f"Redis DEL failed: {exc}") from exc

    async def record_hit(self, key: str, window_seconds: float) -> int:
        now = self._clock.now()
        redis_key = self._key(key)
        member = f"{now:.6f}:{uuid.uuid4().hex}"
        try:
            async with self._redis.pipeline(transaction=True) as pipe:
                pipe.zremrangebyscore(redis_key, "-inf", now - window_seconds)
                pipe.zadd(redis_key, {member: now})
                pipe.zcard(redis_key)
                pipe.pexpire(redis_key, int((window_seconds + _HIT_EXPIRY_GRACE_SECONDS) * 1000))
                results = await pipe.execute()
        except (RedisError, OSError) as exc:
            raise StoreError(f"Redis pipeline failed: {exc}") from exc
        return int(results[2])

    async def sweep(self) -> int:
        # Redis expires keys natively.
        return 0

    async def close(self) -> None:
        try:
            await self._redis.aclose()
        except (RedisError, OSError) as exc:  # pragma: no cover - shutdown path
            logger.warning("Failed to close Redis connection: %s", exc)


DegradedCallback = Callable[[Exception], Awaitable[None]]


class FallbackStore(KeyValueStore):
    """Route calls to ``primary`` until it fails once, then to ``fallback`` for good."""

    def __init__(
        self,
        primary: KeyValueStore,
        fallback: KeyValueStore,
        on_degraded: DegradedCallback | None = None,
    ) -> None:
        self._primary = primary
        self._fallback = fallback
        self._on_degraded = on_degraded
        self._degraded = False

    @property
    def backend(self) -> str:  # type: ignore[override]
        return self._fallback.backend if self._degraded else self._primary.backend

    @property
    def status(self) -> str:
        return STATUS_FALLBACK if self._degraded else self._primary.status

    @property
    def degraded(self) -> bool:
        return self._degraded

    async def _degrade(self, exc: Exception) -> None:
        if self._degraded:
            return
        self._degraded = True
        logger.warning("Shared store unavailable, switching to in-process state: %s", exc)
        if self._on_degraded is not None:
            await self._on_degraded(exc)

    async def _call(self, name: str, *args: Any) -> Any:
        if not self._degraded:
            try:
                return await getattr(self._primary, name)(*args)
            except StoreError as exc:
                await self._degrade(exc)
        return await getattr(self._fallback, name)(*args)

    async def get_json(self, key: str) -> Any | None:
        return await self._call("get_json", key)

    async def set_json(self, key: str, value: Any, ttl_seconds: float | None = None) -> None:
        await self._call("set_json", key, value, ttl_seconds)

    async def delete(self, key: str) -> None:
        await self._call("delete", key)

    async def record_hit(self, key: str, window_seconds: float) -> int:
        return await self._call("record_hit", key, window_seconds)

    async def sweep(self) -> int:
        return await self._fallback.sweep()

    async def close(self) -> None:
        await self._primary.close()
        await self._fallback.close()


def build_store(
    config: Settings,
    clock: Clock,
    on_degraded: DegradedCallback | None = None,
) -> KeyValueStore:
    """Return a Redis-backed store with in-process fallback, or in-process only."""
    memory = MemoryStore(clock)
    if not config.redis_url:
        logger.info("REDIS_URL not set; security state is kept in-process")
        return memory
    return FallbackStore(RedisStore(clock, url=config.redis_url), memory, on_degraded)
