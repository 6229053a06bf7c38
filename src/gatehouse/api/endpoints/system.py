"""Liveness endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from gatehouse.api.dependencies import ServicesDep
from gatehouse.db.time import to_iso

router = APIRouter(tags=["system"])


@router.get("/health")
async def health_check(services: ServicesDep) -> dict[str, object]:
    """Report uptime and which key-value backend is serving security state."""
    now = services.clock.now()
    return {
        "status": "ok",
        "uptime": round(max(0.0, now - services.started_at), 3),
        "timestamp": to_iso(now),
        "storeBackend": services.store.backend,
        "storeStatus": services.store.status,
    }
