"""Visitor enrichment for page views reported by the public site."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

from gatehouse.api.dependencies import ClientAddressDep, ServicesDep
from gatehouse.db.time import to_iso
from gatehouse.schemas.track import TrackRequest

router = APIRouter(tags=["track"])


@router.post("/track")
async def track_visit(
    payload: TrackRequest,
    request: Request,
    services: ServicesDep,
    client: ClientAddressDep,
) -> dict[str, Any]:
    """Return the visit enriched with geolocation and the bot verdict.

    Storing and aggregating visits is left to the analytics layer.
    """
    user_agent = payload.user_agent or request.headers.get("user-agent")
    profile = await services.geo.enrich(client, user_agent)
    return {
        "success": True,
        "visit": {
            **profile.as_dict(),
            "userAgent": user_agent or "Unknown",
            "pageViewed": payload.page_viewed or "/",
            "reelId": payload.reel_id,
            "timestamp": to_iso(services.clock.now()),
        },
    }
