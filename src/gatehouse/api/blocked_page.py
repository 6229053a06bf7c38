"""HTML interstitial served to browsers while their address is banned."""

from __future__ import annotations

import math
from pathlib import Path

from fastapi import Request, status
from fastapi.templating import Jinja2Templates
from starlette.responses import Response

from gatehouse.db.time import to_iso

DEFAULT_BLOCK_MESSAGE = "Suspicious traffic was detected from your network."
BLOCKED_TEMPLATE = "blocked.html"

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent.parent / "templates"))


def blocked_page_response(
    request: Request,
    reason: str | None,
    blocked_until: float,
    remaining_seconds: float,
    *,
    appeal_url: str = "/api/security/appeal",
    max_message_length: int = 450,
    max_contact_length: int = 120,
) -> Response:
    """Render the interstitial as a 403 response, reusing the request's CSP nonce."""
    context = {
        "reason": reason or DEFAULT_BLOCK_MESSAGE,
        "remaining": max(1, math.ceil(remaining_seconds)),
        "blocked_until": to_iso(blocked_until) or "",
        "max_message": int(max_message_length),
        "max_contact": int(max_contact_length),
        "nonce": getattr(request.state, "csp_nonce", None),
        "appeal_url": appeal_url,
    }
    return templates.TemplateResponse(
        request, BLOCKED_TEMPLATE, context, status_code=status.HTTP_403_FORBIDDEN
    )
