"""Request pipeline: host canonicalization, security headers and abuse gates.

Every request passes the gates in a fixed order. The ban check runs first and
short-circuits everything else, except that a banned client may still reach
the appeal and block-status endpoints. The rate limiter runs next, then the
payload scanner. Each soft rejection is counted by the matching escalator,
which converts repeated rejections into a temporary ban.
"""

from __future__ import annotations

import asyncio
import json
import logging
import math
from typing import Any

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse, RedirectResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.types import ASGIApp

from gatehouse.api.blocked_page import blocked_page_response
from gatehouse.core.security import generate_csp_nonce, resolve_client_address
from gatehouse.services.appeals import CONTACT_MAX_LENGTH
from gatehouse.services.container import SecurityServices
from gatehouse.services.ip_blocks import DEFAULT_REASON, BlockStatus
from gatehouse.services.notifications import CATEGORY_ATTACK_BLOCKED
from gatehouse.services.store import StoreError

logger = logging.getLogger(__name__)

BLOCKED_API_MESSAGE = "Access denied. IP temporarily blocked due to abusive traffic."
RATE_LIMITED_MESSAGE = "Too many requests. Please slow down."
RATE_LIMIT_BANNED_MESSAGE = "Too many requests. IP temporarily blocked due to repeated abuse."
MALICIOUS_INPUT_MESSAGE = "Invalid input detected. Request blocked by security policy."
MALICIOUS_INPUT_BANNED_MESSAGE = "Request blocked due to repeated malicious input attempts."
PAYLOAD_TOO_LARGE_MESSAGE = "Request body too large."

CONTENT_SECURITY_POLICY = (
    "default-src 'self'; img-src 'self' data: blob: https:; connect-src 'self'; "
    "style-src 'self' 'unsafe-inline'; font-src 'self' data:; "
    "script-src 'self' 'nonce-{nonce}'; frame-ancestors 'none';"
)
STATIC_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Permissions-Policy": "camera=(), microphone=(), geolocation=(self)",
    "Cross-Origin-Resource-Policy": "same-origin",
}
HSTS_VALUE = "max-age=31536000; includeSubDomains"


class CanonicalHostMiddleware(BaseHTTPMiddleware):
    """Redirect ``www.<host>`` to the bare canonical host over https."""

    def __init__(self, app: ASGIApp, canonical_host: str | None) -> None:
        super().__init__(app)
        self.canonical_host = canonical_host

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        if self.canonical_host:
            host = request.headers.get("host", "").split(":", 1)[0].strip().lower()
            if host == f"www.{self.canonical_host}":
                target = f"https://{self.canonical_host}{request.url.path}"
                if request.url.query:
                    target = f"{target}?{request.url.query}"
                return RedirectResponse(target, status_code=status.HTTP_301_MOVED_PERMANENTLY)
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Attach hardening headers and a per-request CSP nonce."""

    def __init__(self, app: ASGIApp, api_prefix: str = "/api") -> None:
        super().__init__(app)
        self.api_prefix = api_prefix

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        nonce = generate_csp_nonce()
        request.state.csp_nonce = nonce
        response = await call_next(request)

        for name, value in STATIC_SECURITY_HEADERS.items():
            response.headers.setdefault(name, value)
        response.headers["Content-Security-Policy"] = CONTENT_SECURITY_POLICY.format(nonce=nonce)
        forwarded_proto = request.headers.get("x-forwarded-proto", "").split(",", 1)[0].strip()
        if request.url.scheme == "https" or forwarded_proto.lower() == "https":
            response.headers["Strict-Transport-Security"] = HSTS_VALUE
        if request.url.path.startswith(self.api_prefix):
            response.headers["Cache-Control"] = "no-store"
        return response


def _query_payload(request: Request) -> dict[str, Any]:
    grouped: dict[str, list[str]] = {}
    for key, value in request.query_params.multi_items():
        grouped.setdefault(key, []).append(value)
    return {key: values[0] if len(values) == 1 else values for key, values in grouped.items()}


def _is_json(request: Request) -> bool:
    content_type = request.headers.get("content-type", "").split(";", 1)[0].strip().lower()
    return content_type == "application/json" or content_type.endswith("+json")


class SecurityGateMiddleware(BaseHTTPMiddleware):
    """Ban check, rate limit and payload scan applied before routing."""

    def __init__(self, app: ASGIApp, services: SecurityServices) -> None:
        super().__init__(app)
        self.services = services
        prefix = services.settings.api_prefix
        self.api_prefix = prefix
        self.appeal_path = f"{prefix}/security/appeal"
        self.ban_exempt_paths = frozenset({self.appeal_path, f"{prefix}/security/block-status"})

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        peer = request.client.host if request.client else None
        client = resolve_client_address(request.headers, peer)
        request.state.client_address = client
        path = request.url.path

        ban = await self.services.registry.status(client)
        if ban.blocked:
            if path not in self.ban_exempt_paths:
                return await self._reject_banned(request, client, ban)
            return await call_next(request)

        rejection = await self._rate_gate(client, path)
        if rejection is not None:
            return rejection

        rejection = await self._threat_gate(request, client, path)
        if rejection is not None:
            return rejection

        return await call_next(request)

    async def _notify(self, title: str, message: str, client: str) -> None:
        timeout = self.services.settings.attack_geo_timeout_seconds
        try:
            geo = await asyncio.wait_for(self.services.geo.resolve(client), timeout=timeout)
        except TimeoutError:
            logger.warning("Geo lookup for %s exceeded %ss, notifying without it", client, timeout)
        else:
            if not geo.is_local:
                message = f"{message} | {geo.summary()}"
        await self.services.audit.record(
            CATEGORY_ATTACK_BLOCKED, title, message, client_address=client
        )

    async def _reject_banned(self, request: Request, client: str, ban: BlockStatus) -> Response:
        reason = ban.reason or DEFAULT_REASON
        payload = ban.as_dict()
        remaining = max(1, payload["remainingSeconds"])
        minutes = max(1, math.ceil(remaining / 60))
        await self._notify(
            "Blocked IP Attempt",
            f'Blocked request from temporarily banned IP. reason="{reason}", '
            f"remaining={minutes} minute(s).",
            client,
        )
        logger.debug("Rejected banned client %s on %s", client, request.url.path)

        if request.url.path.startswith(f"{self.api_prefix}/"):
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={
                    "blocked": True,
                    "error": BLOCKED_API_MESSAGE,
                    "reason": reason,
                    "blockedUntil": payload["blockedUntil"],
                    "remainingSeconds": remaining,
                },
            )
        return blocked_page_response(
            request,
            reason,
            ban.blocked_until or self.services.clock.now(),
            ban.remaining_seconds,
            appeal_url=self.appeal_path,
            max_message_length=self.services.settings.appeal_max_message_length,
            max_contact_length=CONTACT_MAX_LENGTH,
        )

    async def _rate_gate(self, client: str, path: str) -> Response | None:
        try:
            decision = await self.services.rate_limiter.check(client, path)
        except StoreError as exc:
            logger.warning("Rate limit check failed for %s, allowing request: %s", client, exc)
            return None
        if decision.allowed:
            return None

        escalation = await self.services.rate_escalator.escalate(client)
        retry_after = {"Retry-After": str(int(self.services.rate_limiter.window_seconds))}
        if escalation.blocked:
            await self._notify(
                "IP Auto-Blocked (DoS Protection)",
                f"IP blocked after {escalation.violations} rate-limit violations. "
                f"rule={decision.rule}, requests={decision.count}.",
                client,
            )
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={"error": RATE_LIMIT_BANNED_MESSAGE},
                headers=retry_after,
            )

        await self._notify(
            "Rate Limit Exceeded",
            f"rule={decision.rule}, requests={decision.count}, "
            f"violations={escalation.violations}/{escalation.threshold}",
            client,
        )
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content={"error": RATE_LIMITED_MESSAGE},
            headers=retry_after,
        )

    async def _threat_gate(self, request: Request, client: str, path: str) -> Response | None:
        declared = request.headers.get("content-length", "")
        limit = self.services.settings.max_body_bytes
        if declared.isdigit() and int(declared) > limit:
            return JSONResponse(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                content={"error": PAYLOAD_TOO_LARGE_MESSAGE},
            )

        scanner = self.services.scanner
        if scanner.is_exempt(path):
            return None

        body: Any = None
        if _is_json(request):
            raw = await request.body()
            if len(raw) > limit:
                return JSONResponse(
                    status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                    content={"error": PAYLOAD_TOO_LARGE_MESSAGE},
                )
            if raw:
                try:
                    body = json.loads(raw)
                except ValueError:
                    # Left for the endpoint to reject as invalid input.
                    body = None

        detection = scanner.scan_request(body, _query_payload(request))
        if detection is None:
            return None

        escalation = await self.services.threat_escalator.escalate(client)
        await self._notify(
            "Malicious Input Blocked",
            f"type={detection.category}, path={detection.path}, "
            f'attempts={escalation.violations}, sample="{detection.sample}"',
            client,
        )
        if escalation.blocked:
            await self._notify(
                "IP Auto-Blocked (Injection Defense)",
                f"IP blocked after {escalation.violations} malicious input attempts. "
                f"type={detection.category}.",
                client,
            )
            return JSONResponse(
                status_code=status.HTTP_403_FORBIDDEN,
                content={"error": MALICIOUS_INPUT_BANNED_MESSAGE},
            )
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": MALICIOUS_INPUT_MESSAGE},
        )
