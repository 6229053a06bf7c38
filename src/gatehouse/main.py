# src/gatehouse/main.py
"""Main entry point for the Gatehouse application."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from gatehouse.api import (
    auth_router,
    notifications_router,
    security_router,
    settings_router,
    system_router,
    track_router,
)
from gatehouse.api.middleware import (
    CanonicalHostMiddleware,
    SecurityGateMiddleware,
    SecurityHeadersMiddleware,
)
from gatehouse.core.settings import settings
from gatehouse.services.container import SecurityServices, build_services

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


def _error_content(detail: Any) -> dict[str, Any]:
    content = dict(detail) if isinstance(detail, dict) else {"error": detail}
    content.setdefault("success", False)
    return content


def create_app(services: SecurityServices | None = None, *, run_sweeper: bool = True) -> FastAPI:
    """Build the application around ``services`` (built from settings when omitted)."""
    services = services or build_services(settings)
    config = services.settings

    app = FastAPI(
        title=f"{config.app_name} API",
        description="Abuse mitigation and operator sessions for a public web server",
        version=config.app_version,
    )
    app.state.services = services

    # Added innermost first: CORS and host canonicalization run before the gates.
    app.add_middleware(SecurityGateMiddleware, services=services)
    app.add_middleware(SecurityHeadersMiddleware, api_prefix=config.api_prefix)
    app.add_middleware(CanonicalHostMiddleware, canonical_host=config.canonical_host)
    if config.cors_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.cors_origins,
            allow_credentials=True,
            allow_methods=config.cors_allow_methods,
            allow_headers=config.cors_allow_headers,
        )

    for router in (
        auth_router,
        security_router,
        settings_router,
        notifications_router,
        track_router,
        system_router,
    ):
        app.include_router(router, prefix=config.api_prefix)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_content(exc.detail),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.debug("Rejected invalid request to %s: %s", request.url.path, exc.errors())
        return JSONResponse(status_code=400, content=_error_content("Invalid request"))

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        await services.audit.report_error(
            "Unhandled Server Error", exc, getattr(request.state, "client_address", None)
        )
        return JSONResponse(status_code=500, content=_error_content("Unexpected server error"))

    @app.on_event("startup")
    async def on_startup() -> None:
        loop = asyncio.get_running_loop()

        def handle_loop_exception(
            event_loop: asyncio.AbstractEventLoop, context: dict[str, Any]
        ) -> None:
            exc = context.get("exception")
            logger.error("Unhandled error in background task: %s", context.get("message"), exc_info=exc)
            if isinstance(exc, Exception):
                event_loop.create_task(services.audit.report_error("Background Task Error", exc))

        loop.set_exception_handler(handle_loop_exception)
        await services.start(run_sweeper=run_sweeper)
        logger.info(
            "%s %s started (store: %s/%s)",
            config.app_name,
            config.app_version,
            services.store.backend,
            services.store.status,
        )

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        await services.close()

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("gatehouse.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
