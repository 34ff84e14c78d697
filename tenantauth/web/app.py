"""FastAPI application factory."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tenantauth.config.logging import setup_logging
from tenantauth.config.settings import get_settings
from tenantauth.exceptions import RateLimitedError, TenantAuthError
from tenantauth.web.dependencies import build_services
from tenantauth.web.middleware import (
    RateLimitMiddleware,
    RequestIDMiddleware,
    SecurityHeadersMiddleware,
)
from tenantauth.web.routes.domains import router as domains_router
from tenantauth.web.routes.oauth import router as oauth_router
from tenantauth.web.routes.otp import router as otp_router
from tenantauth.web.routes.session import router as session_router

if TYPE_CHECKING:
    from tenantauth.config.settings import Settings
    from tenantauth.web.dependencies import Services

logger = structlog.get_logger(__name__)


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = settings or get_settings()
    setup_logging(log_level=settings.log_level, json_output=not settings.debug)

    app = FastAPI(
        title="TenantAuth",
        description="Multi-tenant cross-origin authentication service",
        version="0.1.0",
    )
    app.state.services = services or build_services(settings)

    @app.exception_handler(TenantAuthError)
    async def tenantauth_error_handler(request: Request, exc: TenantAuthError) -> JSONResponse:
        headers = None
        if isinstance(exc, RateLimitedError):
            headers = {"Retry-After": str(exc.retry_after)}
        if exc.http_status >= 500:
            logger.error("request_failed", path=request.url.path, error=str(exc))
        return JSONResponse(
            status_code=exc.http_status,
            content={"detail": str(exc)},
            headers=headers,
        )

    # Middleware (last added runs first)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["Content-Type", "X-Request-ID"],
    )
    app.add_middleware(SecurityHeadersMiddleware, hsts=settings.secure_cookies)
    app.add_middleware(RateLimitMiddleware, max_requests=100, window_seconds=60)
    app.add_middleware(RequestIDMiddleware)

    app.include_router(oauth_router)
    app.include_router(otp_router)
    app.include_router(session_router)
    app.include_router(domains_router)

    @app.get("/api/health")
    async def health_check() -> dict[str, object]:
        from tenantauth.web.health import check_health

        return await check_health(settings)

    logger.info("app_created", app_domain=settings.app_domain)
    return app
