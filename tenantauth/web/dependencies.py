"""FastAPI dependency injection and shared service wiring."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import Request

from tenantauth.auth.crypto import SecretCipher
from tenantauth.auth.domains import DomainService
from tenantauth.auth.identity import IdentityLinker
from tenantauth.auth.oauth import OAuthService
from tenantauth.auth.otp import OtpService
from tenantauth.auth.rate_limit import RateLimiter
from tenantauth.auth.session import SessionAuth
from tenantauth.auth.session_transfer import SessionTransferBroker
from tenantauth.auth.state_signer import StateSigner
from tenantauth.auth.tenant_resolver import TenantResolver
from tenantauth.notify.notifier import LogNotifier, SmtpConfig, SmtpNotifier

if TYPE_CHECKING:
    from starlette.responses import Response

    from tenantauth.auth.oauth import ProviderFactory
    from tenantauth.config.settings import Settings
    from tenantauth.notify.notifier import Notifier
    from tenantauth.storage.directory import Directory

logger = structlog.get_logger(__name__)

SESSION_COOKIE = "session"
STATE_COOKIE = "oauth_state"


@dataclass
class Services:
    settings: Settings
    directory: Directory
    notifier: Notifier
    rate_limiter: RateLimiter
    cipher: SecretCipher
    resolver: TenantResolver
    otp: OtpService
    linker: IdentityLinker
    broker: SessionTransferBroker
    oauth: OAuthService
    sessions: SessionAuth
    domains: DomainService


def _create_directory(settings: Settings) -> Directory | Any:
    """Create the appropriate Directory based on settings."""
    if settings.use_database:
        from tenantauth.storage.database import get_engine
        from tenantauth.storage.repositories.db_directory import DatabaseDirectory

        return DatabaseDirectory(get_engine())
    from tenantauth.storage.repositories.memory_directory import InMemoryDirectory

    return InMemoryDirectory()


def _create_notifier(settings: Settings) -> Notifier:
    if settings.smtp_host:
        return SmtpNotifier(
            SmtpConfig(
                host=settings.smtp_host,
                port=settings.smtp_port,
                username=settings.smtp_username,
                password=settings.smtp_password,
                from_email=settings.email_from,
                use_tls=settings.smtp_use_tls,
                timeout_seconds=settings.http_timeout_seconds,
            )
        )
    if not settings.debug:
        # Nothing reads the outbox outside development
        logger.error("smtp_not_configured", detail="sign-in codes are not emailed")
        return LogNotifier(max_messages=0)
    logger.warning("smtp_not_configured", detail="sign-in codes are not emailed")
    return LogNotifier()


def build_services(
    settings: Settings,
    directory: Directory | None = None,
    notifier: Notifier | None = None,
    provider_factory: ProviderFactory | None = None,
) -> Services:
    """Wire every service for one application instance."""
    directory = directory or _create_directory(settings)
    notifier = notifier or _create_notifier(settings)
    rate_limiter = RateLimiter()
    cipher = SecretCipher.from_settings(settings.secret_key, settings.encryption_key)
    signer = StateSigner(settings.secret_key)
    resolver = TenantResolver(directory)
    linker = IdentityLinker(directory)
    broker = SessionTransferBroker(directory, ttl_seconds=settings.transfer_ttl_seconds)
    return Services(
        settings=settings,
        directory=directory,
        notifier=notifier,
        rate_limiter=rate_limiter,
        cipher=cipher,
        resolver=resolver,
        otp=OtpService(
            directory,
            notifier,
            rate_limiter,
            code_ttl_seconds=settings.otp_ttl_seconds,
            signup_extension_seconds=settings.otp_signup_extension_seconds,
            notify_timeout_seconds=settings.http_timeout_seconds,
        ),
        linker=linker,
        broker=broker,
        oauth=OAuthService(
            directory, resolver, signer, cipher, linker, broker, settings, provider_factory
        ),
        sessions=SessionAuth(settings.secret_key, max_age=settings.session_max_age),
        domains=DomainService(
            directory,
            resolver,
            cipher,
            settings.app_domain,
            settings.public_scheme,
            http_timeout=settings.http_timeout_seconds,
        ),
    )


def get_services(request: Request) -> Services:
    return request.app.state.services


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


def request_host(request: Request) -> str:
    return request.headers.get("host", "")


def request_id(request: Request) -> str:
    return request.headers.get("x-request-id", "")


def set_session_cookie(response: Response, token: str, settings: Settings) -> None:
    response.set_cookie(
        key=SESSION_COOKIE,
        value=token,
        httponly=True,
        secure=settings.secure_cookies,
        samesite="lax",
        path="/",
        max_age=settings.session_max_age,
    )
