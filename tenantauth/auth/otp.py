"""Tenant-scoped one-time email codes.

Codes are six digits, live ten minutes and are keyed by
``tenant:{tenant_id}:email:{email}``, so a code issued for one workspace is
never accepted by another. The root-domain workspace finder uses the
unscoped ``finder:email:{email}`` identifier.
"""

from __future__ import annotations

import asyncio
import hmac
import re
import secrets
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from tenantauth.auth.identity import authorize_signup
from tenantauth.exceptions import DuplicateIdentityError, InvalidCodeError, ValidationError
from tenantauth.models.database import User, _utc_now
from tenantauth.models.domain import VerifyOutcome, WorkspaceRef
from tenantauth.types import OTP_PROVIDER_ID, AuthContext, VerifyAction

if TYPE_CHECKING:
    from tenantauth.auth.rate_limit import RateLimiter
    from tenantauth.models.database import Tenant, VerificationCode
    from tenantauth.notify.notifier import Notifier
    from tenantauth.storage.directory import Directory

logger = structlog.get_logger(__name__)

_EMAIL_RE = re.compile(r"[^\s@]+@[^\s@]+\.[^\s@]+")
_MAX_EMAIL_LENGTH = 254


def normalize_email(email: str) -> str:
    """Validate the raw input, then lowercase it.

    Input with surrounding whitespace is rejected rather than trimmed.
    """
    if not email or len(email) > _MAX_EMAIL_LENGTH or not _EMAIL_RE.fullmatch(email):
        raise ValidationError("Invalid email address")
    return email.lower()


def generate_code() -> str:
    return f"{secrets.randbelow(1_000_000):06d}"


def tenant_identifier(tenant_id: str, email: str) -> str:
    return f"tenant:{tenant_id}:email:{email}"


def finder_identifier(email: str) -> str:
    return f"finder:email:{email}"


class OtpService:
    """Issues and verifies one-time codes."""

    def __init__(
        self,
        directory: Directory,
        notifier: Notifier,
        rate_limiter: RateLimiter,
        *,
        code_ttl_seconds: int = 600,
        signup_extension_seconds: int = 300,
        notify_timeout_seconds: float = 10.0,
    ) -> None:
        self._directory = directory
        self._notifier = notifier
        self._limiter = rate_limiter
        self._ttl = code_ttl_seconds
        self._extension = signup_extension_seconds
        self._notify_timeout = notify_timeout_seconds

    # -- tenant sign-in ------------------------------------------------------

    async def send(self, tenant: Tenant, email: str, client_ip: str) -> None:
        """Issue a code for ``email`` in ``tenant``. Delivery failures are not surfaced."""
        normalized = normalize_email(email)
        self._limiter.hit("otp_send", client_ip)
        await self._issue(tenant_identifier(tenant.id, normalized), normalized)
        logger.info("otp_sent", tenant_id=tenant.id)

    async def verify(
        self,
        tenant: Tenant,
        email: str,
        code: str,
        client_ip: str,
        *,
        name: str | None = None,
        invitation_id: str | None = None,
        context: AuthContext | str = AuthContext.PORTAL,
    ) -> VerifyOutcome:
        """Check a code and log in, ask for signup details, or sign up.

        Raises ``InvalidCodeError`` for a missing, expired or wrong code and
        ``SignupNotAllowedError`` when a new identity may not join.
        """
        normalized = normalize_email(email)
        self._limiter.hit("otp_verify", client_ip)
        identifier = tenant_identifier(tenant.id, normalized)
        row = await self._live_code(identifier, code)

        user = await self._directory.find_user_by_email(tenant.id, normalized)
        if user is not None:
            if not await self._directory.consume_verification_code(identifier, row.code):
                raise InvalidCodeError("Invalid or expired code")
            logger.info("otp_login", tenant_id=tenant.id, user_id=user.id)
            return VerifyOutcome(action=VerifyAction.LOGIN, user_id=user.id)

        if not name or not name.strip():
            if not row.extended:
                await self._directory.extend_verification_code(
                    identifier, row.expires_at + timedelta(seconds=self._extension)
                )
            return VerifyOutcome(action=VerifyAction.NEEDS_SIGNUP)

        role = await authorize_signup(self._directory, tenant, normalized, context, invitation_id)
        new_user = User(
            tenant_id=tenant.id,
            email=normalized,
            email_verified=True,
            name=name.strip(),
        )
        try:
            created = await self._directory.create_user(
                new_user,
                role=role,
                provider=OTP_PROVIDER_ID,
                account_id=normalized,
                invitation_id=invitation_id,
                code_identifier=identifier,
            )
        except DuplicateIdentityError as e:
            logger.info("otp_signup_became_login", tenant_id=tenant.id, user_id=e.user_id)
            return VerifyOutcome(action=VerifyAction.LOGIN, user_id=e.user_id)

        logger.info("otp_signup", tenant_id=tenant.id, user_id=created.id, role=role)
        return VerifyOutcome(action=VerifyAction.SIGNUP, user_id=created.id)

    # -- workspace finder ----------------------------------------------------

    async def send_finder(self, email: str, client_ip: str) -> None:
        normalized = normalize_email(email)
        self._limiter.hit("otp_send", client_ip)
        await self._issue(finder_identifier(normalized), normalized)

    async def verify_finder(self, email: str, code: str, client_ip: str) -> list[WorkspaceRef]:
        """Consume a finder code and list the workspaces the address belongs to."""
        normalized = normalize_email(email)
        self._limiter.hit("otp_verify", client_ip)
        identifier = finder_identifier(normalized)
        row = await self._live_code(identifier, code)
        if not await self._directory.consume_verification_code(identifier, row.code):
            raise InvalidCodeError("Invalid or expired code")

        refs: list[WorkspaceRef] = []
        for tenant in await self._directory.list_tenants_for_email(normalized):
            domains = await self._directory.list_domains(tenant.id)
            primary = next((d.domain for d in domains if d.is_primary), None)
            refs.append(WorkspaceRef(slug=tenant.slug, name=tenant.name, domain=primary))
        return sorted(refs, key=lambda r: r.slug)

    # -- helpers -------------------------------------------------------------

    async def _issue(self, identifier: str, email: str) -> None:
        code = generate_code()
        expires_at = _utc_now() + timedelta(seconds=self._ttl)
        await self._directory.create_verification_code(identifier, code, expires_at)
        try:
            await asyncio.wait_for(
                self._notifier.send_otp_email(email, code), timeout=self._notify_timeout
            )
        except Exception as e:
            # Delivery is best effort; the response must not reveal mail failures
            logger.warning("otp_email_failed", error=str(e) or type(e).__name__)

    async def _live_code(self, identifier: str, code: str) -> VerificationCode:
        row = await self._directory.find_verification_code(identifier)
        if row is None or row.expires_at <= _utc_now():
            raise InvalidCodeError("Invalid or expired code")
        if not hmac.compare_digest(row.code.encode(), (code or "").strip().encode()):
            raise InvalidCodeError("Invalid or expired code")
        return row
