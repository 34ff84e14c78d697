"""Workspace administration: provisioning, domains, SSO policy, providers, invitations."""

from __future__ import annotations

import secrets
from datetime import timedelta
from typing import TYPE_CHECKING

import httpx
import structlog

from tenantauth.auth.otp import normalize_email
from tenantauth.auth.tenant_resolver import is_valid_slug, normalize_host
from tenantauth.exceptions import ForbiddenError, NotFoundError, ValidationError
from tenantauth.models.database import Domain, Invitation, Tenant, TenantAuthProvider, _utc_now
from tenantauth.types import AuthContext, DomainKind, MemberRole, OAuthProvider

if TYPE_CHECKING:
    from tenantauth.auth.crypto import SecretCipher
    from tenantauth.auth.tenant_resolver import TenantResolver
    from tenantauth.notify.notifier import Notifier
    from tenantauth.storage.directory import Directory

logger = structlog.get_logger(__name__)

VERIFICATION_PATH = "/.well-known/domain-verification"
VERIFICATION_BODY = "VERIFIED"


class DomainService:
    """Owner/admin operations on a tenant.

    Invariants kept here: each tenant has exactly one primary domain, the
    subdomain is never removed, and only verified domains can be primary.
    """

    def __init__(
        self,
        directory: Directory,
        resolver: TenantResolver,
        cipher: SecretCipher,
        app_domain: str,
        scheme: str = "https",
        http_timeout: float = 10.0,
    ) -> None:
        self._directory = directory
        self._resolver = resolver
        self._cipher = cipher
        self._app_domain = app_domain.lower()
        self._scheme = scheme
        self._http_timeout = http_timeout

    # -- provisioning --------------------------------------------------------

    async def provision_tenant(
        self,
        slug: str,
        name: str,
        *,
        open_signup_enabled: bool = False,
        portal_auth_enabled: bool = True,
    ) -> Tenant:
        """Create a tenant with its primary ``{slug}.{app_domain}`` subdomain."""
        slug = slug.strip().lower()
        if not is_valid_slug(slug):
            raise ValidationError("Workspace slug may only contain a-z, 0-9 and hyphens")
        tenant = Tenant(
            slug=slug,
            name=name,
            open_signup_enabled=open_signup_enabled,
            portal_auth_enabled=portal_auth_enabled,
            sso_salt=secrets.token_hex(32),
        )
        subdomain = Domain(
            domain=f"{slug}.{self._app_domain}",
            tenant_id=tenant.id,
            kind=DomainKind.SUBDOMAIN,
            verified=True,
            is_primary=True,
        )
        created = await self._directory.create_tenant(tenant, subdomain)
        logger.info("tenant_provisioned", tenant_id=created.id, slug=slug)
        return created

    # -- domains -------------------------------------------------------------

    async def add_custom_domain(self, tenant: Tenant, domain: str) -> Domain:
        normalized = normalize_host(domain)
        if normalized is None:
            raise ValidationError("Invalid domain")
        if normalized == self._app_domain or normalized.endswith(f".{self._app_domain}"):
            raise ValidationError("Domain is reserved")
        row = Domain(
            domain=normalized,
            tenant_id=tenant.id,
            kind=DomainKind.CUSTOM,
            verified=False,
            is_primary=False,
            verification_token=secrets.token_hex(16),
        )
        created = await self._directory.add_domain(row)
        logger.info("domain_added", tenant_id=tenant.id, domain=normalized)
        return created

    async def verify_domain(self, domain: str, token: str) -> Domain:
        """Mark a custom domain verified.

        The caller must present the token issued when the domain was added, and
        the domain itself must already route to this service: a GET of
        ``VERIFICATION_PATH`` on it has to answer ``VERIFIED``.
        """
        tenant = await self._resolver.resolve(host=domain, allow_unverified=True)
        row = await self._find(tenant, normalize_host(domain) or "", by="domain")
        if not row.verification_token or not secrets.compare_digest(
            row.verification_token.encode(), token.encode()
        ):
            raise ForbiddenError("Domain verification failed")
        if not await self._serves_verification(row.domain):
            raise ForbiddenError("Domain verification failed")
        await self._directory.mark_domain_verified(row.id)
        row.verified = True
        logger.info("domain_verified", tenant_id=tenant.id, domain=row.domain)
        return row

    async def _serves_verification(self, domain: str) -> bool:
        url = f"{self._scheme}://{domain}{VERIFICATION_PATH}"
        try:
            async with httpx.AsyncClient(timeout=self._http_timeout) as client:
                resp = await client.get(url)
        except httpx.HTTPError as e:
            logger.warning("domain_verification_unreachable", domain=domain, error=str(e))
            return False
        if resp.status_code != 200 or resp.text.strip() != VERIFICATION_BODY:
            logger.warning(
                "domain_verification_mismatch", domain=domain, status=resp.status_code
            )
            return False
        return True

    async def set_primary(self, tenant: Tenant, domain_id: str) -> None:
        row = await self._find(tenant, domain_id)
        if not row.verified:
            raise ValidationError("Only verified domains can be primary")
        await self._directory.set_primary_domain(tenant.id, row.id)
        logger.info("domain_primary_changed", tenant_id=tenant.id, domain=row.domain)

    async def remove_domain(self, tenant: Tenant, domain_id: str) -> None:
        """Delete a custom domain; the subdomain takes over if it was primary."""
        row = await self._find(tenant, domain_id)
        if row.kind == DomainKind.SUBDOMAIN:
            raise ValidationError("The workspace subdomain cannot be removed")
        promote = None
        if row.is_primary:
            domains = await self._directory.list_domains(tenant.id)
            subdomain = next((d for d in domains if d.kind == DomainKind.SUBDOMAIN), None)
            if subdomain is None:
                raise ValidationError("Workspace has no subdomain to fall back to")
            promote = subdomain.id
        await self._directory.delete_domain(row.id, promote_domain_id=promote)

    # -- policy & providers --------------------------------------------------

    async def set_strict_sso_mode(self, tenant: Tenant, enabled: bool) -> None:
        await self._directory.set_strict_sso_mode(tenant.id, enabled)
        tenant.strict_sso_mode = enabled
        logger.info("strict_sso_mode_changed", tenant_id=tenant.id, enabled=enabled)

    async def configure_provider(
        self,
        tenant: Tenant,
        provider: OAuthProvider | str,
        context: AuthContext | str,
        *,
        enabled: bool = True,
        issuer: str | None = None,
        client_id: str | None = None,
        client_secret: str | None = None,
        email_domain: str | None = None,
    ) -> TenantAuthProvider:
        try:
            provider_name = OAuthProvider(provider)
            auth_context = AuthContext(context)
        except ValueError as e:
            raise ValidationError(f"Unsupported provider or context: {provider}/{context}") from e
        if provider_name == OAuthProvider.OIDC and enabled and not (
            issuer and client_id and client_secret
        ):
            raise ValidationError("OIDC requires issuer, client id and client secret")
        config = TenantAuthProvider(
            tenant_id=tenant.id,
            provider=provider_name,
            context=auth_context,
            enabled=enabled,
            issuer=issuer,
            client_id=client_id,
            client_secret_encrypted=self._cipher.encrypt(client_secret) if client_secret else None,
            email_domain=email_domain.strip().lower().lstrip("@") if email_domain else None,
        )
        saved = await self._directory.set_provider(config)
        logger.info(
            "provider_configured",
            tenant_id=tenant.id,
            provider=provider_name,
            context=auth_context,
            enabled=enabled,
        )
        return saved

    # -- invitations ---------------------------------------------------------

    async def invite(
        self,
        tenant: Tenant,
        email: str,
        notifier: Notifier,
        *,
        role: MemberRole | str = MemberRole.MEMBER,
        inviter_name: str = "",
        ttl_days: int = 7,
    ) -> Invitation:
        normalized = normalize_email(email)
        invitation = await self._directory.create_invitation(
            Invitation(
                tenant_id=tenant.id,
                email=normalized,
                role=str(role),
                inviter_name=inviter_name,
                expires_at=_utc_now() + timedelta(days=ttl_days),
            )
        )
        primary = await self._resolver.primary_domain(tenant)
        link = f"{self._scheme}://{primary.domain}/invite/{invitation.id}"
        try:
            await notifier.send_invitation_email(
                normalized, inviter_name or tenant.name, tenant.name, link
            )
        except Exception as e:
            logger.warning("invitation_email_failed", tenant_id=tenant.id, error=str(e))
        logger.info("invitation_created", tenant_id=tenant.id, invitation_id=invitation.id)
        return invitation

    # -- helpers -------------------------------------------------------------

    async def _find(self, tenant: Tenant, value: str, by: str = "id") -> Domain:
        for d in await self._directory.list_domains(tenant.id):
            if getattr(d, by) == value:
                return d
        raise NotFoundError("Domain not found")
