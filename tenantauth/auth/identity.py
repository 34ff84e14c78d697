"""Resolve an external identity to a tenant-local user.

Two policies exist per tenant:

* merge (default): a provider login attaches to an existing user with the
  same email, linking the external account;
* strict SSO (fork): the natural key is a salted hash of the email so
  provider identities never collide with local accounts or other tenants.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog

from tenantauth.auth.crypto import isolated_email
from tenantauth.exceptions import (
    DuplicateIdentityError,
    ForbiddenError,
    SignupNotAllowedError,
    ValidationError,
)
from tenantauth.models.database import User, _utc_now
from tenantauth.models.domain import LinkResult
from tenantauth.types import AuthContext, InvitationStatus, MemberRole

if TYPE_CHECKING:
    from tenantauth.models.database import Tenant
    from tenantauth.models.domain import ExternalProfile
    from tenantauth.storage.directory import Directory

logger = structlog.get_logger(__name__)


async def authorize_signup(
    directory: Directory,
    tenant: Tenant,
    email: str,
    context: AuthContext | str,
    invitation_id: str | None = None,
) -> str:
    """Return the role a new identity gets, or raise ``SignupNotAllowedError``.

    An invitation must belong to the tenant, still be pending, be unexpired
    and match the email case-insensitively. Without one, portal signup needs
    portal auth enabled and team signup needs open signup.
    """
    if invitation_id:
        invitation = await directory.find_invitation(invitation_id)
        if invitation is None or invitation.tenant_id != tenant.id:
            raise SignupNotAllowedError("Invitation not found")
        if invitation.status != InvitationStatus.PENDING:
            raise SignupNotAllowedError("Invitation is no longer valid")
        if invitation.expires_at <= _utc_now():
            raise SignupNotAllowedError("Invitation has expired")
        if invitation.email.strip().lower() != email.strip().lower():
            raise SignupNotAllowedError("Invitation was sent to a different email address")
        return invitation.role

    if context == AuthContext.PORTAL:
        if not tenant.portal_auth_enabled:
            raise SignupNotAllowedError("Sign up is not available for this workspace")
        return MemberRole.USER

    if not tenant.open_signup_enabled:
        raise SignupNotAllowedError("Sign up requires an invitation")
    return MemberRole.MEMBER


class IdentityLinker:
    """Maps an ``ExternalProfile`` from a provider onto a local user."""

    def __init__(self, directory: Directory) -> None:
        self._directory = directory

    async def resolve(
        self,
        tenant: Tenant,
        context: AuthContext | str,
        profile: ExternalProfile,
        provider: str,
        invitation_id: str | None = None,
    ) -> LinkResult:
        email = profile.email.strip().lower()
        if not email or "@" not in email:
            raise ValidationError("Provider did not return an email address")
        if tenant.strict_sso_mode:
            return await self._resolve_isolated(tenant, context, profile, provider, email, invitation_id)
        return await self._resolve_merged(tenant, context, profile, provider, email, invitation_id)

    @staticmethod
    def _require_verified(profile: ExternalProfile) -> None:
        """Attaching to an existing user needs the provider to vouch for the address."""
        if not profile.email_verified:
            logger.warning("identity_merge_refused_unverified", account_id=profile.account_id)
            raise ForbiddenError("Provider email address is not verified")

    async def _resolve_merged(
        self,
        tenant: Tenant,
        context: AuthContext | str,
        profile: ExternalProfile,
        provider: str,
        email: str,
        invitation_id: str | None,
    ) -> LinkResult:
        user = await self._directory.find_user_by_account(tenant.id, provider, profile.account_id)
        if user is not None:
            return LinkResult(user_id=user.id)

        user = await self._directory.find_user_by_email(tenant.id, email)
        if user is not None:
            self._require_verified(profile)
            await self._directory.link_external_account(user.id, provider, profile.account_id)
            logger.info("identity_merged", user_id=user.id, tenant_id=tenant.id, provider=provider)
            return LinkResult(user_id=user.id)

        new_user = User(
            tenant_id=tenant.id,
            email=email,
            email_verified=profile.email_verified,
            name=profile.name or email.split("@", 1)[0],
            image=profile.avatar,
        )
        return await self._create(tenant, context, new_user, provider, profile, email, invitation_id)

    async def _resolve_isolated(
        self,
        tenant: Tenant,
        context: AuthContext | str,
        profile: ExternalProfile,
        provider: str,
        email: str,
        invitation_id: str | None,
    ) -> LinkResult:
        key = isolated_email(tenant.sso_salt, email)
        user = await self._directory.find_user_by_email(tenant.id, key)
        if user is not None:
            self._require_verified(profile)
            await self._directory.link_external_account(user.id, provider, profile.account_id)
            return LinkResult(user_id=user.id)

        new_user = User(
            tenant_id=tenant.id,
            email=key,
            real_email=email,
            email_verified=profile.email_verified,
            name=profile.name or email.split("@", 1)[0],
            image=profile.avatar,
            metadata_json=json.dumps({"real_email": email, "sso_isolated": True}),
        )
        return await self._create(tenant, context, new_user, provider, profile, email, invitation_id)

    async def _create(
        self,
        tenant: Tenant,
        context: AuthContext | str,
        user: User,
        provider: str,
        profile: ExternalProfile,
        email: str,
        invitation_id: str | None,
    ) -> LinkResult:
        role = await authorize_signup(self._directory, tenant, email, context, invitation_id)
        try:
            created = await self._directory.create_user(
                user,
                role=role,
                provider=provider,
                account_id=profile.account_id,
                invitation_id=invitation_id,
            )
        except DuplicateIdentityError as e:
            self._require_verified(profile)
            await self._directory.link_external_account(e.user_id, provider, profile.account_id)
            return LinkResult(user_id=e.user_id)
        logger.info(
            "identity_created",
            user_id=created.id,
            tenant_id=tenant.id,
            provider=provider,
            isolated=tenant.strict_sso_mode,
        )
        return LinkResult(user_id=created.id, created=True)
