"""In-memory Directory for development and tests.

None of the methods await while mutating, so each call is atomic with
respect to other coroutines on the same event loop.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from tenantauth.exceptions import DuplicateIdentityError, ForbiddenError, ValidationError
from tenantauth.models.database import Account, Member, VerificationCode, _utc_now
from tenantauth.types import InvitationStatus

if TYPE_CHECKING:
    from datetime import datetime

    from tenantauth.models.database import (
        Domain,
        Invitation,
        SessionTransferToken,
        Tenant,
        TenantAuthProvider,
        User,
    )

logger = structlog.get_logger(__name__)


class InMemoryDirectory:
    """Dict-backed Directory."""

    def __init__(self) -> None:
        self._tenants: dict[str, Tenant] = {}
        self._domains: dict[str, Domain] = {}  # id -> row
        self._providers: dict[tuple[str, str, str], TenantAuthProvider] = {}
        self._users: dict[str, User] = {}
        self._members: list[Member] = []
        self._accounts: list[Account] = []
        self._invitations: dict[str, Invitation] = {}
        self._codes: dict[str, VerificationCode] = {}  # identifier -> row
        self._transfers: dict[str, SessionTransferToken] = {}  # token -> row

    # -- tenants & domains ---------------------------------------------------

    async def create_tenant(self, tenant: Tenant, primary_domain: Domain) -> Tenant:
        if any(t.slug == tenant.slug for t in self._tenants.values()):
            msg = f"Workspace slug already taken: {tenant.slug}"
            raise ValidationError(msg)
        self._check_domain_free(primary_domain.domain)
        self._tenants[tenant.id] = tenant
        self._domains[primary_domain.id] = primary_domain
        return tenant

    async def find_tenant_by_id(self, tenant_id: str) -> Tenant | None:
        return self._tenants.get(tenant_id)

    async def find_tenant_by_slug(self, slug: str) -> Tenant | None:
        return next((t for t in self._tenants.values() if t.slug == slug), None)

    async def find_tenant_by_domain(self, domain: str) -> tuple[Tenant, Domain] | None:
        row = next((d for d in self._domains.values() if d.domain == domain), None)
        if row is None:
            return None
        tenant = self._tenants.get(row.tenant_id)
        return (tenant, row) if tenant else None

    async def list_domains(self, tenant_id: str) -> list[Domain]:
        return [d for d in self._domains.values() if d.tenant_id == tenant_id]

    async def add_domain(self, domain: Domain) -> Domain:
        self._check_domain_free(domain.domain)
        self._domains[domain.id] = domain
        return domain

    async def mark_domain_verified(self, domain_id: str) -> None:
        if domain_id in self._domains:
            self._domains[domain_id].verified = True

    async def set_primary_domain(self, tenant_id: str, domain_id: str) -> None:
        for d in self._domains.values():
            if d.tenant_id == tenant_id:
                d.is_primary = d.id == domain_id

    async def delete_domain(self, domain_id: str, promote_domain_id: str | None = None) -> None:
        removed = self._domains.pop(domain_id, None)
        if removed and promote_domain_id and promote_domain_id in self._domains:
            await self.set_primary_domain(removed.tenant_id, promote_domain_id)

    async def set_strict_sso_mode(self, tenant_id: str, enabled: bool) -> None:
        tenant = self._tenants.get(tenant_id)
        if tenant:
            tenant.strict_sso_mode = enabled
            tenant.updated_at = _utc_now()

    async def list_tenants_for_email(self, email: str) -> list[Tenant]:
        tenant_ids = {
            u.tenant_id for u in self._users.values() if email in (u.email, u.real_email)
        }
        return [self._tenants[tid] for tid in tenant_ids if tid in self._tenants]

    # -- providers -----------------------------------------------------------

    async def set_provider(self, config: TenantAuthProvider) -> TenantAuthProvider:
        self._providers[(config.tenant_id, config.provider, config.context)] = config
        return config

    async def get_provider_config(
        self, tenant_id: str, provider: str, context: str
    ) -> TenantAuthProvider | None:
        return self._providers.get((tenant_id, provider, context))

    async def is_provider_enabled(self, tenant_id: str, provider: str, context: str) -> bool:
        config = self._providers.get((tenant_id, provider, context))
        return bool(config and config.enabled)

    # -- users ---------------------------------------------------------------

    async def find_user_by_id(self, user_id: str) -> User | None:
        return self._users.get(user_id)

    async def find_user_by_email(self, tenant_id: str, email: str) -> User | None:
        return self._user_by_email(tenant_id, email)

    async def find_user_by_account(
        self, tenant_id: str, provider: str, account_id: str
    ) -> User | None:
        for account in self._accounts:
            if account.provider == provider and account.account_id == account_id:
                user = self._users.get(account.user_id)
                if user and user.tenant_id == tenant_id:
                    return user
        return None

    async def create_user(
        self,
        user: User,
        *,
        role: str,
        provider: str,
        account_id: str,
        invitation_id: str | None = None,
        code_identifier: str | None = None,
    ) -> User:
        existing = self._user_by_email(user.tenant_id, user.email)
        if existing:
            raise DuplicateIdentityError(existing.id)
        if invitation_id:
            invitation = self._invitations.get(invitation_id)
            if not invitation or invitation.status != InvitationStatus.PENDING:
                msg = "Invitation is no longer valid"
                raise ForbiddenError(msg)
            invitation.status = InvitationStatus.ACCEPTED

        self._users[user.id] = user
        self._members.append(Member(user_id=user.id, tenant_id=user.tenant_id, role=role))
        self._accounts.append(Account(user_id=user.id, provider=provider, account_id=account_id))
        if code_identifier:
            self._codes.pop(code_identifier, None)
        logger.info("user_created", user_id=user.id, tenant_id=user.tenant_id, provider=provider)
        return user

    async def link_external_account(self, user_id: str, provider: str, account_id: str) -> None:
        for a in self._accounts:
            if a.user_id == user_id and a.provider == provider and a.account_id == account_id:
                return
        self._accounts.append(Account(user_id=user_id, provider=provider, account_id=account_id))

    async def get_member_role(self, user_id: str, tenant_id: str) -> str | None:
        member = next(
            (m for m in self._members if m.user_id == user_id and m.tenant_id == tenant_id),
            None,
        )
        return member.role if member else None

    # -- invitations ---------------------------------------------------------

    async def create_invitation(self, invitation: Invitation) -> Invitation:
        self._invitations[invitation.id] = invitation
        return invitation

    async def find_invitation(self, invitation_id: str) -> Invitation | None:
        return self._invitations.get(invitation_id)

    async def mark_invitation_accepted(self, invitation_id: str) -> bool:
        invitation = self._invitations.get(invitation_id)
        if not invitation or invitation.status != InvitationStatus.PENDING:
            return False
        invitation.status = InvitationStatus.ACCEPTED
        return True

    # -- verification codes --------------------------------------------------

    async def create_verification_code(
        self, identifier: str, code: str, expires_at: datetime
    ) -> VerificationCode:
        row = VerificationCode(identifier=identifier, code=code, expires_at=expires_at)
        self._codes[identifier] = row
        return row

    async def find_verification_code(self, identifier: str) -> VerificationCode | None:
        return self._codes.get(identifier)

    async def consume_verification_code(self, identifier: str, code: str) -> bool:
        row = self._codes.get(identifier)
        if row is None or row.code != code:
            return False
        del self._codes[identifier]
        return True

    async def extend_verification_code(self, identifier: str, expires_at: datetime) -> bool:
        row = self._codes.get(identifier)
        if row is None or row.extended:
            return False
        row.expires_at = expires_at
        row.extended = True
        return True

    # -- session transfer ----------------------------------------------------

    async def create_session_transfer_token(self, token: SessionTransferToken) -> None:
        self._transfers[token.token] = token

    async def consume_session_transfer_token(self, token: str) -> SessionTransferToken | None:
        return self._transfers.pop(token, None)

    # -- helpers -------------------------------------------------------------

    def _user_by_email(self, tenant_id: str, email: str) -> User | None:
        return next(
            (u for u in self._users.values() if u.tenant_id == tenant_id and u.email == email),
            None,
        )

    def _check_domain_free(self, domain: str) -> None:
        if any(d.domain == domain for d in self._domains.values()):
            msg = f"Domain already in use: {domain}"
            raise ValidationError(msg)
