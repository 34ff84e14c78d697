"""Directory: the persistence contract the auth services depend on.

Two implementations exist: ``DatabaseDirectory`` (SQLModel, used when
``USE_DATABASE=true``) and ``InMemoryDirectory`` (dev and tests). Every
single-use operation (code consume, transfer token consume, invitation
accept) is a conditional write so concurrent callers cannot both succeed.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from datetime import datetime

    from tenantauth.models.database import (
        Domain,
        Invitation,
        SessionTransferToken,
        Tenant,
        TenantAuthProvider,
        User,
        VerificationCode,
    )


class Directory(Protocol):
    # -- tenants & domains ---------------------------------------------------

    async def create_tenant(self, tenant: Tenant, primary_domain: Domain) -> Tenant: ...

    async def find_tenant_by_id(self, tenant_id: str) -> Tenant | None: ...

    async def find_tenant_by_slug(self, slug: str) -> Tenant | None: ...

    async def find_tenant_by_domain(self, domain: str) -> tuple[Tenant, Domain] | None: ...

    async def list_domains(self, tenant_id: str) -> list[Domain]: ...

    async def add_domain(self, domain: Domain) -> Domain:
        """Insert a domain; raises ``ValidationError`` if the host is taken."""
        ...

    async def mark_domain_verified(self, domain_id: str) -> None: ...

    async def set_primary_domain(self, tenant_id: str, domain_id: str) -> None:
        """Make ``domain_id`` the only primary domain of the tenant."""
        ...

    async def delete_domain(self, domain_id: str, promote_domain_id: str | None = None) -> None:
        """Delete a domain, optionally promoting another one in the same write."""
        ...

    async def set_strict_sso_mode(self, tenant_id: str, enabled: bool) -> None: ...

    async def list_tenants_for_email(self, email: str) -> list[Tenant]: ...

    # -- providers -----------------------------------------------------------

    async def set_provider(self, config: TenantAuthProvider) -> TenantAuthProvider: ...

    async def get_provider_config(
        self, tenant_id: str, provider: str, context: str
    ) -> TenantAuthProvider | None: ...

    async def is_provider_enabled(self, tenant_id: str, provider: str, context: str) -> bool: ...

    # -- users ---------------------------------------------------------------

    async def find_user_by_id(self, user_id: str) -> User | None: ...

    async def find_user_by_email(self, tenant_id: str, email: str) -> User | None: ...

    async def find_user_by_account(
        self, tenant_id: str, provider: str, account_id: str
    ) -> User | None: ...

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
        """Create user, membership and linked account in one transaction.

        Also accepts the invitation (pending only) and deletes the
        verification code when given. Raises ``DuplicateIdentityError`` with
        the existing user's id when ``(tenant_id, email)`` is taken.
        """
        ...

    async def link_external_account(self, user_id: str, provider: str, account_id: str) -> None:
        """Attach an external account to a user; linking twice is a no-op."""
        ...

    async def get_member_role(self, user_id: str, tenant_id: str) -> str | None: ...

    # -- invitations ---------------------------------------------------------

    async def create_invitation(self, invitation: Invitation) -> Invitation: ...

    async def find_invitation(self, invitation_id: str) -> Invitation | None: ...

    async def mark_invitation_accepted(self, invitation_id: str) -> bool:
        """Flip pending -> accepted; False if it was not pending."""
        ...

    # -- verification codes --------------------------------------------------

    async def create_verification_code(
        self, identifier: str, code: str, expires_at: datetime
    ) -> VerificationCode:
        """Store a code, replacing any previous code for the identifier."""
        ...

    async def find_verification_code(self, identifier: str) -> VerificationCode | None: ...

    async def consume_verification_code(self, identifier: str, code: str) -> bool:
        """Delete the code if it still matches; True only for the caller that deleted it."""
        ...

    async def extend_verification_code(self, identifier: str, expires_at: datetime) -> bool:
        """Push expiry out once; False if already extended or gone."""
        ...

    # -- session transfer ----------------------------------------------------

    async def create_session_transfer_token(self, token: SessionTransferToken) -> None: ...

    async def consume_session_transfer_token(self, token: str) -> SessionTransferToken | None:
        """Fetch and delete in a single step."""
        ...
