"""Directory backed by SQLModel over an async SQLAlchemy engine.

Single-use consumption is done with ``DELETE ... RETURNING`` / conditional
``UPDATE`` so that exactly one concurrent caller observes success.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import delete, false, or_, update
from sqlalchemy.exc import IntegrityError

from tenantauth.exceptions import (
    DuplicateIdentityError,
    ForbiddenError,
    StorageError,
    ValidationError,
)
from tenantauth.models.database import (
    Account,
    Domain,
    Invitation,
    Member,
    SessionTransferToken,
    Tenant,
    TenantAuthProvider,
    User,
    VerificationCode,
    _utc_now,
)
from tenantauth.types import InvitationStatus

if TYPE_CHECKING:
    from datetime import datetime

logger = structlog.get_logger(__name__)


class DatabaseDirectory:
    """PostgreSQL-backed Directory (SQLite in tests)."""

    def __init__(self, engine: Any) -> None:
        self._engine = engine

    # -- tenants & domains ---------------------------------------------------

    async def create_tenant(self, tenant: Tenant, primary_domain: Domain) -> Tenant:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            try:
                session.add(tenant)
                await session.flush()
                session.add(primary_domain)
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                msg = "Workspace slug or domain already in use"
                raise ValidationError(msg) from e
            await session.refresh(tenant)
            logger.info("tenant_created", tenant_id=tenant.id, slug=tenant.slug)
            return tenant

    async def find_tenant_by_id(self, tenant_id: str) -> Tenant | None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            return await session.get(Tenant, tenant_id)

    async def find_tenant_by_slug(self, slug: str) -> Tenant | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(Tenant).where(col(Tenant.slug) == slug)
            result = await session.execute(stmt)
            return result.scalars().first()

    async def find_tenant_by_domain(self, domain: str) -> tuple[Tenant, Domain] | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = (
                select(Tenant, Domain)
                .join(Domain, col(Domain.tenant_id) == col(Tenant.id))
                .where(col(Domain.domain) == domain)
            )
            result = await session.execute(stmt)
            row = result.first()
            if row is None:
                return None
            return row[0], row[1]

    async def list_domains(self, tenant_id: str) -> list[Domain]:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = (
                select(Domain)
                .where(col(Domain.tenant_id) == tenant_id)
                .order_by(col(Domain.created_at))
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    async def add_domain(self, domain: Domain) -> Domain:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            session.add(domain)
            try:
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                msg = f"Domain already in use: {domain.domain}"
                raise ValidationError(msg) from e
            await session.refresh(domain)
            return domain

    async def mark_domain_verified(self, domain_id: str) -> None:
        from sqlmodel import col
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            await session.execute(
                update(Domain).where(col(Domain.id) == domain_id).values(verified=True)
            )
            await session.commit()

    async def set_primary_domain(self, tenant_id: str, domain_id: str) -> None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            await self._swap_primary(session, tenant_id, domain_id)
            await session.commit()

    async def delete_domain(self, domain_id: str, promote_domain_id: str | None = None) -> None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                delete(Domain.__table__)
                .where(Domain.__table__.c.id == domain_id)
                .returning(Domain.__table__.c.tenant_id)
            )
            row = result.first()
            if row is not None and promote_domain_id:
                await self._swap_primary(session, row[0], promote_domain_id)
            await session.commit()
            logger.info("domain_deleted", domain_id=domain_id, promoted=promote_domain_id)

    async def set_strict_sso_mode(self, tenant_id: str, enabled: bool) -> None:
        from sqlmodel import col
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            await session.execute(
                update(Tenant)
                .where(col(Tenant.id) == tenant_id)
                .values(strict_sso_mode=enabled, updated_at=_utc_now())
            )
            await session.commit()

    async def list_tenants_for_email(self, email: str) -> list[Tenant]:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = (
                select(Tenant)
                .join(User, col(User.tenant_id) == col(Tenant.id))
                .where(or_(col(User.email) == email, col(User.real_email) == email))
                .distinct()
            )
            result = await session.execute(stmt)
            return list(result.scalars().all())

    # -- providers -----------------------------------------------------------

    async def set_provider(self, config: TenantAuthProvider) -> TenantAuthProvider:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            existing = await self._provider_row(
                session, config.tenant_id, config.provider, config.context
            )
            if existing is not None:
                existing.enabled = config.enabled
                existing.issuer = config.issuer
                existing.client_id = config.client_id
                existing.client_secret_encrypted = config.client_secret_encrypted
                existing.email_domain = config.email_domain
                existing.updated_at = _utc_now()
                config = existing
            session.add(config)
            await session.commit()
            await session.refresh(config)
            return config

    async def get_provider_config(
        self, tenant_id: str, provider: str, context: str
    ) -> TenantAuthProvider | None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            return await self._provider_row(session, tenant_id, provider, context)

    async def is_provider_enabled(self, tenant_id: str, provider: str, context: str) -> bool:
        config = await self.get_provider_config(tenant_id, provider, context)
        return bool(config and config.enabled)

    # -- users ---------------------------------------------------------------

    async def find_user_by_id(self, user_id: str) -> User | None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            return await session.get(User, user_id)

    async def find_user_by_email(self, tenant_id: str, email: str) -> User | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(User).where(
                col(User.tenant_id) == tenant_id, col(User.email) == email
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    async def find_user_by_account(
        self, tenant_id: str, provider: str, account_id: str
    ) -> User | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = (
                select(User)
                .join(Account, col(Account.user_id) == col(User.id))
                .where(
                    col(User.tenant_id) == tenant_id,
                    col(Account.provider) == provider,
                    col(Account.account_id) == account_id,
                )
            )
            result = await session.execute(stmt)
            return result.scalars().first()

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
        from sqlmodel.ext.asyncio.session import AsyncSession

        tenant_id, email = user.tenant_id, user.email
        async with AsyncSession(self._engine) as session:
            try:
                session.add(user)
                await session.flush()
                session.add(Member(user_id=user.id, tenant_id=tenant_id, role=role))
                session.add(Account(user_id=user.id, provider=provider, account_id=account_id))
                if invitation_id:
                    inv = Invitation.__table__
                    result = await session.execute(
                        update(inv)
                        .where(inv.c.id == invitation_id, inv.c.status == InvitationStatus.PENDING)
                        .values(status=InvitationStatus.ACCEPTED)
                    )
                    if result.rowcount != 1:
                        await session.rollback()
                        msg = "Invitation is no longer valid"
                        raise ForbiddenError(msg)
                if code_identifier:
                    codes = VerificationCode.__table__
                    await session.execute(delete(codes).where(codes.c.identifier == code_identifier))
                await session.commit()
            except IntegrityError as e:
                await session.rollback()
                existing = await self.find_user_by_email(tenant_id, email)
                if existing is None:
                    msg = "User could not be created"
                    raise StorageError(msg) from e
                logger.info("user_create_lost_race", tenant_id=tenant_id, user_id=existing.id)
                raise DuplicateIdentityError(existing.id) from e
            await session.refresh(user)
            logger.info("user_created", user_id=user.id, tenant_id=tenant_id, provider=provider)
            return user

    async def link_external_account(self, user_id: str, provider: str, account_id: str) -> None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(Account).where(
                col(Account.user_id) == user_id,
                col(Account.provider) == provider,
                col(Account.account_id) == account_id,
            )
            result = await session.execute(stmt)
            if result.scalars().first() is not None:
                return
            session.add(Account(user_id=user_id, provider=provider, account_id=account_id))
            try:
                await session.commit()
            except IntegrityError:
                # A concurrent request linked the same account first
                await session.rollback()
                return
            logger.info("account_linked", user_id=user_id, provider=provider)

    async def get_member_role(self, user_id: str, tenant_id: str) -> str | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(Member.role).where(
                col(Member.user_id) == user_id, col(Member.tenant_id) == tenant_id
            )
            result = await session.execute(stmt)
            return result.scalars().first()

    # -- invitations ---------------------------------------------------------

    async def create_invitation(self, invitation: Invitation) -> Invitation:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            session.add(invitation)
            await session.commit()
            await session.refresh(invitation)
            return invitation

    async def find_invitation(self, invitation_id: str) -> Invitation | None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            return await session.get(Invitation, invitation_id)

    async def mark_invitation_accepted(self, invitation_id: str) -> bool:
        from sqlmodel.ext.asyncio.session import AsyncSession

        inv = Invitation.__table__
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(inv)
                .where(inv.c.id == invitation_id, inv.c.status == InvitationStatus.PENDING)
                .values(status=InvitationStatus.ACCEPTED)
            )
            await session.commit()
            return result.rowcount == 1

    # -- verification codes --------------------------------------------------

    async def create_verification_code(
        self, identifier: str, code: str, expires_at: datetime
    ) -> VerificationCode:
        from sqlmodel.ext.asyncio.session import AsyncSession

        codes = VerificationCode.__table__
        row = VerificationCode(identifier=identifier, code=code, expires_at=expires_at)
        async with AsyncSession(self._engine) as session:
            await session.execute(delete(codes).where(codes.c.identifier == identifier))
            session.add(row)
            await session.commit()
            await session.refresh(row)
            return row

    async def find_verification_code(self, identifier: str) -> VerificationCode | None:
        from sqlmodel import col, select
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            stmt = select(VerificationCode).where(col(VerificationCode.identifier) == identifier)
            result = await session.execute(stmt)
            return result.scalars().first()

    async def consume_verification_code(self, identifier: str, code: str) -> bool:
        from sqlmodel.ext.asyncio.session import AsyncSession

        codes = VerificationCode.__table__
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                delete(codes)
                .where(codes.c.identifier == identifier, codes.c.code == code)
                .returning(codes.c.id)
            )
            consumed = result.first() is not None
            await session.commit()
            return consumed

    async def extend_verification_code(self, identifier: str, expires_at: datetime) -> bool:
        from sqlmodel.ext.asyncio.session import AsyncSession

        codes = VerificationCode.__table__
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                update(codes)
                .where(codes.c.identifier == identifier, codes.c.extended == false())
                .values(expires_at=expires_at, extended=True)
            )
            await session.commit()
            return result.rowcount == 1

    # -- session transfer ----------------------------------------------------

    async def create_session_transfer_token(self, token: SessionTransferToken) -> None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        async with AsyncSession(self._engine) as session:
            session.add(token)
            await session.commit()

    async def consume_session_transfer_token(self, token: str) -> SessionTransferToken | None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        table = SessionTransferToken.__table__
        async with AsyncSession(self._engine) as session:
            result = await session.execute(
                delete(table).where(table.c.token == token).returning(*table.c)
            )
            row = result.mappings().first()
            await session.commit()
            if row is None:
                return None
            return SessionTransferToken(**dict(row))

    # -- helpers -------------------------------------------------------------

    async def _provider_row(
        self, session: Any, tenant_id: str, provider: str, context: str
    ) -> TenantAuthProvider | None:
        from sqlmodel import col, select

        stmt = select(TenantAuthProvider).where(
            col(TenantAuthProvider.tenant_id) == tenant_id,
            col(TenantAuthProvider.provider) == provider,
            col(TenantAuthProvider.context) == context,
        )
        result = await session.execute(stmt)
        return result.scalars().first()

    async def _swap_primary(self, session: Any, tenant_id: str, domain_id: str) -> None:
        from sqlmodel import col

        await session.execute(
            update(Domain).where(col(Domain.tenant_id) == tenant_id).values(is_primary=False)
        )
        await session.execute(
            update(Domain)
            .where(col(Domain.id) == domain_id, col(Domain.tenant_id) == tenant_id)
            .values(is_primary=True)
        )
