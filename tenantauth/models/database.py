"""SQLModel database table models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime

from sqlalchemy import UniqueConstraint
from sqlmodel import Field, SQLModel


def _utc_now() -> datetime:
    """Return current UTC time as naive datetime for TIMESTAMP WITHOUT TIME ZONE columns."""
    return datetime.now(UTC).replace(tzinfo=None)


def _new_uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Tenants and their domains
# ---------------------------------------------------------------------------


class Tenant(SQLModel, table=True):
    __tablename__ = "tenants"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    slug: str = Field(unique=True, index=True)
    name: str
    open_signup_enabled: bool = Field(default=False)
    portal_auth_enabled: bool = Field(default=True)
    strict_sso_mode: bool = Field(default=False)
    sso_salt: str  # per-tenant secret for isolated identity keys
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


class Domain(SQLModel, table=True):
    __tablename__ = "domains"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    domain: str = Field(unique=True, index=True)  # lowercase host, port kept
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    kind: str = Field(default="custom")  # subdomain | custom
    verified: bool = Field(default=False)
    is_primary: bool = Field(default=False)
    verification_token: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)


class TenantAuthProvider(SQLModel, table=True):
    """Per-tenant, per-context enablement of an identity provider."""

    __tablename__ = "tenant_auth_providers"
    __table_args__ = (
        UniqueConstraint("tenant_id", "provider", "context", name="uq_tenant_provider_context"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    provider: str  # google | github | oidc
    context: str  # team | portal
    enabled: bool = Field(default=True)
    # OIDC only
    issuer: str | None = None
    client_id: str | None = None
    client_secret_encrypted: str | None = None
    email_domain: str | None = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Identities
# ---------------------------------------------------------------------------


class User(SQLModel, table=True):
    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    email: str = Field(index=True)  # natural key; derived key for isolated identities
    real_email: str | None = Field(default=None, index=True)  # set for isolated identities
    email_verified: bool = Field(default=False)
    name: str = ""
    image: str | None = None
    metadata_json: str = Field(default="{}")
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    @property
    def contact_email(self) -> str:
        return self.real_email or self.email


class Member(SQLModel, table=True):
    __tablename__ = "members"
    __table_args__ = (UniqueConstraint("user_id", "tenant_id", name="uq_members_user_tenant"),)

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    role: str = Field(default="member")  # owner | admin | member | user
    created_at: datetime = Field(default_factory=_utc_now)


class Account(SQLModel, table=True):
    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("provider", "account_id", "user_id", name="uq_accounts_provider_user"),
    )

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    provider: str  # google | github | oidc | otp
    account_id: str = Field(index=True)
    created_at: datetime = Field(default_factory=_utc_now)


class Invitation(SQLModel, table=True):
    __tablename__ = "invitations"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str = Field(foreign_key="tenants.id", index=True)
    email: str
    role: str = Field(default="member")
    status: str = Field(default="pending")  # pending | accepted | expired | canceled
    inviter_name: str = ""
    expires_at: datetime
    created_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Short-lived credentials
# ---------------------------------------------------------------------------


class VerificationCode(SQLModel, table=True):
    __tablename__ = "verification_codes"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    identifier: str = Field(unique=True, index=True)
    code: str
    expires_at: datetime
    extended: bool = Field(default=False)
    created_at: datetime = Field(default_factory=_utc_now)


class SessionTransferToken(SQLModel, table=True):
    __tablename__ = "session_transfer_tokens"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    token: str = Field(unique=True, index=True)
    user_id: str = Field(foreign_key="users.id")
    tenant_id: str = Field(foreign_key="tenants.id")
    target_domain: str
    callback_path: str = "/"
    context: str = Field(default="portal")
    popup: bool = Field(default=False)
    expires_at: datetime
    created_at: datetime = Field(default_factory=_utc_now)


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: str = Field(default_factory=_new_uuid, primary_key=True)
    tenant_id: str = Field(default="", index=True)
    user_id: str = Field(default="")
    action: str = Field(index=True)
    resource_type: str = Field(default="")
    resource_id: str = Field(default="")
    details_json: str = Field(default="{}")
    ip_address: str = Field(default="")
    request_id: str = Field(default="")
    created_at: datetime = Field(default_factory=_utc_now)
