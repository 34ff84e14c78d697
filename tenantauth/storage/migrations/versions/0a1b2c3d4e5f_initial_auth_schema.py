"""initial auth schema

Revision ID: 0a1b2c3d4e5f
Revises:
Create Date: 2026-10-19 10:00:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
import sqlmodel.sql.sqltypes
from alembic import op

# revision identifiers, used by Alembic.
revision: str = "0a1b2c3d4e5f"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

_str = sqlmodel.sql.sqltypes.AutoString


def upgrade() -> None:
    """Create tenant, identity, credential and audit tables."""
    op.create_table(
        "tenants",
        sa.Column("id", _str(), nullable=False),
        sa.Column("slug", _str(), nullable=False),
        sa.Column("name", _str(), nullable=False),
        sa.Column("open_signup_enabled", sa.Boolean(), nullable=False),
        sa.Column("portal_auth_enabled", sa.Boolean(), nullable=False),
        sa.Column("strict_sso_mode", sa.Boolean(), nullable=False),
        sa.Column("sso_salt", _str(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_tenants_slug"), "tenants", ["slug"], unique=True)

    op.create_table(
        "domains",
        sa.Column("id", _str(), nullable=False),
        sa.Column("domain", _str(), nullable=False),
        sa.Column("tenant_id", _str(), nullable=False),
        sa.Column("kind", _str(), nullable=False),
        sa.Column("verified", sa.Boolean(), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False),
        sa.Column("verification_token", _str(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_domains_domain"), "domains", ["domain"], unique=True)
    op.create_index(op.f("ix_domains_tenant_id"), "domains", ["tenant_id"])

    op.create_table(
        "tenant_auth_providers",
        sa.Column("id", _str(), nullable=False),
        sa.Column("tenant_id", _str(), nullable=False),
        sa.Column("provider", _str(), nullable=False),
        sa.Column("context", _str(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False),
        sa.Column("issuer", _str(), nullable=True),
        sa.Column("client_id", _str(), nullable=True),
        sa.Column("client_secret_encrypted", _str(), nullable=True),
        sa.Column("email_domain", _str(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "tenant_id", "provider", "context", name="uq_tenant_provider_context"
        ),
    )
    op.create_index(
        op.f("ix_tenant_auth_providers_tenant_id"), "tenant_auth_providers", ["tenant_id"]
    )

    op.create_table(
        "users",
        sa.Column("id", _str(), nullable=False),
        sa.Column("tenant_id", _str(), nullable=False),
        sa.Column("email", _str(), nullable=False),
        sa.Column("real_email", _str(), nullable=True),
        sa.Column("email_verified", sa.Boolean(), nullable=False),
        sa.Column("name", _str(), nullable=False),
        sa.Column("image", _str(), nullable=True),
        sa.Column("metadata_json", _str(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("tenant_id", "email", name="uq_users_tenant_email"),
    )
    op.create_index(op.f("ix_users_tenant_id"), "users", ["tenant_id"])
    op.create_index(op.f("ix_users_email"), "users", ["email"])
    op.create_index(op.f("ix_users_real_email"), "users", ["real_email"])

    op.create_table(
        "members",
        sa.Column("id", _str(), nullable=False),
        sa.Column("user_id", _str(), nullable=False),
        sa.Column("tenant_id", _str(), nullable=False),
        sa.Column("role", _str(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("user_id", "tenant_id", name="uq_members_user_tenant"),
    )
    op.create_index(op.f("ix_members_user_id"), "members", ["user_id"])
    op.create_index(op.f("ix_members_tenant_id"), "members", ["tenant_id"])

    op.create_table(
        "accounts",
        sa.Column("id", _str(), nullable=False),
        sa.Column("user_id", _str(), nullable=False),
        sa.Column("provider", _str(), nullable=False),
        sa.Column("account_id", _str(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint(
            "provider", "account_id", "user_id", name="uq_accounts_provider_user"
        ),
    )
    op.create_index(op.f("ix_accounts_user_id"), "accounts", ["user_id"])
    op.create_index(op.f("ix_accounts_account_id"), "accounts", ["account_id"])

    op.create_table(
        "invitations",
        sa.Column("id", _str(), nullable=False),
        sa.Column("tenant_id", _str(), nullable=False),
        sa.Column("email", _str(), nullable=False),
        sa.Column("role", _str(), nullable=False),
        sa.Column("status", _str(), nullable=False),
        sa.Column("inviter_name", _str(), nullable=False, server_default=""),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_invitations_tenant_id"), "invitations", ["tenant_id"])

    op.create_table(
        "verification_codes",
        sa.Column("id", _str(), nullable=False),
        sa.Column("identifier", _str(), nullable=False),
        sa.Column("code", _str(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("extended", sa.Boolean(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_verification_codes_identifier"), "verification_codes", ["identifier"], unique=True
    )

    op.create_table(
        "session_transfer_tokens",
        sa.Column("id", _str(), nullable=False),
        sa.Column("token", _str(), nullable=False),
        sa.Column("user_id", _str(), nullable=False),
        sa.Column("tenant_id", _str(), nullable=False),
        sa.Column("target_domain", _str(), nullable=False),
        sa.Column("callback_path", _str(), nullable=False),
        sa.Column("context", _str(), nullable=False),
        sa.Column("popup", sa.Boolean(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        op.f("ix_session_transfer_tokens_token"),
        "session_transfer_tokens",
        ["token"],
        unique=True,
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", _str(), nullable=False),
        sa.Column("tenant_id", _str(), nullable=False, server_default=""),
        sa.Column("user_id", _str(), nullable=False, server_default=""),
        sa.Column("action", _str(), nullable=False),
        sa.Column("resource_type", _str(), nullable=False, server_default=""),
        sa.Column("resource_id", _str(), nullable=False, server_default=""),
        sa.Column("details_json", _str(), nullable=False, server_default="{}"),
        sa.Column("ip_address", _str(), nullable=False, server_default=""),
        sa.Column("request_id", _str(), nullable=False, server_default=""),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(op.f("ix_audit_logs_tenant_id"), "audit_logs", ["tenant_id"])
    op.create_index(op.f("ix_audit_logs_action"), "audit_logs", ["action"])


def downgrade() -> None:
    """Drop all auth tables."""
    for table in (
        "audit_logs",
        "session_transfer_tokens",
        "verification_codes",
        "invitations",
        "accounts",
        "members",
        "users",
        "tenant_auth_providers",
        "domains",
        "tenants",
    ):
        op.drop_table(table)
