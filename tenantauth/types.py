"""Enums and type aliases for tenantauth."""

from enum import StrEnum


class AuthContext(StrEnum):
    TEAM = "team"
    PORTAL = "portal"


class OAuthProvider(StrEnum):
    GOOGLE = "google"
    GITHUB = "github"
    OIDC = "oidc"


class DomainKind(StrEnum):
    SUBDOMAIN = "subdomain"
    CUSTOM = "custom"


class InvitationStatus(StrEnum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    EXPIRED = "expired"
    CANCELED = "canceled"


class MemberRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    USER = "user"


class VerifyAction(StrEnum):
    LOGIN = "login"
    NEEDS_SIGNUP = "needsSignup"
    SIGNUP = "signup"


class AuditAction(StrEnum):
    OTP_SENT = "auth.otp_sent"
    LOGIN = "auth.login"
    SIGNUP = "auth.signup"
    OAUTH_LOGIN = "auth.oauth_login"
    TRANSFER_REDEEMED = "auth.transfer_redeemed"
    LOGOUT = "auth.logout"


# Pseudo-provider recorded on accounts created through one-time codes
OTP_PROVIDER_ID = "otp"
