"""Exception hierarchy for tenantauth.

Each error carries the HTTP status the web layer maps it to.
"""

from __future__ import annotations


class TenantAuthError(Exception):
    """Base exception for all tenantauth errors."""

    http_status: int = 500


class ValidationError(TenantAuthError):
    """Raised when caller input is malformed."""

    http_status = 400


class NotFoundError(TenantAuthError):
    """Raised when a tenant, user or other record cannot be located."""

    http_status = 404


class ForbiddenError(TenantAuthError):
    """Raised when an operation is not permitted for this tenant or context."""

    http_status = 403


class SignupNotAllowedError(ForbiddenError):
    """Raised when a new identity may not join the tenant in this context."""


class EmailDomainMismatchError(ForbiddenError):
    """Raised when an SSO email is outside the domain the tenant allows."""


class InvalidStateError(TenantAuthError):
    """Raised when a signed state, code or token fails verification."""

    http_status = 400


class InvalidCodeError(InvalidStateError):
    """Raised when a one-time code is missing, expired or wrong."""


class TransferInvalidError(InvalidStateError):
    """Raised when a session transfer token is unknown or bound elsewhere."""


class TransferExpiredError(InvalidStateError):
    """Raised when a session transfer token is past its expiry."""


class TransferAlreadyUsedError(InvalidStateError):
    """Raised when a session transfer token was already redeemed."""


class RateLimitedError(TenantAuthError):
    """Raised when a client exceeds an operation's rate limit."""

    http_status = 429

    def __init__(self, message: str = "Too many requests", retry_after: int = 60) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class UpstreamError(TenantAuthError):
    """Raised when an identity provider call fails or times out."""

    http_status = 502


class DuplicateIdentityError(TenantAuthError):
    """Raised when a user with the same tenant-scoped key already exists."""

    http_status = 409

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User already exists: {user_id}")
        self.user_id = user_id


class StorageError(TenantAuthError):
    """Raised when storage operations fail."""


class ConfigError(TenantAuthError):
    """Raised when configuration is invalid."""
