"""Small cryptographic helpers: PKCE, secret encryption, isolated identity keys."""

from __future__ import annotations

import base64
import hashlib
import hmac
import secrets

from cryptography.fernet import Fernet, InvalidToken

from tenantauth.exceptions import InvalidStateError

ISOLATED_EMAIL_DOMAIN = "isolated.invalid"


def generate_pkce_pair() -> tuple[str, str]:
    """Return ``(code_verifier, code_challenge)`` using the S256 method."""
    verifier = secrets.token_urlsafe(48)  # 64 URL-safe characters
    return verifier, pkce_challenge(verifier)


def pkce_challenge(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


def derive_fernet_key(secret: str) -> bytes:
    """Derive a Fernet key from the process secret."""
    digest = hashlib.sha256(b"tenantauth-fernet:" + secret.encode()).digest()
    return base64.urlsafe_b64encode(digest)


class SecretCipher:
    """Fernet wrapper for values that must not be readable in transit or at rest.

    Used for the PKCE verifier carried inside signed state and for per-tenant
    OIDC client secrets.
    """

    def __init__(self, key: str | bytes) -> None:
        self._fernet = Fernet(key)

    @classmethod
    def from_settings(cls, secret_key: str, encryption_key: str | None = None) -> SecretCipher:
        return cls(encryption_key or derive_fernet_key(secret_key))

    def encrypt(self, value: str) -> str:
        return self._fernet.encrypt(value.encode()).decode("ascii")

    def decrypt(self, token: str) -> str:
        try:
            return self._fernet.decrypt(token.encode("ascii")).decode()
        except (InvalidToken, UnicodeError, ValueError) as e:
            msg = "Encrypted value could not be decrypted"
            raise InvalidStateError(msg) from e


def isolated_email(sso_salt: str, email: str) -> str:
    """Tenant-scoped natural key for identities in strict SSO mode.

    Different tenants produce unrelated keys for the same address, so an
    external login can never attach to a pre-existing local account.
    """
    digest = hmac.new(
        sso_salt.encode(), email.strip().lower().encode(), hashlib.sha256
    ).hexdigest()
    return f"sso-{digest[:32]}@{ISOLATED_EMAIL_DOMAIN}"


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()
