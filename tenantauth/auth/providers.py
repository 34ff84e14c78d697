"""External identity providers: Google, GitHub and tenant-configured OIDC.

Every outbound call goes through ``httpx.AsyncClient`` with a bounded
timeout. Failures surface as ``UpstreamError`` and are never retried.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode

import httpx
import structlog

from tenantauth.exceptions import ConfigError, InvalidStateError, UpstreamError
from tenantauth.models.domain import ExternalProfile, ProviderTokens
from tenantauth.types import OAuthProvider

if TYPE_CHECKING:
    from tenantauth.auth.crypto import SecretCipher
    from tenantauth.config.settings import Settings
    from tenantauth.models.database import TenantAuthProvider

logger = structlog.get_logger(__name__)


class IdentityProvider(ABC):
    """Abstract base for OAuth 2.0 / OIDC identity providers (PKCE, S256)."""

    name: str = ""

    def __init__(self, client_id: str, client_secret: str, timeout: float = 10.0) -> None:
        self._client_id = client_id
        self._client_secret = client_secret
        self._timeout = timeout

    @abstractmethod
    async def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        """Build the URL the browser is sent to."""

    @abstractmethod
    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: str
    ) -> ProviderTokens:
        """Trade an authorization code for tokens."""

    @abstractmethod
    async def fetch_profile(self, tokens: ProviderTokens) -> ExternalProfile:
        """Fetch the signed-in user's profile."""

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Any:
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.request(method, url, **kwargs)
                resp.raise_for_status()
                return resp.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning("provider_request_failed", provider=self.name, url=url, error=str(e))
            msg = f"{self.name} request failed"
            raise UpstreamError(msg) from e


def _access_token(data: Any, provider: str) -> ProviderTokens:
    if not isinstance(data, dict) or "access_token" not in data:
        error = data.get("error") if isinstance(data, dict) else None
        logger.warning("provider_token_missing", provider=provider, error=error)
        msg = f"{provider} did not return an access token"
        raise UpstreamError(msg)
    return ProviderTokens(
        access_token=data["access_token"],
        token_type=data.get("token_type", "Bearer"),
        id_token=data.get("id_token"),
    )


# ---------------------------------------------------------------------------
# Google
# ---------------------------------------------------------------------------


class GoogleProvider(IdentityProvider):
    name = OAuthProvider.GOOGLE

    AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
    TOKEN_URL = "https://oauth2.googleapis.com/token"  # nosec B105
    USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"

    async def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
            "access_type": "offline",
            "prompt": "select_account",
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: str
    ) -> ProviderTokens:
        data = await self._request_json(
            "POST",
            self.TOKEN_URL,
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code_verifier": code_verifier,
            },
        )
        return _access_token(data, self.name)

    async def fetch_profile(self, tokens: ProviderTokens) -> ExternalProfile:
        data = await self._request_json(
            "GET",
            self.USERINFO_URL,
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        if not data.get("id") or not data.get("email"):
            raise UpstreamError("google profile is missing id or email")
        if not data.get("verified_email"):
            raise UpstreamError("google account email is not verified")
        return ExternalProfile(
            account_id=str(data["id"]),
            email=data["email"],
            name=data.get("name"),
            avatar=data.get("picture"),
            email_verified=True,
        )


# ---------------------------------------------------------------------------
# GitHub
# ---------------------------------------------------------------------------


class GitHubProvider(IdentityProvider):
    name = OAuthProvider.GITHUB

    AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
    TOKEN_URL = "https://github.com/login/oauth/access_token"  # nosec B105
    API_URL = "https://api.github.com"
    USER_AGENT = "tenantauth"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
        require_verified_email: bool = False,
    ) -> None:
        super().__init__(client_id, client_secret, timeout)
        self._require_verified = require_verified_email

    async def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        params = {
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": "read:user user:email",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: str
    ) -> ProviderTokens:
        data = await self._request_json(
            "POST",
            self.TOKEN_URL,
            json={
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code": code,
                "redirect_uri": redirect_uri,
                "code_verifier": code_verifier,
            },
            headers={"Accept": "application/json"},
        )
        return _access_token(data, self.name)

    async def fetch_profile(self, tokens: ProviderTokens) -> ExternalProfile:
        headers = {
            "Authorization": f"Bearer {tokens.access_token}",
            "Accept": "application/vnd.github+json",
            "User-Agent": self.USER_AGENT,
        }
        user = await self._request_json("GET", f"{self.API_URL}/user", headers=headers)
        emails = await self._request_json("GET", f"{self.API_URL}/user/emails", headers=headers)

        chosen = self._pick_email(emails if isinstance(emails, list) else [])
        if chosen is None or not user.get("id"):
            raise UpstreamError("github profile has no usable email")
        return ExternalProfile(
            account_id=str(user["id"]),
            email=chosen["email"],
            name=user.get("name") or user.get("login"),
            avatar=user.get("avatar_url"),
            email_verified=bool(chosen.get("verified", False)),
        )

    def _pick_email(self, emails: list[dict[str, Any]]) -> dict[str, Any] | None:
        """Prefer the primary verified address, otherwise the first listed one."""
        usable = [e for e in emails if isinstance(e, dict) and e.get("email")]
        if self._require_verified:
            usable = [e for e in usable if e.get("verified")]
        primary = next((e for e in usable if e.get("primary") and e.get("verified")), None)
        return primary or (usable[0] if usable else None)


# ---------------------------------------------------------------------------
# Enterprise OIDC
# ---------------------------------------------------------------------------


class OidcProvider(IdentityProvider):
    """Generic OIDC issuer configured per tenant, found through discovery."""

    name = OAuthProvider.OIDC

    def __init__(
        self,
        issuer: str,
        client_id: str,
        client_secret: str,
        timeout: float = 10.0,
    ) -> None:
        super().__init__(client_id, client_secret, timeout)
        self._issuer = issuer.rstrip("/")
        self._discovery: dict[str, Any] | None = None

    async def get_discovery(self) -> dict[str, Any]:
        if self._discovery:
            return self._discovery
        data = await self._request_json(
            "GET", f"{self._issuer}/.well-known/openid-configuration"
        )
        missing = [
            k
            for k in ("authorization_endpoint", "token_endpoint", "userinfo_endpoint")
            if not isinstance(data, dict) or not data.get(k)
        ]
        if missing:
            msg = f"OIDC discovery document missing: {', '.join(missing)}"
            raise UpstreamError(msg)
        self._discovery = data
        return data

    async def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        discovery = await self.get_discovery()
        params = {
            "response_type": "code",
            "client_id": self._client_id,
            "redirect_uri": redirect_uri,
            "scope": "openid email profile",
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{discovery['authorization_endpoint']}?{urlencode(params)}"

    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: str
    ) -> ProviderTokens:
        discovery = await self.get_discovery()
        data = await self._request_json(
            "POST",
            discovery["token_endpoint"],
            data={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": redirect_uri,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "code_verifier": code_verifier,
            },
        )
        return _access_token(data, self.name)

    async def fetch_profile(self, tokens: ProviderTokens) -> ExternalProfile:
        discovery = await self.get_discovery()
        data = await self._request_json(
            "GET",
            discovery["userinfo_endpoint"],
            headers={"Authorization": f"Bearer {tokens.access_token}"},
        )
        if not data.get("sub") or not data.get("email"):
            raise UpstreamError("OIDC userinfo is missing sub or email")
        # Providers that omit the claim are treated as unverified
        if data.get("email_verified") is not True:
            raise UpstreamError("OIDC email is not verified")
        return ExternalProfile(
            account_id=str(data["sub"]),
            email=data["email"],
            name=data.get("name") or data.get("preferred_username"),
            avatar=data.get("picture"),
            email_verified=True,
        )


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


def create_identity_provider(
    provider: OAuthProvider | str,
    settings: Settings,
    config: TenantAuthProvider | None = None,
    cipher: SecretCipher | None = None,
) -> IdentityProvider:
    """Create a provider using platform credentials, or tenant config for OIDC."""
    provider_str = str(provider)
    timeout = settings.http_timeout_seconds

    if provider_str == OAuthProvider.GOOGLE:
        if not settings.google_client_id or not settings.google_client_secret:
            raise ConfigError("Google OAuth is not configured")
        return GoogleProvider(settings.google_client_id, settings.google_client_secret, timeout)
    elif provider_str == OAuthProvider.GITHUB:
        if not settings.github_client_id or not settings.github_client_secret:
            raise ConfigError("GitHub OAuth is not configured")
        return GitHubProvider(
            settings.github_client_id,
            settings.github_client_secret,
            timeout,
            require_verified_email=settings.github_require_verified_email,
        )
    elif provider_str == OAuthProvider.OIDC:
        if (
            config is None
            or not config.issuer
            or not config.client_id
            or not config.client_secret_encrypted
            or cipher is None
        ):
            raise ConfigError("OIDC is not configured for this workspace")
        try:
            client_secret = cipher.decrypt(config.client_secret_encrypted)
        except InvalidStateError as e:
            raise ConfigError("OIDC client secret could not be decrypted") from e
        return OidcProvider(config.issuer, config.client_id, client_secret, timeout)
    else:
        raise ConfigError(f"Unsupported identity provider: {provider}")
