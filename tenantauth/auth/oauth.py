"""Signed-state OAuth initiation and the shared callback.

Everything the callback needs (tenant, context, where to send the browser
afterwards, the encrypted PKCE verifier) travels inside the signed state,
so the callback endpoint keeps no per-flow server state and can live on a
different origin than the tenant.
"""

from __future__ import annotations

import hmac
import secrets
from typing import TYPE_CHECKING, Any
from urllib.parse import urlencode, urlsplit

import structlog

from tenantauth.auth.crypto import generate_pkce_pair
from tenantauth.auth.providers import create_identity_provider
from tenantauth.auth.tenant_resolver import normalize_host
from tenantauth.exceptions import (
    ConfigError,
    EmailDomainMismatchError,
    ForbiddenError,
    InvalidStateError,
    NotFoundError,
    SignupNotAllowedError,
    UpstreamError,
    ValidationError,
)
from tenantauth.models.domain import CallbackResult, InitiateResult
from tenantauth.types import AuthContext, OAuthProvider

if TYPE_CHECKING:
    from collections.abc import Callable

    from tenantauth.auth.crypto import SecretCipher
    from tenantauth.auth.identity import IdentityLinker
    from tenantauth.auth.providers import IdentityProvider
    from tenantauth.auth.session_transfer import SessionTransferBroker
    from tenantauth.auth.state_signer import StateSigner
    from tenantauth.auth.tenant_resolver import TenantResolver
    from tenantauth.config.settings import Settings
    from tenantauth.models.database import Tenant, TenantAuthProvider
    from tenantauth.storage.directory import Directory

    ProviderFactory = Callable[[str, TenantAuthProvider | None], IdentityProvider]

logger = structlog.get_logger(__name__)

PROVIDER_UNAVAILABLE = "Provider not available"

# Error codes appended to the callback path
ERROR_EXPIRED = "auth_expired"
ERROR_INVALID_STATE = "invalid_state"
ERROR_FAILED = "auth_failed"
ERROR_DOMAIN_MISMATCH = "email_domain_mismatch"
ERROR_SIGNUP_NOT_ALLOWED = "signup_not_allowed"


def validate_callback_path(path: str | None) -> str:
    """Accept only same-origin relative paths such as ``/dashboard?tab=1``."""
    if not path:
        return "/"
    parts = urlsplit(path)
    if (
        not path.startswith("/")
        or path.startswith("//")
        or "\\" in path
        or parts.scheme
        or parts.netloc
        or any(ord(ch) < 0x20 for ch in path)
    ):
        raise ValidationError("Invalid callback path")
    return path


def build_url(scheme: str, domain: str, path: str, **params: str) -> str:
    url = f"{scheme}://{domain}{path}"
    if params:
        url += ("&" if "?" in path else "?") + urlencode(params)
    return url


class OAuthService:
    """Initiates provider sign-in and completes it on the shared callback."""

    def __init__(
        self,
        directory: Directory,
        resolver: TenantResolver,
        signer: StateSigner,
        cipher: SecretCipher,
        linker: IdentityLinker,
        broker: SessionTransferBroker,
        settings: Settings,
        provider_factory: ProviderFactory | None = None,
    ) -> None:
        self._directory = directory
        self._resolver = resolver
        self._signer = signer
        self._cipher = cipher
        self._linker = linker
        self._broker = broker
        self._settings = settings
        self._provider_factory = provider_factory or self._default_factory

    @property
    def redirect_uri(self) -> str:
        return f"{self._settings.public_scheme}://{self._settings.app_domain}/auth/oauth/callback"

    # -- initiation ----------------------------------------------------------

    async def initiate(
        self,
        provider: str,
        *,
        context: AuthContext | str,
        return_domain: str,
        callback_path: str | None = "/",
        tenant_slug: str | None = None,
        host: str | None = None,
        popup: bool = False,
        invitation_id: str | None = None,
    ) -> InitiateResult:
        """Build the provider authorization URL and the signed state it carries.

        An unknown tenant, unknown provider and a provider the tenant has not
        enabled for ``context`` all yield the same ``ForbiddenError``.
        """
        try:
            provider_name = OAuthProvider(provider)
            auth_context = AuthContext(context)
            tenant = await self._resolver.resolve(host=host, slug=tenant_slug)
        except (ValueError, NotFoundError) as e:
            raise ForbiddenError(PROVIDER_UNAVAILABLE) from e
        idp = await self._provider(tenant, provider_name, auth_context)

        domain = normalize_host(return_domain)
        if domain is None or not await self._resolver.owns_domain(tenant, domain):
            raise ForbiddenError("Return domain is not registered for this workspace")
        path = validate_callback_path(callback_path)

        verifier, challenge = generate_pkce_pair()
        nonce = secrets.token_hex(16)
        token = self._signer.sign(
            {
                "provider": str(provider_name),
                "tenant_slug": tenant.slug,
                "context": str(auth_context),
                "return_domain": domain,
                "callback_path": path,
                "redirect_uri": self.redirect_uri,
                "popup": bool(popup),
                "invitation_id": invitation_id,
                "code_verifier": self._cipher.encrypt(verifier),
                "nonce": nonce,
            }
        )
        try:
            url = await idp.authorization_url(
                self.redirect_uri, f"{provider_name}:{token}", challenge
            )
        except UpstreamError as e:
            raise ForbiddenError(PROVIDER_UNAVAILABLE) from e
        logger.info(
            "oauth_initiated", tenant_id=tenant.id, provider=provider_name, context=auth_context
        )
        return InitiateResult(url=url, state_token=token, nonce=nonce)

    # -- callback ------------------------------------------------------------

    async def callback(
        self,
        code: str | None,
        state: str | None,
        host: str | None,
        state_cookie: str | None = None,
        provider_error: str | None = None,
    ) -> CallbackResult:
        """Complete a sign-in and decide where the browser goes next.

        Raises ``InvalidStateError`` when the state cannot be trusted at all
        (there is no verified return address to send an error to). Every
        later failure redirects to the original callback path with ``error``.
        """
        payload = self._verify_state(state, state_cookie)
        scheme = self._settings.public_scheme
        return_domain: str = payload["return_domain"]
        callback_path: str = payload.get("callback_path") or "/"

        def fail(error: str) -> CallbackResult:
            return CallbackResult(
                redirect_url=build_url(scheme, return_domain, callback_path, error=error)
            )

        if not self._signer.is_fresh(payload, self._settings.oauth_state_max_age):
            logger.info("oauth_state_expired", provider=payload["provider"])
            return fail(ERROR_EXPIRED)
        if provider_error or not code:
            logger.info("oauth_provider_denied", provider=payload["provider"], error=provider_error)
            return fail(ERROR_FAILED)

        try:
            verifier = self._cipher.decrypt(payload["code_verifier"])
            context = AuthContext(payload["context"])
        except (InvalidStateError, KeyError, TypeError, ValueError):
            return fail(ERROR_INVALID_STATE)

        tenant = await self._directory.find_tenant_by_slug(payload.get("tenant_slug") or "")
        if tenant is None:
            return fail(ERROR_INVALID_STATE)
        provider = payload["provider"]

        try:
            idp = await self._provider(tenant, provider, context)
            tokens = await idp.exchange_code(code, payload["redirect_uri"], verifier)
            profile = await idp.fetch_profile(tokens)
            await self._check_email_domain(tenant, provider, context, profile.email)
            link = await self._linker.resolve(
                tenant, context, profile, provider, payload.get("invitation_id")
            )
        except EmailDomainMismatchError:
            return fail(ERROR_DOMAIN_MISMATCH)
        except SignupNotAllowedError:
            return fail(ERROR_SIGNUP_NOT_ALLOWED)
        except (UpstreamError, ConfigError, ForbiddenError, ValidationError) as e:
            logger.warning(
                "oauth_callback_failed", tenant_id=tenant.id, provider=provider, error=str(e)
            )
            return fail(ERROR_FAILED)

        popup = bool(payload.get("popup"))
        if normalize_host(host) == return_domain:
            return CallbackResult(
                redirect_url=build_url(scheme, return_domain, callback_path),
                user_id=link.user_id,
                tenant_id=tenant.id,
                context=context,
                establish_session=True,
                popup=popup,
            )

        transfer = await self._broker.issue(
            link.user_id, tenant.id, return_domain, callback_path, context, popup
        )
        logger.info(
            "oauth_completed", tenant_id=tenant.id, user_id=link.user_id, created=link.created
        )
        return CallbackResult(
            redirect_url=build_url(scheme, return_domain, "/auth/trust-login", token=transfer),
            user_id=link.user_id,
            tenant_id=tenant.id,
            context=context,
        )

    # -- helpers -------------------------------------------------------------

    def _verify_state(self, state: str | None, state_cookie: str | None) -> dict[str, Any]:
        if not state or ":" not in state:
            raise InvalidStateError("Invalid state")
        provider, token = state.split(":", 1)
        payload = self._signer.verify(token)
        if payload is None or payload.get("provider") != provider:
            logger.warning("oauth_state_rejected", provider=provider)
            raise InvalidStateError("Invalid state")
        if not isinstance(payload.get("return_domain"), str) or not isinstance(
            payload.get("nonce"), str
        ):
            raise InvalidStateError("Invalid state")
        if state_cookie is not None and not hmac.compare_digest(
            state_cookie.encode(), payload["nonce"].encode()
        ):
            logger.warning("oauth_state_cookie_mismatch", provider=provider)
            raise InvalidStateError("Invalid state")
        return payload

    async def _provider(
        self, tenant: Tenant, provider: str, context: AuthContext
    ) -> IdentityProvider:
        """Build the provider client, re-checking that the tenant still enables it."""
        if not await self._directory.is_provider_enabled(tenant.id, provider, context):
            logger.info("oauth_provider_disabled", tenant_id=tenant.id, provider=provider)
            raise ForbiddenError(PROVIDER_UNAVAILABLE)
        config = None
        if provider == OAuthProvider.OIDC:
            config = await self._directory.get_provider_config(tenant.id, provider, context)
        try:
            return self._provider_factory(provider, config)
        except ConfigError as e:
            logger.warning("oauth_provider_misconfigured", tenant_id=tenant.id, provider=provider)
            raise ForbiddenError(PROVIDER_UNAVAILABLE) from e

    async def _check_email_domain(
        self, tenant: Tenant, provider: str, context: AuthContext, email: str
    ) -> None:
        if provider != OAuthProvider.OIDC:
            return
        config = await self._directory.get_provider_config(tenant.id, provider, context)
        allowed = (config.email_domain or "").strip().lower().lstrip("@") if config else ""
        if allowed and not email.strip().lower().endswith(f"@{allowed}"):
            logger.info("oauth_email_domain_mismatch", tenant_id=tenant.id)
            raise EmailDomainMismatchError("Email domain is not allowed for this workspace")

    def _default_factory(
        self, provider: str, config: TenantAuthProvider | None
    ) -> IdentityProvider:
        return create_identity_provider(provider, self._settings, config, self._cipher)
