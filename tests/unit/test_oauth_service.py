"""Unit tests for OAuthService initiation and callback."""

from __future__ import annotations

import time
from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlsplit

import pytest

from tenantauth.auth.crypto import pkce_challenge
from tenantauth.auth.oauth import PROVIDER_UNAVAILABLE, build_url, validate_callback_path
from tenantauth.auth.state_signer import StateSigner
from tenantauth.exceptions import ForbiddenError, InvalidStateError, UpstreamError, ValidationError
from tenantauth.models.domain import ExternalProfile

APP_DOMAIN = "auth.example.test"
TENANT_HOST = f"acme.{APP_DOMAIN}"


def _query(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(url).query).items()}


async def _initiate(services, **overrides):
    kwargs = {
        "context": "portal",
        "return_domain": TENANT_HOST,
        "callback_path": "/dashboard",
        "host": TENANT_HOST,
    }
    kwargs.update(overrides)
    provider = kwargs.pop("provider", "google")
    return await services.oauth.initiate(provider, **kwargs)


@pytest.mark.unit
class TestCallbackPath:
    @pytest.mark.parametrize("path", ["/", "/dashboard", "/a/b?tab=1"])
    def test_accepts_relative_paths(self, path: str) -> None:
        assert validate_callback_path(path) == path

    def test_empty_defaults_to_root(self) -> None:
        assert validate_callback_path(None) == "/"
        assert validate_callback_path("") == "/"

    @pytest.mark.parametrize(
        "path",
        ["dashboard", "//evil.com", "https://evil.com/", "/\\evil.com", "/a\nb", "javascript:x"],
    )
    def test_rejects_other_targets(self, path: str) -> None:
        with pytest.raises(ValidationError):
            validate_callback_path(path)

    def test_build_url(self) -> None:
        assert build_url("https", "a.test", "/p", error="x") == "https://a.test/p?error=x"
        assert build_url("https", "a.test", "/p?q=1", error="x") == "https://a.test/p?q=1&error=x"
        assert build_url("https", "a.test", "/p") == "https://a.test/p"


@pytest.mark.unit
class TestInitiate:
    async def test_returns_provider_url_with_signed_state(self, services, tenant, settings) -> None:
        result = await _initiate(services)
        params = _query(result.url)
        provider, token = params["state"].split(":", 1)
        assert provider == "google"
        assert token == result.state_token

        payload = StateSigner(settings.secret_key).verify(token)
        assert payload["tenant_slug"] == "acme"
        assert payload["return_domain"] == TENANT_HOST
        assert payload["callback_path"] == "/dashboard"
        assert payload["context"] == "portal"
        assert payload["redirect_uri"] == f"https://{APP_DOMAIN}/auth/oauth/callback"
        assert payload["nonce"] == result.nonce
        # The verifier never travels in the clear
        verifier = services.cipher.decrypt(payload["code_verifier"])
        assert payload["code_verifier"] != verifier
        assert pkce_challenge(verifier) == params["challenge"]

    async def test_slug_from_shared_origin(self, services, tenant) -> None:
        result = await _initiate(services, host=APP_DOMAIN, tenant_slug="acme")
        assert result.url.startswith("https://idp.example.test/")

    async def test_unknown_provider(self, services, tenant) -> None:
        with pytest.raises(ForbiddenError, match=PROVIDER_UNAVAILABLE):
            await _initiate(services, provider="myspace")

    async def test_provider_not_enabled(self, services, tenant) -> None:
        with pytest.raises(ForbiddenError, match=PROVIDER_UNAVAILABLE):
            await _initiate(services, provider="github")

    async def test_provider_disabled_in_context(self, services, tenant) -> None:
        await services.domains.configure_provider(tenant, "google", "team", enabled=False)
        with pytest.raises(ForbiddenError, match=PROVIDER_UNAVAILABLE):
            await _initiate(services, context="team")

    async def test_unknown_tenant_looks_like_disabled_provider(self, services, tenant) -> None:
        with pytest.raises(ForbiddenError, match=PROVIDER_UNAVAILABLE):
            await _initiate(services, host="nobody.example.org")

    async def test_foreign_return_domain(self, services, tenant) -> None:
        await services.domains.provision_tenant("other", "Other")
        with pytest.raises(ForbiddenError):
            await _initiate(services, return_domain=f"other.{APP_DOMAIN}")

    async def test_invalid_callback_path(self, services, tenant) -> None:
        with pytest.raises(ValidationError):
            await _initiate(services, callback_path="https://evil.com")


@pytest.mark.unit
class TestCallback:
    async def test_cross_origin_issues_transfer(self, services, tenant, fake_provider) -> None:
        init = await _initiate(services)
        state = _query(init.url)["state"]

        result = await services.oauth.callback("code-1", state, APP_DOMAIN)
        assert result.establish_session is False
        assert result.redirect_url.startswith(f"https://{TENANT_HOST}/auth/trust-login?token=")

        token = _query(result.redirect_url)["token"]
        redemption = await services.broker.redeem(token, TENANT_HOST)
        assert redemption.user_id == result.user_id
        assert redemption.callback_path == "/dashboard"

        code, redirect_uri, verifier = fake_provider.exchanged[0]
        assert code == "code-1"
        assert redirect_uri == f"https://{APP_DOMAIN}/auth/oauth/callback"
        assert pkce_challenge(verifier) == _query(init.url)["challenge"]

    async def test_same_origin_establishes_session(self, services, tenant) -> None:
        init = await _initiate(services, popup=True)
        result = await services.oauth.callback(
            "code-1", _query(init.url)["state"], TENANT_HOST, state_cookie=init.nonce
        )
        assert result.establish_session is True
        assert result.popup is True
        assert result.redirect_url == f"https://{TENANT_HOST}/dashboard"
        assert result.tenant_id == tenant.id

    @pytest.mark.parametrize("state", [None, "", "no-colon", "google:garbage"])
    async def test_untrusted_state(self, services, tenant, state) -> None:
        with pytest.raises(InvalidStateError):
            await services.oauth.callback("code", state, APP_DOMAIN)

    async def test_provider_prefix_must_match(self, services, tenant) -> None:
        init = await _initiate(services)
        with pytest.raises(InvalidStateError):
            await services.oauth.callback("code", f"github:{init.state_token}", APP_DOMAIN)

    async def test_state_cookie_mismatch(self, services, tenant) -> None:
        init = await _initiate(services)
        with pytest.raises(InvalidStateError):
            await services.oauth.callback(
                "code", _query(init.url)["state"], TENANT_HOST, state_cookie="other-nonce"
            )

    async def test_state_signed_with_other_secret(self, services, tenant) -> None:
        token = StateSigner("other-secret").sign(
            {"provider": "google", "return_domain": TENANT_HOST}
        )
        with pytest.raises(InvalidStateError):
            await services.oauth.callback("code", f"google:{token}", APP_DOMAIN)

    async def test_stale_state_redirects_with_error(self, services, tenant) -> None:
        init = await _initiate(services)
        later = time.time() + 301
        with patch.object(time, "time", return_value=later):
            result = await services.oauth.callback("code", _query(init.url)["state"], APP_DOMAIN)
        assert result.redirect_url == f"https://{TENANT_HOST}/dashboard?error=auth_expired"
        assert result.user_id is None

    async def test_provider_denied(self, services, tenant) -> None:
        init = await _initiate(services)
        result = await services.oauth.callback(
            None, _query(init.url)["state"], APP_DOMAIN, provider_error="access_denied"
        )
        assert result.redirect_url.endswith("/dashboard?error=auth_failed")

    async def test_upstream_failure(self, services, tenant, fake_provider) -> None:
        fake_provider.exchange_code = AsyncMock(side_effect=UpstreamError("token endpoint down"))
        init = await _initiate(services)
        result = await services.oauth.callback("code", _query(init.url)["state"], APP_DOMAIN)
        assert result.redirect_url.endswith("?error=auth_failed")

    async def test_provider_disabled_after_initiation(
        self, services, tenant, fake_provider
    ) -> None:
        init = await _initiate(services)
        await services.domains.configure_provider(tenant, "google", "portal", enabled=False)
        fake_provider.exchange_code = AsyncMock()
        result = await services.oauth.callback("code", _query(init.url)["state"], APP_DOMAIN)
        assert result.redirect_url.endswith("/dashboard?error=auth_failed")
        assert result.user_id is None
        fake_provider.exchange_code.assert_not_awaited()

    async def test_unverified_email_cannot_claim_existing_user(
        self, services, tenant, notifier, fake_provider
    ) -> None:
        await services.otp.send(tenant, "ada@example.com", "ip")
        code = notifier.last_code_for("ada@example.com")
        local = await services.otp.verify(tenant, "ada@example.com", code, "ip", name="Ada")
        fake_provider.profile = ExternalProfile(
            account_id="ext-9", email="ada@example.com", email_verified=False
        )

        init = await _initiate(services)
        result = await services.oauth.callback("code", _query(init.url)["state"], APP_DOMAIN)
        assert result.redirect_url.endswith("/dashboard?error=auth_failed")
        assert result.user_id is None
        assert await services.directory.find_user_by_account(tenant.id, "google", "ext-9") is None
        owner = await services.directory.find_user_by_email(tenant.id, "ada@example.com")
        assert owner.id == local.user_id

    async def test_signup_not_allowed(self, services, tenant) -> None:
        tenant.open_signup_enabled = False
        init = await _initiate(services, context="team")
        result = await services.oauth.callback("code", _query(init.url)["state"], APP_DOMAIN)
        assert result.redirect_url.endswith("?error=signup_not_allowed")

    async def test_oidc_email_domain_mismatch(self, services, tenant) -> None:
        await services.domains.configure_provider(
            tenant,
            "oidc",
            "team",
            issuer="https://sso.corp.test",
            client_id="cid",
            client_secret="secret",
            email_domain="corp.test",
        )
        init = await _initiate(services, provider="oidc", context="team")
        result = await services.oauth.callback("code", _query(init.url)["state"], APP_DOMAIN)
        assert result.redirect_url.endswith("?error=email_domain_mismatch")

    async def test_oidc_matching_domain_signs_in(self, services, tenant, fake_provider) -> None:
        fake_provider.profile = ExternalProfile(
            account_id="sub-1", email="ada@corp.test", email_verified=True
        )
        await services.domains.configure_provider(
            tenant,
            "oidc",
            "team",
            issuer="https://sso.corp.test",
            client_id="cid",
            client_secret="secret",
            email_domain="@Corp.Test",
        )
        init = await _initiate(services, provider="oidc", context="team")
        result = await services.oauth.callback("code", _query(init.url)["state"], APP_DOMAIN)
        assert result.user_id is not None
        assert "/auth/trust-login?token=" in result.redirect_url

    async def test_strict_sso_forks_identity(self, services, tenant, notifier) -> None:
        await services.otp.send(tenant, "ada@example.com", "ip")
        code = notifier.last_code_for("ada@example.com")
        local = await services.otp.verify(tenant, "ada@example.com", code, "ip", name="Ada")
        await services.domains.set_strict_sso_mode(tenant, True)

        init = await _initiate(services)
        result = await services.oauth.callback("code", _query(init.url)["state"], APP_DOMAIN)
        assert result.user_id is not None
        assert result.user_id != local.user_id
