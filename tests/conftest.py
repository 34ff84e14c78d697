"""Shared test fixtures."""

from __future__ import annotations

from unittest.mock import patch

import pytest
from httpx import ASGITransport, AsyncClient

from tenantauth.auth.providers import IdentityProvider
from tenantauth.config.settings import Settings
from tenantauth.models.domain import ExternalProfile, ProviderTokens
from tenantauth.notify.notifier import LogNotifier
from tenantauth.storage.database import create_engine_for, init_db
from tenantauth.storage.repositories.memory_directory import InMemoryDirectory
from tenantauth.web.app import create_app
from tenantauth.web.dependencies import build_services

APP_DOMAIN = "auth.example.test"
TENANT_HOST = f"acme.{APP_DOMAIN}"


class FakeProvider(IdentityProvider):
    """Identity provider that answers from memory instead of the network."""

    name = "fake"

    def __init__(self, profile: ExternalProfile | None = None) -> None:
        super().__init__("client-id", "client-secret")
        self.profile = profile or ExternalProfile(
            account_id="ext-1", email="ada@example.com", name="Ada", email_verified=True
        )
        self.exchanged: list[tuple[str, str, str]] = []

    async def authorization_url(self, redirect_uri: str, state: str, code_challenge: str) -> str:
        return f"https://idp.example.test/authorize?state={state}&challenge={code_challenge}"

    async def exchange_code(
        self, code: str, redirect_uri: str, code_verifier: str
    ) -> ProviderTokens:
        self.exchanged.append((code, redirect_uri, code_verifier))
        return ProviderTokens(access_token=f"token-{code}")

    async def fetch_profile(self, tokens: ProviderTokens) -> ExternalProfile:
        return self.profile


@pytest.fixture()
def settings() -> Settings:
    return Settings(
        secret_key="test-secret-key",
        debug=True,
        cookie_secure=False,
        use_database=False,
        app_domain=APP_DOMAIN,
        public_scheme="https",
        google_client_id="google-id",
        google_client_secret="google-secret",
    )


@pytest.fixture()
def directory() -> InMemoryDirectory:
    return InMemoryDirectory()


@pytest.fixture()
def notifier() -> LogNotifier:
    return LogNotifier()


@pytest.fixture()
def fake_provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture()
def services(settings, directory, notifier, fake_provider):
    """Service container wired to in-memory storage and the fake provider."""
    return build_services(
        settings,
        directory=directory,
        notifier=notifier,
        provider_factory=lambda provider, config: fake_provider,
    )


@pytest.fixture()
async def tenant(services):
    """Workspace ``acme`` with open signup and Google enabled in both contexts."""
    created = await services.domains.provision_tenant(
        "acme", "Acme", open_signup_enabled=True, portal_auth_enabled=True
    )
    await services.domains.configure_provider(created, "google", "portal")
    await services.domains.configure_provider(created, "google", "team")
    return created


@pytest.fixture()
def app(settings, services):
    """Create a fresh app instance for tests."""
    return create_app(settings=settings, services=services)


@pytest.fixture()
async def tenant_client(app, tenant):
    """An AsyncClient whose requests arrive on the tenant's primary domain."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=f"https://{TENANT_HOST}") as client:
        yield client


@pytest.fixture()
async def auth_client(app, tenant):
    """An AsyncClient on the shared auth origin."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url=f"https://{APP_DOMAIN}") as client:
        yield client


@pytest.fixture()
def routed_to_app(app):
    """Send domain ownership checks to this app, as if every domain pointed here."""

    def _client(**kwargs):
        return AsyncClient(transport=ASGITransport(app=app), **kwargs)

    with patch("tenantauth.auth.domains.httpx.AsyncClient", side_effect=_client) as factory:
        yield factory


@pytest.fixture()
async def async_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_engine_for("sqlite+aiosqlite:///:memory:")
    await init_db(engine)
    yield engine
    await engine.dispose()
