import pytest
from httpx import ASGITransport, AsyncClient

from tenantauth.web.app import create_app


@pytest.fixture()
async def plain_client(app):
    """Client on a host that belongs to no workspace."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="https://nobody.example.org") as client:
        yield client


@pytest.mark.integration
class TestAppFactory:
    def test_title(self, app) -> None:
        assert app.title == "TenantAuth"

    def test_builds_its_own_services(self, settings) -> None:
        app = create_app(settings=settings)
        assert app.state.services.settings is settings

    def test_each_app_gets_separate_services(self, settings) -> None:
        first, second = create_app(settings=settings), create_app(settings=settings)
        assert first.state.services.directory is not second.state.services.directory


@pytest.mark.integration
class TestAmbientBehaviour:
    async def test_health_reports_backends(self, plain_client) -> None:
        resp = await plain_client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json() == {
            "status": "healthy",
            "version": "0.1.0",
            "storage": "memory",
            "email": "log",
        }

    async def test_request_id_is_minted_and_echoed(self, plain_client) -> None:
        minted = await plain_client.get("/api/health")
        assert minted.headers["x-request-id"]
        echoed = await plain_client.get("/api/health", headers={"X-Request-ID": "abc-123"})
        assert echoed.headers["x-request-id"] == "abc-123"

    async def test_security_headers_without_hsts_in_debug(self, plain_client) -> None:
        resp = await plain_client.get("/api/health")
        assert "strict-transport-security" not in resp.headers
        assert resp.headers["x-content-type-options"] == "nosniff"

    async def test_unknown_route(self, plain_client) -> None:
        resp = await plain_client.get("/api/nonexistent")
        assert resp.status_code == 404

    async def test_unknown_workspace_maps_to_404(self, plain_client) -> None:
        resp = await plain_client.post("/auth/otp/send", json={"email": "ada@example.com"})
        assert resp.status_code == 404
        assert resp.json() == {"detail": "Workspace not found"}

    async def test_validation_error_maps_to_400(self, tenant_client) -> None:
        resp = await tenant_client.post("/auth/otp/send", json={"email": "not-an-email"})
        assert resp.status_code == 400
        assert resp.json() == {"detail": "Invalid email address"}

    async def test_error_page_is_html(self, tenant_client) -> None:
        resp = await tenant_client.get("/auth/error", params={"reason": "invalid_state"})
        assert resp.status_code == 400
        assert "text/html" in resp.headers["content-type"]
        assert "invalid" in resp.text


@pytest.mark.integration
class TestDomainVerificationRoute:
    async def test_workspace_host_answers(self, tenant_client) -> None:
        resp = await tenant_client.get("/.well-known/domain-verification")
        assert resp.status_code == 200
        assert resp.text == "VERIFIED"
        assert resp.headers["content-type"].startswith("text/plain")

    async def test_unverified_custom_domain_answers(self, app, services, tenant) -> None:
        await services.domains.add_custom_domain(tenant, "login.acme.com")
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="https://login.acme.com") as client:
            resp = await client.get("/.well-known/domain-verification")
        assert resp.status_code == 200
        assert resp.text == "VERIFIED"

    async def test_unknown_host_is_404(self, plain_client) -> None:
        resp = await plain_client.get("/.well-known/domain-verification")
        assert resp.status_code == 404
