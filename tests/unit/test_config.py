import pytest
from sqlalchemy import text

from tenantauth.config.logging import REDACTED, redact_secrets
from tenantauth.config.settings import Settings, get_settings
from tenantauth.storage.database import create_engine_for, init_db


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.mark.unit
class TestSettings:
    def test_default_settings(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", "test-secret")
        settings = Settings()
        assert settings.debug is False
        assert settings.log_level == "INFO"
        assert settings.use_database is False
        assert settings.transfer_ttl_seconds == 30
        assert settings.oauth_state_max_age == 300
        assert settings.otp_ttl_seconds == 600

    def test_settings_from_env(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", "my-secret")
        monkeypatch.setenv("APP_DOMAIN", "auth.example.com")
        monkeypatch.setenv("DEBUG", "true")
        monkeypatch.setenv("LOG_LEVEL", "DEBUG")
        monkeypatch.setenv("TRANSFER_TTL_SECONDS", "45")
        settings = Settings()
        assert settings.app_domain == "auth.example.com"
        assert settings.debug is True
        assert settings.log_level == "DEBUG"
        assert settings.transfer_ttl_seconds == 45

    def test_secure_cookies_off_in_debug(self) -> None:
        assert Settings(secret_key="s", debug=True).secure_cookies is False
        assert Settings(secret_key="s", cookie_secure=False).secure_cookies is False
        assert Settings(secret_key="s").secure_cookies is True

    def test_provider_credentials_optional(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", "test-secret")
        settings = Settings()
        assert settings.google_client_id is None
        assert settings.github_client_secret is None


@pytest.mark.unit
class TestGetSettings:
    def test_insecure_secret_warns(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("SECRET_KEY", raising=False)
        with pytest.warns(UserWarning, match="SECRET_KEY"):
            get_settings()

    def test_transfer_ttl_above_ceiling_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", "test-secret")
        monkeypatch.setenv("TRANSFER_TTL_SECONDS", "61")
        with pytest.raises(ValueError, match="at most 60"):
            get_settings()

    def test_non_positive_transfer_ttl_rejected(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", "test-secret")
        monkeypatch.setenv("TRANSFER_TTL_SECONDS", "0")
        with pytest.raises(ValueError, match="positive"):
            get_settings()

    def test_cached(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("SECRET_KEY", "test-secret")
        assert get_settings() is get_settings()


@pytest.mark.unit
class TestRedactSecrets:
    def test_masks_secret_keys(self) -> None:
        event = {"event": "otp_sent", "code": "123456", "token": "abc", "tenant_id": "t1"}
        out = redact_secrets(None, "info", event)
        assert out["code"] == REDACTED
        assert out["token"] == REDACTED
        assert out["tenant_id"] == "t1"
        assert out["event"] == "otp_sent"

    def test_leaves_plain_events_alone(self) -> None:
        event = {"event": "session_created", "user_id": "u1"}
        assert redact_secrets(None, "info", dict(event)) == event


@pytest.mark.unit
class TestEngine:
    async def test_memory_engine_shares_one_database(self) -> None:
        engine = create_engine_for("sqlite+aiosqlite:///:memory:")
        await init_db(engine)
        async with engine.connect() as conn:
            rows = await conn.execute(
                text("SELECT name FROM sqlite_master WHERE type='table' AND name='tenants'")
            )
            assert rows.scalar_one() == "tenants"
        await engine.dispose()
