"""Unit tests for the audit trail."""

from __future__ import annotations

import json
from unittest.mock import patch

import pytest
import structlog
from sqlmodel import select
from sqlmodel.ext.asyncio.session import AsyncSession

from tenantauth.audit.logger import AuditLogger, _sanitize_details, audit
from tenantauth.models.database import AuditLog
from tenantauth.types import AuditAction


@pytest.mark.unit
class TestSanitizeDetails:
    def test_strips_sensitive_fields(self) -> None:
        details = {
            "method": "otp",
            "code": "123456",
            "Token": "abc",
            "client_secret": "s",
            "state": "google:xyz",
        }
        assert json.loads(_sanitize_details(details)) == {"method": "otp"}

    def test_strips_nested_fields(self) -> None:
        details = {"provider": {"name": "google", "client_secret": "s"}, "items": [{"token": "t"}]}
        assert json.loads(_sanitize_details(details)) == {
            "items": [{}],
            "provider": {"name": "google"},
        }

    def test_oversized_payload_becomes_marker(self) -> None:
        encoded = _sanitize_details({"blob": "x" * 20_000, "method": "otp"})
        assert json.loads(encoded) == {"truncated": True, "keys": ["blob", "method"]}


@pytest.mark.unit
class TestAuditLogger:
    async def test_writes_entry(self, async_engine) -> None:
        await AuditLogger(async_engine).log(
            tenant_id="t1",
            user_id="u1",
            action="auth.login",
            details={"method": "otp", "code": "123456"},
            ip_address="10.0.0.1",
        )
        async with AsyncSession(async_engine) as session:
            rows = (await session.exec(select(AuditLog))).all()
        assert len(rows) == 1
        assert rows[0].action == "auth.login"
        assert json.loads(rows[0].details_json) == {"method": "otp"}
        assert rows[0].resource_id == "u1"

    async def test_request_id_from_log_context(self, async_engine) -> None:
        structlog.contextvars.bind_contextvars(request_id="req-42")
        try:
            await AuditLogger(async_engine).log(tenant_id="t1", user_id="u1", action=AuditAction.LOGOUT)
        finally:
            structlog.contextvars.clear_contextvars()
        async with AsyncSession(async_engine) as session:
            row = (await session.exec(select(AuditLog))).one()
        assert row.request_id == "req-42"
        assert row.action == "auth.logout"

    async def test_failures_do_not_raise(self) -> None:
        class BrokenEngine:
            pass

        await AuditLogger(BrokenEngine()).log(tenant_id="t", user_id="u", action="auth.login")

    async def test_audit_noop_without_database(self, settings) -> None:
        with patch("tenantauth.audit.logger.AuditLogger") as logger_cls:
            await audit(settings, tenant_id="t", user_id="u", action="auth.login")
        logger_cls.assert_not_called()
