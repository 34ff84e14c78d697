"""Insert-only audit trail of sign-in events.

Entries are written through their own session so they persist even if the
caller's work fails afterwards. Details never carry codes, tokens or
secrets, and are capped at 10 KB.
"""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

import structlog

from tenantauth.models.database import AuditLog

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncEngine

    from tenantauth.config.settings import Settings
    from tenantauth.types import AuditAction

logger = structlog.get_logger(__name__)

_SENSITIVE_FIELDS = frozenset(
    {
        "password",
        "secret",
        "token",
        "code",
        "code_verifier",
        "client_secret",
        "state",
        "authorization",
        "cookie",
        "session",
    }
)

_MAX_DETAILS_BYTES = 10_240


def _strip(value: Any) -> Any:
    if isinstance(value, dict):
        return {k: _strip(v) for k, v in value.items() if str(k).lower() not in _SENSITIVE_FIELDS}
    if isinstance(value, list):
        return [_strip(v) for v in value]
    return value


def _sanitize_details(details: dict[str, Any]) -> str:
    """Drop sensitive keys at any depth and keep the JSON under the size cap.

    Oversized details are replaced by a marker listing the top-level keys.
    """
    sanitized = _strip(details)
    encoded = json.dumps(sanitized, default=str, sort_keys=True)
    if len(encoded.encode()) <= _MAX_DETAILS_BYTES:
        return encoded
    marker = {"truncated": True, "keys": sorted(str(k) for k in sanitized)[:100]}
    return json.dumps(marker)


class AuditLogger:
    """Writes ``AuditLog`` rows; failures are logged, never raised."""

    def __init__(self, engine: AsyncEngine) -> None:
        self._engine = engine

    async def log(
        self,
        *,
        tenant_id: str,
        user_id: str,
        action: AuditAction | str,
        details: dict[str, Any] | None = None,
        ip_address: str = "",
        request_id: str = "",
    ) -> None:
        from sqlmodel.ext.asyncio.session import AsyncSession

        if not request_id:
            request_id = structlog.contextvars.get_contextvars().get("request_id", "")
        entry = AuditLog(
            tenant_id=tenant_id,
            user_id=user_id,
            action=str(action),
            resource_type="user" if user_id else "",
            resource_id=user_id,
            details_json=_sanitize_details(details or {}),
            ip_address=ip_address,
            request_id=request_id,
        )
        try:
            async with AsyncSession(self._engine) as session:
                session.add(entry)
                await session.commit()
        except Exception:
            logger.exception("audit_log_failed", action=str(action), tenant_id=tenant_id)


async def audit(
    settings: Settings,
    *,
    tenant_id: str,
    user_id: str,
    action: AuditAction | str,
    details: dict[str, Any] | None = None,
    ip_address: str = "",
    request_id: str = "",
) -> None:
    """Record ``action`` when a database is configured; a no-op in memory mode."""
    if not settings.use_database:
        return

    from tenantauth.storage.database import get_engine

    await AuditLogger(get_engine()).log(
        tenant_id=tenant_id,
        user_id=user_id,
        action=action,
        details=details,
        ip_address=ip_address,
        request_id=request_id,
    )
