"""Cookie sessions local to one origin.

A session cookie is only ever honoured on the domain that minted it. Moving
a sign-in to another origin goes through a transfer token instead.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time
from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class OriginSession:
    user_id: str
    tenant_id: str
    domain: str
    context: str
    expires_at: float  # epoch seconds


class SessionAuth:
    """Issues ``{id}.{mac}`` cookies and keeps the session records in-process."""

    def __init__(self, secret_key: str, max_age: int = 86400) -> None:
        self._key = hashlib.sha256(b"session:" + secret_key.encode()).digest()
        self._max_age = max_age
        self._by_id: dict[str, OriginSession] = {}

    @property
    def max_age(self) -> int:
        return self._max_age

    def create_session(
        self, user_id: str, tenant_id: str, domain: str, context: str = "portal"
    ) -> str:
        self._purge_expired()
        session_id = secrets.token_urlsafe(32)
        self._by_id[session_id] = OriginSession(
            user_id=user_id,
            tenant_id=tenant_id,
            domain=domain,
            context=context,
            expires_at=time.time() + self._max_age,
        )
        logger.info("session_created", user_id=user_id, tenant_id=tenant_id, domain=domain)
        return f"{session_id}.{self._mac(session_id)}"

    def validate_session(self, token: str | None, domain: str | None = None) -> OriginSession | None:
        """Return the session behind ``token``, or ``None``.

        With ``domain`` set, a session minted for any other domain is refused.
        """
        session_id = self._session_id(token)
        if session_id is None:
            return None
        session = self._by_id.get(session_id)
        if session is None:
            return None
        if session.expires_at < time.time():
            del self._by_id[session_id]
            return None
        if domain is not None and session.domain != domain:
            logger.warning("session_domain_mismatch", expected=session.domain, domain=domain)
            return None
        return session

    def destroy_session(self, token: str | None) -> OriginSession | None:
        """Forget the session and return what it was, if anything."""
        session_id = self._session_id(token)
        if session_id is None:
            return None
        session = self._by_id.pop(session_id, None)
        if session is not None:
            logger.info("session_destroyed", user_id=session.user_id, tenant_id=session.tenant_id)
        return session

    def _session_id(self, token: str | None) -> str | None:
        session_id, _, mac = (token or "").partition(".")
        if not session_id or not mac:
            return None
        if not hmac.compare_digest(mac.encode(), self._mac(session_id).encode()):
            return None
        return session_id

    def _mac(self, session_id: str) -> str:
        return hmac.new(self._key, session_id.encode(), hashlib.sha256).hexdigest()

    def _purge_expired(self) -> None:
        now = time.time()
        for session_id in [k for k, s in self._by_id.items() if s.expires_at < now]:
            del self._by_id[session_id]
