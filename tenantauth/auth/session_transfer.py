"""Single-use tokens that carry an authenticated identity to another origin.

A token is 32 random bytes (hex), lives at most a minute and is bound to the
domain it was minted for. Only its SHA-256 is stored. Redemption is a
single fetch-and-delete in the Directory, so of two concurrent redeemers
exactly one gets the identity.
"""

from __future__ import annotations

import secrets
import time
from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from tenantauth.auth.crypto import hash_token
from tenantauth.auth.tenant_resolver import normalize_host
from tenantauth.config.settings import MAX_TRANSFER_TTL_SECONDS
from tenantauth.exceptions import (
    TransferAlreadyUsedError,
    TransferExpiredError,
    TransferInvalidError,
)
from tenantauth.models.database import SessionTransferToken, _utc_now
from tenantauth.models.domain import Redemption
from tenantauth.types import AuthContext

if TYPE_CHECKING:
    from tenantauth.storage.directory import Directory

logger = structlog.get_logger(__name__)

_TOKEN_BYTES = 32


class SessionTransferBroker:
    """Mints and redeems session transfer tokens."""

    def __init__(
        self,
        directory: Directory,
        ttl_seconds: int = 30,
        remember_used_seconds: int = 300,
    ) -> None:
        if not 0 < ttl_seconds <= MAX_TRANSFER_TTL_SECONDS:
            msg = f"Transfer token TTL must be between 1 and {MAX_TRANSFER_TTL_SECONDS} seconds"
            raise ValueError(msg)
        self._directory = directory
        self._ttl = ttl_seconds
        self._remember = remember_used_seconds
        self._redeemed: dict[str, float] = {}  # token hash -> forget_at

    async def issue(
        self,
        user_id: str,
        tenant_id: str,
        target_domain: str,
        callback_path: str = "/",
        context: AuthContext | str = AuthContext.PORTAL,
        popup: bool = False,
    ) -> str:
        """Return a fresh token redeemable once on ``target_domain``."""
        domain = normalize_host(target_domain)
        if domain is None:
            msg = f"Invalid transfer target: {target_domain}"
            raise ValueError(msg)
        token = secrets.token_hex(_TOKEN_BYTES)
        await self._directory.create_session_transfer_token(
            SessionTransferToken(
                token=hash_token(token),
                user_id=user_id,
                tenant_id=tenant_id,
                target_domain=domain,
                callback_path=callback_path,
                context=str(context),
                popup=popup,
                expires_at=_utc_now() + timedelta(seconds=self._ttl),
            )
        )
        logger.info("transfer_token_issued", user_id=user_id, tenant_id=tenant_id, domain=domain)
        return token

    async def redeem(self, token: str, host: str | None) -> Redemption:
        """Consume ``token`` presented on ``host``.

        Raises ``TransferInvalidError`` for unknown tokens or the wrong host,
        ``TransferExpiredError`` past expiry, ``TransferAlreadyUsedError`` on reuse.
        """
        if not token or len(token) != _TOKEN_BYTES * 2:
            raise TransferInvalidError("Invalid transfer token")

        digest = hash_token(token)
        row = await self._directory.consume_session_transfer_token(digest)
        if row is None:
            if self._was_redeemed(digest):
                logger.warning("transfer_token_reused")
                raise TransferAlreadyUsedError("Transfer token already used")
            raise TransferInvalidError("Invalid transfer token")

        self._mark_redeemed(digest)
        if row.expires_at <= _utc_now():
            logger.info("transfer_token_expired", tenant_id=row.tenant_id)
            raise TransferExpiredError("Transfer token expired")
        if normalize_host(host) != row.target_domain:
            logger.warning(
                "transfer_token_wrong_host", expected=row.target_domain, host=host
            )
            raise TransferInvalidError("Invalid transfer token")

        logger.info("transfer_token_redeemed", user_id=row.user_id, tenant_id=row.tenant_id)
        return Redemption(
            user_id=row.user_id,
            tenant_id=row.tenant_id,
            callback_path=row.callback_path,
            context=AuthContext(row.context),
            popup=row.popup,
        )

    def _was_redeemed(self, digest: str) -> bool:
        self._cleanup()
        return digest in self._redeemed

    def _mark_redeemed(self, digest: str) -> None:
        self._cleanup()
        self._redeemed[digest] = time.time() + self._remember

    def _cleanup(self) -> None:
        now = time.time()
        expired = [k for k, forget_at in self._redeemed.items() if now > forget_at]
        for k in expired:
            del self._redeemed[k]
