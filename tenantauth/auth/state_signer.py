"""HMAC-signed opaque state for data that round-trips through the browser.

Tokens are ``base64url(canonical_json) + "." + hex(hmac_sha256)``. The
signer is stateless: freshness is decided by callers through ``is_fresh``
against the ``ts`` field stamped at signing time.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import re
import secrets
import time
from typing import Any

import structlog

logger = structlog.get_logger(__name__)

_SIGNATURE_RE = re.compile(r"[0-9a-f]{64}")


def _b64encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _b64decode(data: str) -> bytes:
    padding = "=" * (-len(data) % 4)
    return base64.urlsafe_b64decode(data + padding)


def canonical_json(payload: dict[str, Any]) -> bytes:
    """Serialize with sorted keys and no whitespace so signing is deterministic."""
    return json.dumps(payload, sort_keys=True, separators=(",", ":")).encode()


class StateSigner:
    """Signs and verifies small JSON payloads with HMAC-SHA256."""

    def __init__(self, secret: str) -> None:
        if not secret:
            msg = "State signer secret must not be empty"
            raise ValueError(msg)
        self._secret = secret.encode()

    def sign(self, payload: dict[str, Any]) -> str:
        """Return an opaque token for ``payload``.

        A random ``nonce`` and the issuance time ``ts`` (epoch milliseconds)
        are added unless the caller already supplied them.
        """
        body = dict(payload)
        body.setdefault("nonce", secrets.token_hex(16))
        body.setdefault("ts", int(time.time() * 1000))
        raw = canonical_json(body)
        return f"{_b64encode(raw)}.{self._signature(raw)}"

    def verify(self, token: str) -> dict[str, Any] | None:
        """Return the payload if the signature matches, else None."""
        if not token or token.count(".") != 1:
            return None
        encoded, signature = token.split(".", 1)
        if not _SIGNATURE_RE.fullmatch(signature):
            return None
        try:
            raw = _b64decode(encoded)
        except (binascii.Error, ValueError):
            return None
        # Only the canonical unpadded encoding is accepted; spare bits must be zero
        if _b64encode(raw) != encoded:
            return None

        if not hmac.compare_digest(signature.encode(), self._signature(raw).encode()):
            logger.info("state_signature_mismatch")
            return None

        try:
            payload = json.loads(raw)
        except (UnicodeDecodeError, json.JSONDecodeError):
            return None
        if not isinstance(payload, dict):
            return None
        return payload

    @staticmethod
    def is_fresh(
        payload: dict[str, Any], max_age_seconds: int, now: float | None = None
    ) -> bool:
        """True when the payload was signed less than ``max_age_seconds`` ago."""
        ts = payload.get("ts")
        if not isinstance(ts, int) or isinstance(ts, bool):
            return False
        now_ms = int((time.time() if now is None else now) * 1000)
        age_ms = now_ms - ts
        return 0 <= age_ms < max_age_seconds * 1000

    def _signature(self, raw: bytes) -> str:
        return hmac.new(self._secret, raw, hashlib.sha256).hexdigest()
