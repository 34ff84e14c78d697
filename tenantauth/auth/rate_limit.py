"""Fixed-window rate limiting keyed by operation and client address."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass

import structlog

from tenantauth.exceptions import RateLimitedError
from tenantauth.models.domain import RateLimitResult

logger = structlog.get_logger(__name__)


@dataclass(frozen=True, slots=True)
class RateLimitRule:
    limit: int
    window_seconds: int


# Defaults per operation
DEFAULT_RULES: dict[str, RateLimitRule] = {
    "otp_send": RateLimitRule(limit=5, window_seconds=15 * 60),
    "otp_verify": RateLimitRule(limit=10, window_seconds=15 * 60),
    "oauth_initiate": RateLimitRule(limit=30, window_seconds=60),
    "oauth_callback": RateLimitRule(limit=30, window_seconds=60),
    "trust_login": RateLimitRule(limit=30, window_seconds=60),
    "api_general": RateLimitRule(limit=100, window_seconds=60),
}


class RateLimiter:
    """In-process fixed window counter.

    Each ``(operation, key)`` pair holds ``(count, reset_at)``. The first hit
    after ``reset_at`` opens a new window. Expired windows are lazily pruned.
    """

    def __init__(self, rules: dict[str, RateLimitRule] | None = None) -> None:
        self._rules = dict(DEFAULT_RULES if rules is None else rules)
        self._windows: dict[str, tuple[int, float]] = {}

    def check(self, operation: str, key: str) -> RateLimitResult:
        """Record one attempt and report whether it is allowed."""
        rule = self._rules.get(operation)
        if rule is None:
            msg = f"No rate limit rule for operation: {operation}"
            raise KeyError(msg)

        now = time.time()
        self._cleanup(now)
        bucket = f"{operation}:{key}"
        count, reset_at = self._windows.get(bucket, (0, now + rule.window_seconds))
        if now >= reset_at:
            count, reset_at = 0, now + rule.window_seconds

        if count >= rule.limit:
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_at=reset_at,
                retry_after=max(1, math.ceil(reset_at - now)),
            )

        count += 1
        self._windows[bucket] = (count, reset_at)
        return RateLimitResult(allowed=True, remaining=rule.limit - count, reset_at=reset_at)

    def hit(self, operation: str, key: str) -> RateLimitResult:
        """Like ``check`` but raises ``RateLimitedError`` when over the limit."""
        result = self.check(operation, key)
        if not result.allowed:
            logger.warning("rate_limit_exceeded", operation=operation, key=key)
            raise RateLimitedError(
                "Too many attempts. Please try again later.",
                retry_after=result.retry_after,
            )
        return result

    def reset(self) -> None:
        self._windows.clear()

    def _cleanup(self, now: float) -> None:
        expired = [k for k, (_, reset_at) in self._windows.items() if now >= reset_at]
        for k in expired:
            del self._windows[k]
