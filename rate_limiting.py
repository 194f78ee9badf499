"""Per-action rate limiting for the auth endpoints.

Each action (login, signup, password_reset) has its own limit string in
``AUTH_RATE_LIMITS``. Counting uses a moving window from the ``limits``
package on the same storage Flask-Limiter is configured with. If the storage
is unreachable the check fails open and logs a warning.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass

from flask import current_app
from limits import parse
from limits.storage import storage_from_string
from limits.strategies import MovingWindowRateLimiter

logger = logging.getLogger(__name__)

EXTENSION_KEY = "pbe_rate_limiter"


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int = 0
    remaining: int = 0
    retry_after: int = 0

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "limit": self.limit,
            "remaining": self.remaining,
            "retry_after": self.retry_after,
        }


def init_rate_limiting(app) -> None:
    storage = storage_from_string(app.config.get("RATELIMIT_STORAGE_URI", "memory://"))
    app.extensions[EXTENSION_KEY] = MovingWindowRateLimiter(storage)


def _limiter() -> MovingWindowRateLimiter:
    limiter = current_app.extensions.get(EXTENSION_KEY)
    if limiter is None:
        init_rate_limiting(current_app)
        limiter = current_app.extensions[EXTENSION_KEY]
    return limiter


def check_rate_limit(action: str, identifier: str) -> RateLimitResult:
    """Count one attempt of ``action`` by ``identifier`` (email, IP, user id)."""
    limits_config = current_app.config.get("AUTH_RATE_LIMITS", {})
    limit_string = limits_config.get(action)
    if not limit_string:
        return RateLimitResult(allowed=True)

    item = parse(limit_string)
    key = (action, str(identifier).lower())
    try:
        limiter = _limiter()
        allowed = limiter.hit(item, *key)
        reset_time, remaining = limiter.get_window_stats(item, *key)
    except Exception:
        logger.warning("Rate limit storage unavailable for %s, allowing request", action, exc_info=True)
        return RateLimitResult(allowed=True)

    retry_after = 0
    if not allowed:
        retry_after = max(1, math.ceil(reset_time - time.time()))
        logger.info("Rate limit exceeded: action=%s identifier=%s retry_after=%ss",
                    action, identifier, retry_after)
    return RateLimitResult(allowed=allowed, limit=item.amount, remaining=remaining,
                           retry_after=retry_after)


def reset_rate_limits() -> None:
    """Clear all counters (tests)."""
    _limiter().storage.reset()
