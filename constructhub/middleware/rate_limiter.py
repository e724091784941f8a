"""
Rate limiting.

Two layers:
    - FixedWindowRateLimiter: per-remote-address counters for the auth
      endpoints (login 3 / 15 min, other auth routes 5 / 15 min). The clock
      is injected and expired windows are dropped by an explicit sweep().
    - Flask-Limiter: coarse per-blueprint limits, disabled in testing.

Usage:
    from constructhub.middleware.rate_limiter import init_rate_limits, rate_limited
    init_rate_limits(app, limiter)

    @auth_bp.route("/login", methods=["POST"])
    @rate_limited("login")
    def login(): ...
"""

import logging
import math
import time
from dataclasses import dataclass
from functools import wraps

from flask import current_app, request

from constructhub.utils.responses import api_error

logger = logging.getLogger(__name__)

DEFAULT_LOGIN_LIMIT = (3, 15 * 60)
DEFAULT_AUTH_LIMIT = (5, 15 * 60)


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: int = 0


class FixedWindowRateLimiter:
    """Counts hits per key inside a fixed window starting at the first hit."""

    def __init__(self, max_requests: int, window_seconds: float, clock=time.monotonic):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be > 0")
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._windows: dict[str, list] = {}  # key -> [count, reset_at]

    def hit(self, key: str) -> RateLimitResult:
        now = self._clock()
        record = self._windows.get(key)

        if record is None or now > record[1]:
            self._windows[key] = [1, now + self.window_seconds]
            return RateLimitResult(True, self.max_requests - 1)

        if record[0] >= self.max_requests:
            return RateLimitResult(False, 0, max(1, math.ceil(record[1] - now)))

        record[0] += 1
        return RateLimitResult(True, self.max_requests - record[0])

    def sweep(self) -> int:
        """Drop expired windows; returns how many were removed."""
        now = self._clock()
        expired = [key for key, (_, reset_at) in self._windows.items() if now > reset_at]
        for key in expired:
            del self._windows[key]
        return len(expired)

    def reset(self):
        self._windows.clear()

    def __len__(self):
        return len(self._windows)


def _limit_from_config(app, name, default):
    value = app.config.get(name)
    if not value:
        return default
    count, _, window = str(value).partition("/")
    return int(count), float(window or default[1])


def get_auth_limiters(app=None) -> dict:
    """Per-app limiters, created on first use: {"login": ..., "auth": ...}."""
    app = app or current_app
    limiters = app.extensions.get("auth_rate_limiters")
    if limiters is None:
        limiters = {
            "login": FixedWindowRateLimiter(*_limit_from_config(app, "LOGIN_RATE_LIMIT", DEFAULT_LOGIN_LIMIT)),
            "auth": FixedWindowRateLimiter(*_limit_from_config(app, "AUTH_RATE_LIMIT", DEFAULT_AUTH_LIMIT)),
        }
        app.extensions["auth_rate_limiters"] = limiters
    return limiters


def rate_limited(bucket: str):
    """Reject with 429 once the caller's address exhausts ``bucket``."""

    def decorator(fn):
        @wraps(fn)
        def wrapper(*args, **kwargs):
            if not current_app.config.get("AUTH_RATE_LIMIT_ENABLED", True):
                return fn(*args, **kwargs)
            key = request.remote_addr or "unknown"
            result = get_auth_limiters()[bucket].hit(key)
            if not result.allowed:
                logger.warning("Rate limit exceeded bucket=%s key=%s", bucket, key)
                response, status = api_error(
                    "Too Many Requests",
                    "Too many requests, please try again later",
                    status=429,
                    details={"retry_after": result.retry_after},
                )
                response.headers["Retry-After"] = str(result.retry_after)
                return response, status
            return fn(*args, **kwargs)

        return wrapper

    return decorator


def init_rate_limits(app, limiter):
    """
    Apply Flask-Limiter limits per blueprint and sweep the auth counters.

    Limits (per remote IP):
        - Write-heavy APIs: 120/minute
        - Health check:     exempt

    Flask-Limiter is disabled in testing mode; the auth counters stay on.
    """

    @app.before_request
    def _sweep_auth_limiters():
        if request.path.startswith("/api/v1/auth/"):
            for rl in get_auth_limiters(app).values():
                rl.sweep()

    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    for bp_name in ("projects", "tasks"):
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.limit("120/minute")(bp)

    bp = app.blueprints.get("health")
    if bp:
        limiter.exempt(bp)

    app.logger.info("Rate limiter configured: projects/tasks 120/min, login %s, auth %s",
                    app.config.get("LOGIN_RATE_LIMIT"), app.config.get("AUTH_RATE_LIMIT"))
