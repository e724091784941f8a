"""
Token state cache.

Holds the ephemeral auth state the workflow engines never touch:
    - refresh:<user_id>     → current refresh token (TTL = refresh lifetime)
    - blacklist:<token>     → "1" for revoked tokens (TTL = refresh lifetime)

Uses Redis in production (via REDIS_URL), falls back to a simple
in-memory dict for development/testing.
"""

import logging
import time

import redis

logger = logging.getLogger(__name__)

# ── In-memory fallback ───────────────────────────────────────────────────

_memory_store: dict = {}  # key → (value, expire_ts)


class _MemoryBackend:
    """Simple dict cache for dev/testing."""

    def get(self, key):
        entry = _memory_store.get(key)
        if entry is None:
            return None
        val, expires = entry
        if expires and time.time() > expires:
            _memory_store.pop(key, None)
            return None
        return val

    def setex(self, key, ttl_seconds, value):
        _memory_store[key] = (value, time.time() + ttl_seconds)

    def delete(self, *keys):
        for k in keys:
            _memory_store.pop(k, None)

    def exists(self, key):
        return 1 if self.get(key) is not None else 0

    def flushdb(self):
        _memory_store.clear()

    def ping(self):
        return True


# ── Singleton cache backend ──────────────────────────────────────────────

_backend = None


def init_cache(app):
    """Bind the backend from app config. memory:// or empty → in-memory."""
    global _backend
    redis_url = app.config.get("REDIS_URL") or ""
    if redis_url and not redis_url.startswith("memory://"):
        try:
            client = redis.from_url(redis_url, decode_responses=True)
            client.ping()
            _backend = client
            app.logger.info("Cache: using Redis at %s", redis_url.split("@")[-1])
            return
        except redis.RedisError as exc:
            logger.warning("Redis unavailable (%s), falling back to memory cache", exc)
    _backend = _MemoryBackend()


def _get_backend():
    global _backend
    if _backend is None:
        _backend = _MemoryBackend()
    return _backend


# ── Key builders ─────────────────────────────────────────────────────────

def _refresh_key(user_id):
    return f"refresh:{user_id}"


def _blacklist_key(token):
    return f"blacklist:{token}"


# ── Public API ───────────────────────────────────────────────────────────


def store_refresh_token(user_id, token, ttl):
    _get_backend().setex(_refresh_key(user_id), ttl, token)


def get_refresh_token(user_id):
    return _get_backend().get(_refresh_key(user_id))


def delete_refresh_token(user_id):
    _get_backend().delete(_refresh_key(user_id))


def blacklist_token(token, ttl):
    _get_backend().setex(_blacklist_key(token), ttl, "1")


def is_token_blacklisted(token) -> bool:
    return bool(_get_backend().exists(_blacklist_key(token)))


def clear_all():
    """Flush entire cache (testing only)."""
    _get_backend().flushdb()


def health_check():
    """Return cache backend status."""
    backend = _get_backend()
    kind = "memory" if isinstance(backend, _MemoryBackend) else "redis"
    try:
        backend.ping()
        return {"status": "ok", "backend": kind}
    except redis.RedisError as exc:
        return {"status": "error", "backend": kind, "detail": str(exc)}
