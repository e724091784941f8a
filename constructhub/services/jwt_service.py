"""
JWT token generation and verification.

Access token:  15 minutes (configurable via JWT_ACCESS_EXPIRES)
Refresh token: 7 days     (configurable via JWT_REFRESH_EXPIRES)
Algorithm:     HS256

Token payload (access):
{
    "sub": "<user_id>",
    "role": "Project Manager",
    "type": "access",
    "iat": <issued_at>,
    "exp": <expires_at>,
    "jti": <unique_id>
}
"""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
from flask import current_app


# ─── Defaults ────────────────────────────────────────────────
DEFAULT_ACCESS_EXPIRES = 900       # 15 minutes
DEFAULT_REFRESH_EXPIRES = 604800   # 7 days
ALGORITHM = "HS256"


def _get_secret():
    return current_app.config.get("JWT_SECRET_KEY") or current_app.config["SECRET_KEY"]


def get_access_expires():
    return int(current_app.config.get("JWT_ACCESS_EXPIRES", DEFAULT_ACCESS_EXPIRES))


def get_refresh_expires():
    return int(current_app.config.get("JWT_REFRESH_EXPIRES", DEFAULT_REFRESH_EXPIRES))


# ═══════════════════════════════════════════════════════════════
# Token Generation
# ═══════════════════════════════════════════════════════════════
def generate_access_token(user_id: int, role: str) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "role": role,
        "type": "access",
        "iat": now,
        "exp": now + timedelta(seconds=get_access_expires()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def generate_refresh_token(user_id: int) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "type": "refresh",
        "iat": now,
        "exp": now + timedelta(seconds=get_refresh_expires()),
        "jti": str(uuid.uuid4()),
    }
    return jwt.encode(payload, _get_secret(), algorithm=ALGORITHM)


def generate_token_pair(user_id: int, role: str) -> dict:
    return {
        "access_token": generate_access_token(user_id, role),
        "refresh_token": generate_refresh_token(user_id),
        "token_type": "Bearer",
        "expires_in": get_access_expires(),
    }


# ═══════════════════════════════════════════════════════════════
# Token Verification
# ═══════════════════════════════════════════════════════════════
def decode_token(token: str, expected_type: str = "access") -> dict:
    """
    Decode and verify a JWT token.

    Raises jwt.exceptions on failure (ExpiredSignatureError, InvalidTokenError, etc.)
    """
    payload = jwt.decode(token, _get_secret(), algorithms=[ALGORITHM])
    if payload.get("type") != expected_type:
        raise jwt.InvalidTokenError(f"Expected {expected_type} token, got {payload.get('type')}")
    return payload


def decode_access_token(token: str) -> dict:
    return decode_token(token, expected_type="access")


def decode_refresh_token(token: str) -> dict:
    return decode_token(token, expected_type="refresh")
