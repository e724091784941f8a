"""
JWT auth middleware: parses ``Authorization: Bearer <token>`` into g.current_user.

Sets ``g.current_user = {"user_id": int, "role": str}`` for a valid access
token and ``None`` otherwise. Rejection happens in the ``login_required``
decorator (constructhub.auth), so public endpoints stay reachable.
"""

import logging

import jwt as pyjwt
from flask import g, request

from constructhub.services.jwt_service import decode_access_token

logger = logging.getLogger(__name__)

JWT_SKIP_PREFIXES = (
    "/api/v1/auth/login",
    "/api/v1/auth/refresh",
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.current_user = None
        g.auth_error = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return
        token = auth_header[7:]

        try:
            payload = decode_access_token(token)
            g.current_user = {"user_id": int(payload["sub"]), "role": payload.get("role")}
        except pyjwt.ExpiredSignatureError:
            g.auth_error = "Token expired"
        except (pyjwt.InvalidTokenError, KeyError, ValueError):
            logger.debug("Invalid access token on %s", path)
            g.auth_error = "Invalid token"
