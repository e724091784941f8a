"""
Route guards built on the JWT middleware.

    @projects_bp.route("/<int:project_id>", methods=["DELETE"])
    @login_required
    @role_required("Director")
    def delete(project_id): ...

Both decorators raise service-layer exceptions; the app error handler turns
them into the standard envelope (401 / 403).
"""

import functools
import logging

from flask import g, request

from constructhub.core.exceptions import AuthenticationError, AuthorizationError
from constructhub.models import db
from constructhub.models.user import User

logger = logging.getLogger(__name__)


def login_required(f):
    """
    Require a valid access token for an existing, Active user.

    Refreshes ``g.current_user["role"]`` from the database so role changes
    apply without waiting for token expiry.
    """

    @functools.wraps(f)
    def decorated(*args, **kwargs):
        current = getattr(g, "current_user", None)
        if not current:
            raise AuthenticationError(getattr(g, "auth_error", None) or "Access token required")

        user = db.session.get(User, current["user_id"])
        if user is None or not user.is_active:
            raise AuthenticationError("User not found or inactive")

        g.current_user = {"user_id": user.id, "role": user.role}
        return f(*args, **kwargs)

    return decorated


def role_required(*roles: str):
    """Allow only the listed roles. Use below ``login_required``."""
    allowed = frozenset(roles)

    def decorator(f):
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            current = getattr(g, "current_user", None)
            if not current:
                raise AuthenticationError()
            if current["role"] not in allowed:
                logger.warning("Access denied: role '%s' on %s (allowed: %s)",
                               current["role"], request.path, sorted(allowed))
                raise AuthorizationError(details={"required": sorted(allowed), "current": current["role"]})
            return f(*args, **kwargs)

        return decorated

    return decorator


def current_actor() -> tuple[int, str]:
    """(user_id, role) of the authenticated caller."""
    current = g.current_user
    return current["user_id"], current["role"]
