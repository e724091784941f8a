"""
Auth Blueprint: JWT login, refresh, logout and current user.

Endpoints:
    POST /api/v1/auth/login     (3 per 15 min per address)
    POST /api/v1/auth/refresh   (5 per 15 min per address)
    POST /api/v1/auth/logout
    GET  /api/v1/auth/me
"""

import logging

from flask import Blueprint, request

from constructhub.auth import current_actor, login_required
from constructhub.middleware.rate_limiter import rate_limited
from constructhub.services import auth_service
from constructhub.utils.responses import api_success

logger = logging.getLogger(__name__)

auth_bp = Blueprint("auth", __name__, url_prefix="/api/v1/auth")


@auth_bp.route("/login", methods=["POST"])
@rate_limited("login")
def login():
    data = request.get_json(silent=True) or {}
    result = auth_service.login(data.get("email"), data.get("password"))
    return api_success(
        {"user": result["user"].to_dict(), **result["tokens"]},
        "Login successful",
    )


@auth_bp.route("/refresh", methods=["POST"])
@rate_limited("auth")
def refresh():
    data = request.get_json(silent=True) or {}
    tokens = auth_service.refresh(data.get("refresh_token"))
    return api_success(tokens, "Token refreshed")


@auth_bp.route("/logout", methods=["POST"])
@login_required
@rate_limited("auth")
def logout():
    data = request.get_json(silent=True) or {}
    auth_service.logout(data.get("refresh_token"))
    return api_success(None, "Logout successful")


@auth_bp.route("/me", methods=["GET"])
@login_required
def me():
    user_id, _ = current_actor()
    return api_success(auth_service.get_current_user(user_id).to_dict(), "Current user")
