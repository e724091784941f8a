"""
Health check blueprint.

Endpoints:
    GET /api/v1/health/ready  simple 200 for load balancers
    GET /api/v1/health/live   database and cache status
"""

import logging
import time

from flask import Blueprint, current_app, jsonify
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from constructhub.models import db
from constructhub.services import cache_service

logger = logging.getLogger(__name__)

health_bp = Blueprint("health", __name__, url_prefix="/api/v1/health")


@health_bp.route("/ready", methods=["GET"])
def ready():
    return jsonify({"status": "ok"}), 200


@health_bp.route("/live", methods=["GET"])
def live():
    """Detailed liveness check with dependency status."""
    checks = {}
    overall = True

    try:
        t0 = time.perf_counter()
        db.session.execute(text("SELECT 1"))
        checks["database"] = {"status": "ok", "latency_ms": round((time.perf_counter() - t0) * 1000, 1)}
    except SQLAlchemyError as exc:
        checks["database"] = {"status": "error", "detail": str(exc)}
        overall = False
        logger.error("Health check: database failed: %s", exc)

    # cache is optional; a failure degrades but does not fail the check
    checks["cache"] = cache_service.health_check()

    checks["app"] = {
        "name": "ConstructHub",
        "debug": current_app.debug,
        "testing": current_app.testing,
    }
    status = "ok" if overall else "degraded"
    return jsonify({"status": status, "checks": checks}), 200 if overall else 503
