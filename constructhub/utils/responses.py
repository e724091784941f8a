"""Standardised API response envelopes.

Usage
-----
    from constructhub.utils.responses import api_success, api_error

    return api_success(project.to_dict(), "Project created", status=201)
    return api_error("Not Found", "Project not found", status=404)

Success:  {"success": true,  "data": ..., "message": ...}
Error:    {"success": false, "error": ..., "message": ..., "details"?: ...}
"""

from __future__ import annotations

from flask import jsonify

from constructhub.core.exceptions import ConstructHubError


def api_success(data=None, message: str = "OK", *, status: int = 200, pagination: dict | None = None):
    """Return ``(jsonify(body), status)`` with the success envelope."""
    body: dict = {"success": True, "data": data, "message": message}
    if pagination is not None:
        body["pagination"] = pagination
    return jsonify(body), status


def api_error(
    error: str,
    message: str,
    *,
    status: int = 400,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    error : str
        Short error category (e.g. ``"Validation Error"``).
    message : str
        Human-readable explanation.
    status : int
        HTTP status code.
    details : dict, optional
        Extra structured payload (field errors, blocking ids).
    """
    body: dict = {"success": False, "error": error, "message": message}
    if details:
        body["details"] = details
    return jsonify(body), status


def error_from_exception(exc: ConstructHubError):
    """Map a service-layer exception onto the error envelope verbatim."""
    return api_error(exc.error, exc.message, status=exc.status_code, details=exc.details)
