"""
Task Blueprint: tasks, dependencies, task approvals and time logging.

Routes:
  GET    /api/v1/tasks                                list (filters, paginated)
  POST   /api/v1/tasks                                create (optional dependencies)
  GET    /api/v1/tasks/<id>                           detail with dependency ids
  PUT    /api/v1/tasks/<id>                           update; "dependencies" replaces the set
  DELETE /api/v1/tasks/<id>                           delete (creator / project manager)
  PATCH  /api/v1/tasks/<id>/progress                  completion percentage only
  POST   /api/v1/tasks/<id>/approval-request          ask the project manager to sign off
  GET    /api/v1/tasks/<id>/approvals                 approval history
  PUT    /api/v1/tasks/approvals/<aid>/respond        Approved / Declined
  POST   /api/v1/tasks/time-logs                      start a time log
  PUT    /api/v1/tasks/time-logs/<lid>/stop           stop a time log
  GET    /api/v1/tasks/<id>/time-logs                 logs for a task
  GET    /api/v1/tasks/my-time-logs                   caller's logs
"""

import logging

from flask import Blueprint, request

from constructhub.auth import current_actor, login_required
from constructhub.core.exceptions import ValidationError
from constructhub.services import task_service, time_log_service
from constructhub.utils.helpers import parse_pagination
from constructhub.utils.responses import api_success

logger = logging.getLogger(__name__)

tasks_bp = Blueprint("tasks", __name__, url_prefix="/api/v1/tasks")

_LIST_FILTERS = ("project_id", "assigned_to", "status", "priority", "due_date_from", "due_date_to", "search")


def _task_payload(task):
    return task.to_dict(include_dependencies=True)


@tasks_bp.route("", methods=["GET"])
@login_required
def list_tasks():
    page, per_page = parse_pagination(request.args)
    filters = {k: request.args.get(k) for k in _LIST_FILTERS if request.args.get(k)}
    tasks, pagination = task_service.list_tasks(filters, page, per_page)
    return api_success([t.to_dict() for t in tasks], "Tasks retrieved successfully", pagination=pagination)


@tasks_bp.route("", methods=["POST"])
@login_required
def create_task():
    user_id, _ = current_actor()
    task = task_service.create_task(request.get_json(silent=True) or {}, user_id)
    return api_success(_task_payload(task), "Task created successfully", status=201)


@tasks_bp.route("/<int:task_id>", methods=["GET"])
@login_required
def get_task(task_id):
    return api_success(_task_payload(task_service.get_task(task_id)), "Task retrieved successfully")


@tasks_bp.route("/<int:task_id>", methods=["PUT"])
@login_required
def update_task(task_id):
    user_id, _ = current_actor()
    task = task_service.update_task(task_id, request.get_json(silent=True) or {}, user_id)
    return api_success(_task_payload(task), "Task updated successfully")


@tasks_bp.route("/<int:task_id>", methods=["DELETE"])
@login_required
def delete_task(task_id):
    user_id, _ = current_actor()
    task_service.delete_task(task_id, user_id)
    return api_success(None, "Task deleted successfully")


@tasks_bp.route("/<int:task_id>/progress", methods=["PATCH"])
@login_required
def update_progress(task_id):
    """Body: { completion_percentage: 0..100 }"""
    user_id, _ = current_actor()
    data = request.get_json(silent=True) or {}
    if data.get("completion_percentage") is None:
        raise ValidationError("completion_percentage is required",
                              details={"completion_percentage": "required"})
    task = task_service.update_task(
        task_id, {"completion_percentage": data["completion_percentage"]}, user_id,
    )
    return api_success(_task_payload(task), "Task progress updated successfully")


# ── Task approvals ───────────────────────────────────────────────────────────


@tasks_bp.route("/<int:task_id>/approval-request", methods=["POST"])
@login_required
def request_approval(task_id):
    user_id, _ = current_actor()
    data = request.get_json(silent=True) or {}
    approval = task_service.request_task_approval(task_id, user_id, data.get("comments"))
    return api_success(approval.to_dict(), "Approval request created successfully", status=201)


@tasks_bp.route("/<int:task_id>/approvals", methods=["GET"])
@login_required
def task_approvals(task_id):
    approvals = task_service.get_task_approvals(task_id)
    return api_success([a.to_dict() for a in approvals], "Task approvals retrieved successfully")


@tasks_bp.route("/approvals/<int:approval_id>/respond", methods=["PUT"])
@login_required
def respond_to_approval(approval_id):
    """Body: { status: "Approved" | "Declined", comments? }"""
    user_id, _ = current_actor()
    data = request.get_json(silent=True) or {}
    approval = task_service.respond_to_task_approval(
        approval_id, user_id, data.get("status"), data.get("comments"),
    )
    return api_success(approval.to_dict(), f"Task {str(approval.status).lower()} successfully")


# ── Time logging ─────────────────────────────────────────────────────────────


@tasks_bp.route("/time-logs", methods=["POST"])
@login_required
def start_time_log():
    """Body: { task_id, start_time?, description? }"""
    user_id, _ = current_actor()
    data = request.get_json(silent=True) or {}
    if data.get("task_id") in (None, ""):
        raise ValidationError("task_id is required", details={"task_id": "required"})
    try:
        task_id = int(data["task_id"])
    except (TypeError, ValueError):
        raise ValidationError("task_id must be an integer") from None
    log = time_log_service.start_time_log(task_id, user_id, data.get("start_time"), data.get("description"))
    return api_success(log.to_dict(), "Time logging started successfully", status=201)


@tasks_bp.route("/time-logs/<int:time_log_id>/stop", methods=["PUT"])
@login_required
def stop_time_log(time_log_id):
    user_id, _ = current_actor()
    data = request.get_json(silent=True) or {}
    log = time_log_service.stop_time_log(time_log_id, user_id, data.get("description"))
    return api_success(log.to_dict(), "Time logging stopped successfully")


@tasks_bp.route("/<int:task_id>/time-logs", methods=["GET"])
@login_required
def task_time_logs(task_id):
    logs = time_log_service.get_time_logs_for_task(task_id)
    return api_success([entry.to_dict() for entry in logs], "Time logs retrieved successfully")


@tasks_bp.route("/my-time-logs", methods=["GET"])
@login_required
def my_time_logs():
    user_id, _ = current_actor()
    filters = {k: request.args.get(k) for k in ("task_id", "date_from", "date_to") if request.args.get(k)}
    logs = time_log_service.get_time_logs_for_user(user_id, filters)
    return api_success([entry.to_dict() for entry in logs], "Time logs retrieved successfully")
