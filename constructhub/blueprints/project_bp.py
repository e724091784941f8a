"""
Project Blueprint: projects, multi-level approvals, budget and timeline.

Routes:
  GET    /api/v1/projects                                 list (role scoped, paginated)
  POST   /api/v1/projects                                 create
  GET    /api/v1/projects/pending-approvals               caller's pending approvals
  POST   /api/v1/projects/approvals/<aid>/process         approve / reject one level
  GET    /api/v1/projects/<id>                            detail
  PUT    /api/v1/projects/<id>                            update (status via transition table)
  DELETE /api/v1/projects/<id>                            delete (Director)
  PATCH  /api/v1/projects/<id>/approve                    direct approval (Director)
  POST   /api/v1/projects/<id>/request-approval           open an approval round
  GET    /api/v1/projects/<id>/approvals                  approval history
  PATCH  /api/v1/projects/<id>/budget                     record actual cost
  GET    /api/v1/projects/<id>/stats                      task / budget / time stats
  GET    /api/v1/projects/<id>/timeline                   milestones
"""

import logging

from flask import Blueprint, request

from constructhub.auth import current_actor, login_required, role_required
from constructhub.core.exceptions import ValidationError
from constructhub.core.roles import Role
from constructhub.services import approval_service, project_service
from constructhub.utils.helpers import parse_pagination
from constructhub.utils.responses import api_success

logger = logging.getLogger(__name__)

projects_bp = Blueprint("projects", __name__, url_prefix="/api/v1/projects")

_LIST_FILTERS = ("status", "client_id", "project_manager_id", "project_type", "start_date", "end_date", "search")


@projects_bp.route("", methods=["GET"])
@login_required
def list_projects():
    user_id, role = current_actor()
    page, per_page = parse_pagination(request.args)
    filters = {k: request.args.get(k) for k in _LIST_FILTERS if request.args.get(k)}
    projects, pagination = project_service.list_projects(
        filters, page, per_page, user_id, role,
        sort_by=request.args.get("sort_by", "created_at"),
        sort_order=request.args.get("sort_order", "desc"),
    )
    return api_success(
        [p.to_dict(include_people=True) for p in projects],
        "Projects retrieved successfully",
        pagination=pagination,
    )


@projects_bp.route("", methods=["POST"])
@login_required
def create_project():
    user_id, role = current_actor()
    project = project_service.create_project(request.get_json(silent=True) or {}, user_id, role)
    return api_success(project.to_dict(include_people=True), "Project created successfully", status=201)


@projects_bp.route("/pending-approvals", methods=["GET"])
@login_required
def pending_approvals():
    user_id, _ = current_actor()
    approvals = approval_service.get_pending_approvals(user_id)
    return api_success([a.to_dict(include_project=True) for a in approvals],
                       "Pending approvals retrieved successfully")


@projects_bp.route("/approvals/<int:approval_id>/process", methods=["POST"])
@login_required
def process_approval(approval_id):
    """Body: { decision: "Approved" | "Rejected", comments? }"""
    user_id, _ = current_actor()
    data = request.get_json(silent=True) or {}
    result = approval_service.process_approval(
        approval_id, user_id, data.get("decision"), data.get("comments"),
    )
    project = result["project"]
    return api_success(
        {
            "approval": result["approval"].to_dict(),
            "project": project.to_dict() if project is not None else None,
        },
        f"Approval {str(data.get('decision')).lower()} successfully",
    )


@projects_bp.route("/<int:project_id>", methods=["GET"])
@login_required
def get_project(project_id):
    user_id, role = current_actor()
    project = project_service.get_project(project_id, user_id, role)
    return api_success(project.to_dict(include_people=True), "Project retrieved successfully")


@projects_bp.route("/<int:project_id>", methods=["PUT"])
@login_required
def update_project(project_id):
    user_id, role = current_actor()
    project = project_service.update_project(project_id, request.get_json(silent=True) or {}, user_id, role)
    return api_success(project.to_dict(include_people=True), "Project updated successfully")


@projects_bp.route("/<int:project_id>", methods=["DELETE"])
@login_required
def delete_project(project_id):
    user_id, role = current_actor()
    project_service.delete_project(project_id, user_id, role)
    return api_success(None, "Project deleted successfully")


@projects_bp.route("/<int:project_id>/approve", methods=["PATCH"])
@login_required
def approve_project(project_id):
    user_id, role = current_actor()
    project = project_service.approve_project(project_id, user_id, role)
    return api_success(project.to_dict(), "Project approved successfully")


@projects_bp.route("/<int:project_id>/request-approval", methods=["POST"])
@login_required
@role_required(Role.DIRECTOR.value, Role.PROJECT_MANAGER.value)
def request_approval(project_id):
    user_id, role = current_actor()
    approvals = approval_service.request_approval(project_id, user_id, role)
    return api_success([a.to_dict() for a in approvals], "Approval request created successfully", status=201)


@projects_bp.route("/<int:project_id>/approvals", methods=["GET"])
@login_required
def project_approvals(project_id):
    user_id, role = current_actor()
    project_service.get_project(project_id, user_id, role)
    approvals = approval_service.get_project_approvals(project_id)
    return api_success([a.to_dict() for a in approvals], "Project approvals retrieved successfully")


@projects_bp.route("/<int:project_id>/budget", methods=["PATCH"])
@login_required
def update_budget(project_id):
    """Body: { actual_cost }"""
    user_id, role = current_actor()
    data = request.get_json(silent=True) or {}
    if data.get("actual_cost") in (None, ""):
        raise ValidationError("actual_cost is required", details={"actual_cost": "required"})
    project = project_service.update_project_budget(project_id, data["actual_cost"], user_id, role)
    return api_success(project.to_dict(), "Project budget updated successfully")


@projects_bp.route("/<int:project_id>/stats", methods=["GET"])
@login_required
def project_stats(project_id):
    user_id, role = current_actor()
    return api_success(project_service.get_project_stats(project_id, user_id, role),
                       "Project statistics retrieved successfully")


@projects_bp.route("/<int:project_id>/timeline", methods=["GET"])
@login_required
def project_timeline(project_id):
    user_id, role = current_actor()
    return api_success(project_service.get_project_timeline(project_id, user_id, role),
                       "Project timeline retrieved successfully")
