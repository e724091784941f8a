"""
Project: service layer.

Business logic for:
    - CRUD:               create / read / update / delete with role scoping
    - Listing:            role-scoped filters, search and pagination
    - Status transitions: table-driven, Closed reserved for Directors
    - Manual approval:    Director fast path Planning → In Progress
    - Budget tracking:    actual cost updates with over-budget alerting
    - Reporting:          stats (budget, progress, schedule) and timeline

The multi-level approval round lives in approval_service; both modules
lock the project row through ``get_project_for_update``.
"""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, or_, select

from constructhub.core.events import (
    BudgetExceeded,
    ProjectApproved,
    ProjectCreated,
    ProjectDeleted,
    ProjectStatusChanged,
    publish,
)
from constructhub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from constructhub.core.roles import (
    PROJECT_MANAGER_ROLES,
    Role,
    check_permission,
    check_project_access,
)
from constructhub.models import db
from constructhub.models.project import (
    PROJECT_STATUSES,
    Project,
    ProjectApproval,
    validate_project_transition,
)
from constructhub.models.task import Task
from constructhub.models.user import User
from constructhub.utils.helpers import paginate, parse_date, parse_decimal, parse_int

logger = logging.getLogger(__name__)

SORTABLE_FIELDS = {
    "created_at": Project.created_at,
    "name": Project.name,
    "budget": Project.budget,
    "start_date": Project.start_date,
    "end_date": Project.end_date,
    "status": Project.status,
}


# ── Lookups ──────────────────────────────────────────────────────────────────


def get_project_or_404(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


def get_project_for_update(project_id: int) -> Project:
    """Load the project with a row lock held until commit/rollback.

    Serializes approval aggregation and dependency-graph mutation per
    project. SQLite ignores FOR UPDATE.
    """
    stmt = (
        select(Project)
        .where(Project.id == project_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    project = db.session.execute(stmt).scalar_one_or_none()
    if project is None:
        raise NotFoundError("Project", project_id)
    return project


# ── Status transitions ───────────────────────────────────────────────────────


def validate_status_transition(current_status: str, new_status: str, role) -> None:
    """Raise unless current_status → new_status is allowed for ``role``.

    Raises:
        ValidationError: transition not in the table.
        AuthorizationError: closing without the Director role.
    """
    if new_status not in PROJECT_STATUSES:
        raise ValidationError(f"Invalid project status: {new_status}")
    if not validate_project_transition(current_status, new_status):
        raise ValidationError(f"Invalid status transition from {current_status} to {new_status}")
    if new_status == "Closed":
        check_permission("project.close", role)


# ── Approval round housekeeping ───────────────────────────────────────────────

ROUND_CLOSED_COMMENT = "Round closed: project left Planning"


def close_open_approval_round(project: Project) -> list[int]:
    """Reject the project's Pending approvals. Caller commits.

    Called whenever a project leaves Planning outside the approval round,
    so a late decision can never move it again.
    """
    pending = db.session.execute(
        select(ProjectApproval).where(
            ProjectApproval.project_id == project.id,
            ProjectApproval.status == "Pending",
        )
    ).scalars().all()
    for approval in pending:
        approval.status = "Rejected"
        approval.comments = ROUND_CLOSED_COMMENT
    if pending:
        logger.info("Open approval round closed project_id=%s records=%s",
                    project.id, [a.id for a in pending])
    return [a.id for a in pending]


# ── Validation helpers ───────────────────────────────────────────────────────


def _validate_client(client_id):
    client = db.session.get(User, client_id)
    if client is None:
        raise ValidationError("Client not found", details={"client_id": client_id})
    if client.role != Role.CUSTOMER.value:
        raise ValidationError("Client must have Customer role", details={"client_id": client_id})
    return client


def _validate_project_manager(manager_id):
    manager = db.session.get(User, manager_id)
    if manager is None:
        raise ValidationError("Project manager not found", details={"project_manager_id": manager_id})
    if Role.parse(manager.role) not in PROJECT_MANAGER_ROLES:
        raise ValidationError(
            "Project manager must have Director or Project Manager role",
            details={"project_manager_id": manager_id},
        )
    return manager


def _validate_dates(start_date, end_date):
    if start_date and end_date and start_date >= end_date:
        raise ValidationError(
            "End date must be after start date",
            details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
        )


def _validate_budget(value, field="budget"):
    amount = parse_decimal(value, field)
    if amount is not None and amount < 0:
        raise ValidationError(f"{field} cannot be negative", details={field: str(amount)})
    return amount


# ── CRUD ─────────────────────────────────────────────────────────────────────


def create_project(data: dict, created_by: int, role) -> Project:
    """Create a project in Planning.

    Required: name, budget, client_id, project_manager_id, start_date, end_date.
    """
    check_permission("project.create", role)

    errors = {}
    name = (data.get("name") or "").strip()
    if not name:
        errors["name"] = "name is required"
    for field in ("budget", "client_id", "project_manager_id", "start_date", "end_date"):
        if data.get(field) in (None, ""):
            errors[field] = f"{field} is required"
    if errors:
        raise ValidationError("Missing required fields", details=errors)

    start_date = parse_date(data["start_date"], "start_date")
    end_date = parse_date(data["end_date"], "end_date")
    _validate_dates(start_date, end_date)
    budget = _validate_budget(data["budget"])

    client_id = parse_int(data["client_id"], "client_id")
    manager_id = parse_int(data["project_manager_id"], "project_manager_id")
    _validate_client(client_id)
    _validate_project_manager(manager_id)

    project = Project(
        name=name,
        description=data.get("description", "") or "",
        location=data.get("location", "") or "",
        project_type=data.get("project_type"),
        budget=budget,
        actual_cost=Decimal("0"),
        status="Planning",
        client_id=client_id,
        project_manager_id=manager_id,
        created_by=created_by,
        start_date=start_date,
        end_date=end_date,
    )
    db.session.add(project)
    db.session.commit()
    logger.info("Project created id=%s budget=%s by=%s", project.id, project.budget, created_by)

    publish(ProjectCreated(project_id=project.id, created_by=created_by))
    return project


def get_project(project_id: int, user_id: int, role) -> Project:
    project = get_project_or_404(project_id)
    check_project_access(project, user_id, role)
    return project


def list_projects(filters: dict, page: int, per_page: int, user_id: int, role,
                  sort_by: str = "created_at", sort_order: str = "desc"):
    """Return (projects, pagination) visible to the caller."""
    q = Project.query
    role = Role.parse(role)
    if role == Role.CUSTOMER:
        q = q.filter(Project.client_id == user_id)
    elif role == Role.PROJECT_MANAGER:
        q = q.filter(Project.project_manager_id == user_id)

    status = filters.get("status")
    if status:
        statuses = status if isinstance(status, (list, tuple)) else [s.strip() for s in str(status).split(",")]
        q = q.filter(Project.status.in_(statuses))
    if filters.get("client_id"):
        q = q.filter(Project.client_id == parse_int(filters["client_id"], "client_id"))
    if filters.get("project_manager_id"):
        q = q.filter(Project.project_manager_id == parse_int(filters["project_manager_id"], "project_manager_id"))
    if filters.get("project_type"):
        q = q.filter(Project.project_type == filters["project_type"])

    start_from = parse_date(filters.get("start_date"), "start_date")
    if start_from:
        q = q.filter(Project.start_date >= start_from)
    end_until = parse_date(filters.get("end_date"), "end_date")
    if end_until:
        q = q.filter(Project.end_date <= end_until)

    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(
            Project.name.ilike(like),
            Project.description.ilike(like),
            Project.location.ilike(like),
            Project.project_type.ilike(like),
        ))

    column = SORTABLE_FIELDS.get(sort_by, Project.created_at)
    q = q.order_by(column.asc() if str(sort_order).lower() == "asc" else column.desc(), Project.id.desc())
    return paginate(q, page, per_page)


def update_project(project_id: int, data: dict, user_id: int, role) -> Project:
    """Apply field updates; status goes through the transition table.

    A status change takes the project row lock, so it cannot interleave
    with an approval decision on the same project.
    """
    if data.get("status"):
        project = get_project_for_update(project_id)
        check_project_access(project, user_id, role)
    else:
        project = get_project(project_id, user_id, role)
    if Role.parse(role) == Role.CUSTOMER:
        raise AuthorizationError("Customers cannot update projects")
    check_permission("project.update", role, user_id=user_id, project=project)

    old_status = project.status
    new_status = data.get("status")
    if new_status and new_status != old_status:
        validate_status_transition(old_status, new_status, role)

    changes = {}
    if "start_date" in data or "end_date" in data:
        start_date = parse_date(data.get("start_date"), "start_date") or project.start_date
        end_date = parse_date(data.get("end_date"), "end_date") or project.end_date
        _validate_dates(start_date, end_date)
        changes["start_date"] = start_date
        changes["end_date"] = end_date

    client_id = parse_int(data.get("client_id"), "client_id")
    if client_id and client_id != project.client_id:
        changes["client_id"] = _validate_client(client_id).id
    manager_id = parse_int(data.get("project_manager_id"), "project_manager_id")
    if manager_id and manager_id != project.project_manager_id:
        changes["project_manager_id"] = _validate_project_manager(manager_id).id

    if "budget" in data:
        budget = _validate_budget(data["budget"])
        if budget is not None:
            changes["budget"] = budget

    if "name" in data:
        name = (data.get("name") or "").strip()
        if not name:
            raise ValidationError("name cannot be empty", details={"name": "required"})
        changes["name"] = name
    for field in ("description", "location", "project_type"):
        if field in data:
            changes[field] = data[field]
    if new_status:
        changes["status"] = new_status

    try:
        for field, value in changes.items():
            setattr(project, field, value)
        if old_status == "Planning" and new_status and new_status != old_status:
            close_open_approval_round(project)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Project updated id=%s by=%s fields=%s", project.id, user_id, sorted(changes))

    if new_status and new_status != old_status:
        publish(ProjectStatusChanged(
            project_id=project.id, old_status=old_status,
            new_status=new_status, changed_by=user_id,
        ))
    return project


def delete_project(project_id: int, user_id: int, role) -> None:
    """Delete a project. Directors only, and only when it has no tasks."""
    project = get_project_or_404(project_id)
    check_permission("project.delete", role)

    task_count = db.session.scalar(select(func.count(Task.id)).where(Task.project_id == project_id))
    if task_count:
        raise ConflictError(
            "Cannot delete project with existing tasks",
            details={"task_count": task_count},
        )

    recipients = tuple(r for r in (project.project_manager_id, project.client_id) if r)
    name = project.name
    db.session.delete(project)
    db.session.commit()
    logger.info("Project deleted id=%s by=%s", project_id, user_id)

    publish(ProjectDeleted(
        project_id=project_id, project_name=name,
        deleted_by=user_id, recipient_ids=recipients,
    ))


# ── Approval fast path & budget ──────────────────────────────────────────────


def approve_project(project_id: int, user_id: int, role) -> Project:
    """Director override: Planning → In Progress without an approval round."""
    check_permission("project.approve", role)
    project = get_project_for_update(project_id)
    try:
        if project.status != "Planning":
            raise ValidationError("Only projects in Planning status can be approved")
        project.status = "In Progress"
        close_open_approval_round(project)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Project approved (direct) id=%s by=%s", project_id, user_id)

    publish(ProjectApproved(project_id=project.id, approved_by=user_id))
    return project


def update_project_budget(project_id: int, actual_cost, user_id: int, role) -> Project:
    """Record actual cost; alerts when it exceeds the budget."""
    project = get_project(project_id, user_id, role)
    check_permission("project.budget", role, user_id=user_id, project=project)

    amount = parse_decimal(actual_cost, "actual_cost")
    if amount is None:
        raise ValidationError("actual_cost is required", details={"actual_cost": "required"})
    if amount < 0:
        raise ValidationError("Actual cost cannot be negative", details={"actual_cost": str(amount)})

    project.actual_cost = amount
    db.session.commit()
    logger.info("Project budget updated id=%s actual_cost=%s", project.id, amount)

    budget = Decimal(project.budget or 0)
    if amount > budget:
        over = amount - budget
        pct = float(over / budget * 100) if budget else 100.0
        logger.warning("Project over budget id=%s over=%s (%.1f%%)", project.id, over, pct)
        publish(BudgetExceeded(
            project_id=project.id,
            budget=float(budget),
            actual_cost=float(amount),
            over_budget_amount=float(over),
            over_budget_percentage=round(pct, 2),
        ))
    return project


# ── Reporting ────────────────────────────────────────────────────────────────


def _pct(part, whole):
    return round(float(part) / float(whole) * 100, 2) if whole else 0.0


def _timeline_progress(project, today=None):
    today = today or date.today()
    total = (project.end_date - project.start_date).days
    if total <= 0:
        return 0.0
    elapsed = (today - project.start_date).days
    return round(max(0.0, min(100.0, elapsed / total * 100)), 2)


def get_project_stats(project_id: int, user_id: int, role, today=None) -> dict:
    project = get_project(project_id, user_id, role)

    rows = db.session.execute(
        select(Task.status, func.count(Task.id))
        .where(Task.project_id == project_id)
        .group_by(Task.status)
    ).all()
    by_status = {status: count for status, count in rows}
    total_tasks = sum(by_status.values())
    progress = _pct(by_status.get("Completed", 0), total_tasks)

    budget = Decimal(project.budget or 0)
    actual = Decimal(project.actual_cost or 0)
    variance = actual - budget
    timeline_progress = _timeline_progress(project, today)

    approvals = project.approvals.order_by(ProjectApproval.created_at, ProjectApproval.id).all()

    return {
        "project": {
            "id": project.id,
            "name": project.name,
            "status": project.status,
            "budget": float(budget),
            "actual_cost": float(actual),
            "budget_utilization": _pct(actual, budget),
            "budget_variance": float(variance),
            "budget_variance_percentage": _pct(variance, budget),
            "progress": progress,
            "timeline_progress": timeline_progress,
            "schedule_variance": round(timeline_progress - progress, 2),
            "start_date": project.start_date.isoformat(),
            "end_date": project.end_date.isoformat(),
        },
        "tasks": {"total": total_tasks, "by_status": by_status},
        "approvals": {
            "total": len(approvals),
            "pending": sum(1 for a in approvals if a.status == "Pending"),
            "approved": sum(1 for a in approvals if a.status == "Approved"),
            "rejected": sum(1 for a in approvals if a.status == "Rejected"),
            "approvals": [a.to_dict() for a in approvals],
        },
    }


def _milestone_date(project, percentage):
    span = project.end_date - project.start_date
    return project.start_date + span * percentage / 100


def get_project_timeline(project_id: int, user_id: int, role) -> dict:
    project = get_project(project_id, user_id, role)
    tasks = (
        project.tasks
        .order_by(Task.start_date.is_(None), Task.start_date, Task.id)
        .all()
    )

    milestones = [{
        "id": "start", "title": "Project Start",
        "date": project.start_date.isoformat(), "status": "completed", "type": "start",
    }]
    if tasks:
        done_pct = _pct(sum(1 for t in tasks if t.status == "Completed"), len(tasks))
        for pct in (25, 50, 75):
            milestones.append({
                "id": f"milestone-{pct}",
                "title": f"{pct}% Complete",
                "date": _milestone_date(project, pct).isoformat(),
                "status": "completed" if done_pct >= pct else "pending",
                "type": "milestone",
            })
    milestones.append({
        "id": "end", "title": "Project Completion",
        "date": project.end_date.isoformat(),
        "status": "completed" if project.status in ("Completed", "Closed") else "pending",
        "type": "end",
    })

    return {
        "project": {
            "id": project.id,
            "name": project.name,
            "start_date": project.start_date.isoformat(),
            "end_date": project.end_date.isoformat(),
            "status": project.status,
        },
        "tasks": [
            {
                "id": t.id,
                "title": t.title,
                "start_date": t.start_date.isoformat() if t.start_date else None,
                "due_date": t.due_date.isoformat() if t.due_date else None,
                "status": t.status,
                "progress": t.completion_percentage,
                "priority": t.priority,
                "assignee": t.assignee.full_name if t.assignee else "Unassigned",
            }
            for t in tasks
        ],
        "milestones": milestones,
    }
