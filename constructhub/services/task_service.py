"""
Task: service layer.

Business logic for:
    - CRUD:                 create / read / update / delete
    - Dependency graph:     same-project edges, full edge-set replacement,
                            cycle detection of any length
    - Status gating:        In Progress / Completed only when every direct
                            dependency is Completed
    - Derived fields:       completion defaults, actual_hours from time logs
    - Task approvals:       request / respond (project manager only)

Every graph mutation runs in one transaction under a row lock on the
owning project, so two concurrent updates can never each pass the cycle
check and jointly close a cycle.
"""

import logging
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import delete, func, or_, select

from constructhub.core.events import (
    TaskApprovalRequested,
    TaskApprovalResponded,
    TaskAssigned,
    TaskDeadlineApproaching,
    publish,
)
from constructhub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from constructhub.models import db
from constructhub.models.task import (
    DEFAULT_COMPLETION,
    GATED_TASK_STATUSES,
    TASK_PRIORITIES,
    TASK_STATUSES,
    Task,
    TaskApproval,
    TaskDependency,
    TimeLog,
    validate_no_cycle,
)
from constructhub.models.user import User
from constructhub.services.project_service import get_project_for_update
from constructhub.utils.helpers import paginate, parse_date, parse_decimal, parse_int

logger = logging.getLogger(__name__)

DEADLINE_WINDOW_DAYS = 2

TASK_APPROVAL_RESPONSES = {"Approved", "Declined"}


# ── Lookups & permissions ────────────────────────────────────────────────────


def get_task_or_404(task_id: int) -> Task:
    task = db.session.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task", task_id)
    return task


def can_user_update_task(task: Task, user_id: int) -> bool:
    """Assignee, creator or the project's manager."""
    return user_id in (task.assigned_to, task.created_by, task.project.project_manager_id)


def can_user_delete_task(task: Task, user_id: int) -> bool:
    return user_id in (task.created_by, task.project.project_manager_id)


def can_user_approve_task(task: Task, user_id: int) -> bool:
    return task.project.project_manager_id == user_id


# ── Field validation ─────────────────────────────────────────────────────────


def _validate_assignee(user_id):
    if db.session.get(User, user_id) is None:
        raise NotFoundError("Assigned user", user_id)


def _parse_dependency_ids(raw) -> list[int]:
    if raw is None:
        return []
    if not isinstance(raw, (list, tuple)):
        raise ValidationError("dependencies must be a list of task ids")
    ids = [parse_int(v, "dependencies") for v in raw]
    if len(set(ids)) != len(ids):
        raise ValidationError(
            "Duplicate dependency ids are not allowed",
            details={"dependencies": ids},
        )
    return ids


def _validate_dependencies_exist(project_id: int, dependency_ids: list[int]) -> None:
    if not dependency_ids:
        return
    found = set(db.session.execute(
        select(Task.id).where(Task.id.in_(dependency_ids), Task.project_id == project_id)
    ).scalars().all())
    missing = [d for d in dependency_ids if d not in found]
    if missing:
        raise ValidationError(
            "One or more dependency tasks not found or not in the same project",
            details={"invalid_dependencies": missing},
        )


def _check_no_cycles(task_id: int, dependency_ids: list[int]) -> None:
    for dep_id in dependency_ids:
        if not validate_no_cycle(db.session, task_id, dep_id):
            logger.warning("Cyclic dependency rejected task_id=%s depends_on=%s", task_id, dep_id)
            raise ValidationError(
                "Circular dependency detected",
                details={"task_id": task_id, "depends_on_task_id": dep_id},
            )


def _check_dependencies_completed(dependency_ids, new_status: str) -> None:
    """Gate: every direct dependency must be Completed."""
    if not dependency_ids:
        return
    incomplete = db.session.execute(
        select(Task.id, Task.title, Task.status)
        .where(Task.id.in_(list(dependency_ids)), Task.status != "Completed")
        .order_by(Task.id)
    ).all()
    if incomplete:
        raise ValidationError(
            f"Cannot change status to {new_status}: dependencies are not completed",
            details={"incomplete_dependencies": [
                {"id": row.id, "title": row.title, "status": row.status} for row in incomplete
            ]},
        )


def _validate_scalar_fields(data: dict) -> dict:
    """Validate and coerce the plain columns present in ``data``."""
    fields = {}
    if "title" in data:
        title = (data.get("title") or "").strip()
        if not title:
            raise ValidationError("title cannot be empty", details={"title": "required"})
        fields["title"] = title
    if "description" in data:
        fields["description"] = data.get("description") or ""
    if "priority" in data and data["priority"] is not None:
        if data["priority"] not in TASK_PRIORITIES:
            raise ValidationError(f"priority must be one of {sorted(TASK_PRIORITIES)}")
        fields["priority"] = data["priority"]
    if "status" in data and data["status"] is not None:
        if data["status"] not in TASK_STATUSES:
            raise ValidationError(f"status must be one of {sorted(TASK_STATUSES)}")
        fields["status"] = data["status"]
    if "completion_percentage" in data and data["completion_percentage"] is not None:
        pct = parse_int(data["completion_percentage"], "completion_percentage")
        if not 0 <= pct <= 100:
            raise ValidationError("completion_percentage must be between 0 and 100")
        fields["completion_percentage"] = pct
    if "estimated_hours" in data:
        hours = parse_decimal(data["estimated_hours"], "estimated_hours")
        if hours is not None and hours < 0:
            raise ValidationError("estimated_hours cannot be negative")
        fields["estimated_hours"] = hours
    for field in ("start_date", "due_date"):
        if field in data:
            fields[field] = parse_date(data[field], field)
    start, due = fields.get("start_date"), fields.get("due_date")
    if start and due and due < start:
        raise ValidationError("due_date cannot be before start_date")
    return fields


# ── Derived fields ───────────────────────────────────────────────────────────


def recompute_actual_hours(task: Task) -> Decimal:
    """actual_hours = sum(stopped log minutes) / 60. Caller commits."""
    db.session.flush()
    minutes = db.session.scalar(
        select(func.coalesce(func.sum(TimeLog.duration), 0)).where(
            TimeLog.task_id == task.id,
            TimeLog.is_active.is_(False),
            TimeLog.duration.isnot(None),
        )
    )
    hours = (Decimal(int(minutes)) / Decimal(60)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)
    task.actual_hours = hours
    return hours


def _deadline_event(task: Task, today: date | None = None):
    if not task.due_date or not task.assigned_to or task.status == "Completed":
        return None
    days = (task.due_date - (today or date.today())).days
    if 0 < days <= DEADLINE_WINDOW_DAYS:
        return TaskDeadlineApproaching(task_id=task.id, assignee_id=task.assigned_to, days_until_due=days)
    return None


# ── CRUD ─────────────────────────────────────────────────────────────────────


def create_task(data: dict, created_by: int) -> Task:
    """Create a task in Not Started, optionally with dependencies."""
    project_id = parse_int(data.get("project_id"), "project_id")
    if project_id is None:
        raise ValidationError("project_id is required", details={"project_id": "required"})
    if not (data.get("title") or "").strip():
        raise ValidationError("title is required", details={"title": "required"})

    try:
        get_project_for_update(project_id)
        fields = _validate_scalar_fields(data)
        fields.pop("status", None)
        fields.pop("completion_percentage", None)

        assignee_id = parse_int(data.get("assigned_to"), "assigned_to")
        if assignee_id:
            _validate_assignee(assignee_id)

        dependency_ids = _parse_dependency_ids(data.get("dependencies"))
        _validate_dependencies_exist(project_id, dependency_ids)

        task = Task(
            project_id=project_id,
            assigned_to=assignee_id,
            created_by=created_by,
            status="Not Started",
            completion_percentage=0,
            actual_hours=Decimal("0"),
            **fields,
        )
        db.session.add(task)
        db.session.flush()
        for dep_id in dependency_ids:
            db.session.add(TaskDependency(task_id=task.id, depends_on_task_id=dep_id))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Task created id=%s project_id=%s deps=%s", task.id, project_id, dependency_ids)
    if task.assigned_to:
        publish(TaskAssigned(task_id=task.id, assignee_id=task.assigned_to, assigned_by=created_by))
    return task


def update_task(task_id: int, data: dict, user_id: int, today: date | None = None) -> Task:
    """Update a task; ``dependencies`` (when present) replaces the edge set.

    Raises:
        NotFoundError: task or new assignee missing.
        AuthorizationError: caller is not assignee, creator or project manager.
        ValidationError: bad fields, foreign/missing dependencies, cycles,
            or a gated status with incomplete dependencies.
    """
    task = get_task_or_404(task_id)
    events = []
    try:
        get_project_for_update(task.project_id)
        db.session.refresh(task)
        if not can_user_update_task(task, user_id):
            raise AuthorizationError("You do not have permission to update this task")

        old_status = task.status
        old_assignee = task.assigned_to
        fields = _validate_scalar_fields(data)

        if "assigned_to" in data:
            assignee_id = parse_int(data.get("assigned_to"), "assigned_to")
            if assignee_id:
                _validate_assignee(assignee_id)
            fields["assigned_to"] = assignee_id

        if "dependencies" in data:
            dependency_ids = _parse_dependency_ids(data.get("dependencies"))
            if task.id in dependency_ids:
                raise ValidationError("A task cannot depend on itself")
            _validate_dependencies_exist(task.project_id, dependency_ids)
            db.session.execute(delete(TaskDependency).where(TaskDependency.task_id == task.id))
            db.session.flush()
            _check_no_cycles(task.id, dependency_ids)
            for dep_id in dependency_ids:
                db.session.add(TaskDependency(task_id=task.id, depends_on_task_id=dep_id))
            db.session.flush()
            effective_dependencies = dependency_ids
        else:
            effective_dependencies = db.session.execute(
                select(TaskDependency.depends_on_task_id).where(TaskDependency.task_id == task.id)
            ).scalars().all()

        new_status = fields.get("status")
        if new_status and new_status != old_status and new_status in GATED_TASK_STATUSES:
            _check_dependencies_completed(effective_dependencies, new_status)

        if new_status in DEFAULT_COMPLETION and "completion_percentage" not in fields:
            fields["completion_percentage"] = DEFAULT_COMPLETION[new_status]

        for field, value in fields.items():
            setattr(task, field, value)
        if "completion_percentage" in fields:
            recompute_actual_hours(task)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Task updated id=%s by=%s fields=%s", task.id, user_id, sorted(fields))

    if task.assigned_to and task.assigned_to != old_assignee:
        events.append(TaskAssigned(task_id=task.id, assignee_id=task.assigned_to, assigned_by=user_id))
    if fields.get("due_date"):
        deadline = _deadline_event(task, today)
        if deadline:
            events.append(deadline)
    publish(*events)
    return task


def delete_task(task_id: int, user_id: int) -> None:
    """Delete a task nobody depends on. Creator or project manager only."""
    task = get_task_or_404(task_id)
    try:
        get_project_for_update(task.project_id)
        if not can_user_delete_task(task, user_id):
            raise AuthorizationError("You do not have permission to delete this task")

        dependents = db.session.execute(
            select(TaskDependency.task_id).where(TaskDependency.depends_on_task_id == task_id)
        ).scalars().all()
        if dependents:
            raise ConflictError(
                "Cannot delete task that has dependent tasks",
                details={"dependent_task_ids": sorted(dependents)},
            )
        db.session.delete(task)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    logger.info("Task deleted id=%s by=%s", task_id, user_id)


def get_task(task_id: int) -> Task:
    return get_task_or_404(task_id)


def list_tasks(filters: dict, page: int, per_page: int):
    """Return (tasks, pagination) matching the filters, newest first."""
    q = Task.query
    if filters.get("project_id"):
        q = q.filter(Task.project_id == parse_int(filters["project_id"], "project_id"))
    if filters.get("assigned_to"):
        q = q.filter(Task.assigned_to == parse_int(filters["assigned_to"], "assigned_to"))
    if filters.get("status"):
        q = q.filter(Task.status == filters["status"])
    if filters.get("priority"):
        q = q.filter(Task.priority == filters["priority"])
    due_from = parse_date(filters.get("due_date_from"), "due_date_from")
    if due_from:
        q = q.filter(Task.due_date >= due_from)
    due_to = parse_date(filters.get("due_date_to"), "due_date_to")
    if due_to:
        q = q.filter(Task.due_date <= due_to)
    search = (filters.get("search") or "").strip()
    if search:
        like = f"%{search}%"
        q = q.filter(or_(Task.title.ilike(like), Task.description.ilike(like)))
    q = q.order_by(Task.created_at.desc(), Task.id.desc())
    return paginate(q, page, per_page)


# ── Task approvals ───────────────────────────────────────────────────────────


def request_task_approval(task_id: int, requested_by: int, comments: str | None = None) -> TaskApproval:
    task = get_task_or_404(task_id)
    try:
        get_project_for_update(task.project_id)
        pending = db.session.execute(
            select(TaskApproval.id)
            .where(TaskApproval.task_id == task_id, TaskApproval.status == "Pending")
            .limit(1)
        ).first()
        if pending:
            raise ConflictError("Task already has a pending approval request")

        approval = TaskApproval(
            task_id=task_id,
            requested_by=requested_by,
            status="Pending",
            comments=comments,
        )
        db.session.add(approval)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Task approval requested id=%s task_id=%s by=%s", approval.id, task_id, requested_by)
    publish(TaskApprovalRequested(approval_id=approval.id, task_id=task_id, requested_by=requested_by))
    return approval


def respond_to_task_approval(approval_id: int, responder_id: int, status: str,
                             comments: str | None = None) -> TaskApproval:
    if status not in TASK_APPROVAL_RESPONSES:
        raise ValidationError(f"status must be one of {sorted(TASK_APPROVAL_RESPONSES)}")

    approval = db.session.get(TaskApproval, approval_id)
    if approval is None:
        raise NotFoundError("Task approval", approval_id)
    try:
        get_project_for_update(approval.task.project_id)
        db.session.refresh(approval)
        if approval.status != "Pending":
            raise ConflictError("Task approval has already been processed")
        if not can_user_approve_task(approval.task, responder_id):
            raise AuthorizationError("Only the project manager can respond to task approvals")

        approval.status = status
        approval.approved_by = responder_id
        approval.comments = comments
        approval.responded_at = datetime.now(timezone.utc)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info("Task approval responded id=%s status=%s by=%s", approval.id, status, responder_id)
    publish(TaskApprovalResponded(
        approval_id=approval.id, task_id=approval.task_id,
        responder_id=responder_id, status=status, comments=comments,
    ))
    return approval


def get_task_approvals(task_id: int) -> list[TaskApproval]:
    get_task_or_404(task_id)
    return (
        TaskApproval.query.filter_by(task_id=task_id)
        .order_by(TaskApproval.requested_at.desc(), TaskApproval.id.desc())
        .all()
    )
