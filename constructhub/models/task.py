"""
ConstructHub task models.

Models:
    - Task:            unit of work inside a project
    - TaskDependency:  task → depends_on_task edge (same project, acyclic)
    - TaskApproval:    sign-off request on a task, answered by the project manager
    - TimeLog:         start/stop work record; feeds Task.actual_hours

Architecture:
    Project ──1:N──▶ Task
    Task ──N:M──▶ Task        (via TaskDependency)
    Task ──1:N──▶ TaskApproval
    Task ──1:N──▶ TimeLog

Lifecycle states:
    Task:          Not Started → In Progress → Completed  (On Hold from anywhere)
    TaskApproval:  Pending → Approved | Declined
    TimeLog:       active → stopped
"""

from datetime import datetime, timezone

from constructhub.models import db


# ── Constants ────────────────────────────────────────────────────────────────

TASK_STATUSES = {"Not Started", "In Progress", "Completed", "On Hold"}

TASK_PRIORITIES = {"Low", "Medium", "High", "Critical"}

TASK_APPROVAL_STATUSES = {"Pending", "Approved", "Declined"}

# statuses that require every direct dependency to be Completed
GATED_TASK_STATUSES = {"In Progress", "Completed"}

DEFAULT_COMPLETION = {"Completed": 100, "Not Started": 0}


def validate_no_cycle(session, task_id, depends_on_id):
    """
    Check that adding task_id → depends_on_id does not create a cycle.

    Iterative DFS from depends_on_id along existing depends_on edges.
    Returns True if safe, False if task_id is reachable (cycle).
    """
    if task_id == depends_on_id:
        return False

    visited = set()
    stack = [depends_on_id]

    while stack:
        current = stack.pop()
        if current == task_id:
            return False
        if current in visited:
            continue
        visited.add(current)

        deps = (
            session.query(TaskDependency.depends_on_task_id)
            .filter(TaskDependency.task_id == current)
            .all()
        )
        for (dep_id,) in deps:
            stack.append(dep_id)

    return True


def _iso(value):
    return value.isoformat() if value else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Task
# ═════════════════════════════════════════════════════════════════════════════


class Task(db.Model):
    __tablename__ = "tasks"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    assigned_to = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True, index=True,
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    title = db.Column(db.String(300), nullable=False)
    description = db.Column(db.Text, default="")
    status = db.Column(
        db.String(20), nullable=False, default="Not Started",
        comment="Not Started | In Progress | Completed | On Hold",
    )
    priority = db.Column(db.String(20), nullable=False, default="Medium")

    start_date = db.Column(db.Date, nullable=True)
    due_date = db.Column(db.Date, nullable=True)

    completion_percentage = db.Column(db.Integer, nullable=False, default=0)
    estimated_hours = db.Column(db.Numeric(8, 2), nullable=True)
    actual_hours = db.Column(
        db.Numeric(10, 2), nullable=False, default=0,
        comment="sum(stopped time log minutes) / 60, maintained by task_service",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('Not Started','In Progress','Completed','On Hold')",
            name="ck_task_status",
        ),
        db.CheckConstraint(
            "priority IN ('Low','Medium','High','Critical')",
            name="ck_task_priority",
        ),
        db.CheckConstraint(
            "completion_percentage >= 0 AND completion_percentage <= 100",
            name="ck_task_completion",
        ),
    )

    assignee = db.relationship("User", foreign_keys=[assigned_to])
    creator = db.relationship("User", foreign_keys=[created_by])

    dependencies = db.relationship(
        "TaskDependency",
        foreign_keys="TaskDependency.task_id",
        backref="task",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )
    dependents = db.relationship(
        "TaskDependency",
        foreign_keys="TaskDependency.depends_on_task_id",
        backref="depends_on_task",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )
    approvals = db.relationship(
        "TaskApproval", backref="task", lazy="dynamic", cascade="all, delete-orphan",
    )
    time_logs = db.relationship(
        "TimeLog", backref="task", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self, include_dependencies=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "assigned_to": self.assigned_to,
            "assignee": self.assignee.to_summary() if self.assignee else None,
            "created_by": self.created_by,
            "title": self.title,
            "description": self.description,
            "status": self.status,
            "priority": self.priority,
            "start_date": _iso(self.start_date),
            "due_date": _iso(self.due_date),
            "completion_percentage": self.completion_percentage,
            "estimated_hours": float(self.estimated_hours) if self.estimated_hours is not None else None,
            "actual_hours": float(self.actual_hours or 0),
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }
        if include_dependencies:
            result["dependency_ids"] = sorted(d.depends_on_task_id for d in self.dependencies)
            result["dependent_ids"] = sorted(d.task_id for d in self.dependents)
        return result

    def __repr__(self):
        return f"<Task {self.id}: {self.title[:40]} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. TaskDependency
# ═════════════════════════════════════════════════════════════════════════════


class TaskDependency(db.Model):
    """task_id cannot start or complete until depends_on_task_id is Completed."""

    __tablename__ = "task_dependencies"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    depends_on_task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("task_id", "depends_on_task_id", name="uq_task_dependency"),
        db.CheckConstraint("task_id != depends_on_task_id", name="ck_task_dep_no_self_loop"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "depends_on_task_id": self.depends_on_task_id,
            "created_at": _iso(self.created_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 3. TaskApproval
# ═════════════════════════════════════════════════════════════════════════════


class TaskApproval(db.Model):
    __tablename__ = "task_approvals"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    requested_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    approved_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)
    status = db.Column(db.String(20), nullable=False, default="Pending")
    comments = db.Column(db.Text, nullable=True)
    requested_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )
    responded_at = db.Column(db.DateTime(timezone=True), nullable=True)

    __table_args__ = (
        db.CheckConstraint(
            "status IN ('Pending','Approved','Declined')",
            name="ck_task_approval_status",
        ),
    )

    requester = db.relationship("User", foreign_keys=[requested_by])
    approver = db.relationship("User", foreign_keys=[approved_by])

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "requested_by": self.requested_by,
            "approved_by": self.approved_by,
            "status": self.status,
            "comments": self.comments,
            "requested_at": _iso(self.requested_at),
            "responded_at": _iso(self.responded_at),
        }


# ═════════════════════════════════════════════════════════════════════════════
# 4. TimeLog
# ═════════════════════════════════════════════════════════════════════════════


class TimeLog(db.Model):
    """
    Work interval on a task.
    At most one active log per (task, user); duration is filled on stop.
    """

    __tablename__ = "time_logs"

    id = db.Column(db.Integer, primary_key=True)
    task_id = db.Column(
        db.Integer, db.ForeignKey("tasks.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    user_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    start_time = db.Column(db.DateTime(timezone=True), nullable=False)
    end_time = db.Column(db.DateTime(timezone=True), nullable=True)
    duration = db.Column(db.Integer, nullable=True, comment="Minutes, set on stop")
    description = db.Column(db.Text, nullable=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.Index("ix_time_logs_task_user_active", "task_id", "user_id", "is_active"),
        # at most one running log per (task, user)
        db.Index(
            "uq_time_logs_active_task_user", "task_id", "user_id",
            unique=True,
            postgresql_where=db.text("is_active"),
            sqlite_where=db.text("is_active"),
        ),
    )

    user = db.relationship("User", foreign_keys=[user_id])

    def to_dict(self):
        return {
            "id": self.id,
            "task_id": self.task_id,
            "user_id": self.user_id,
            "start_time": _iso(self.start_time),
            "end_time": _iso(self.end_time),
            "duration": self.duration,
            "description": self.description,
            "is_active": self.is_active,
        }
