"""
ConstructHub project models.

Models:
    - Project:          construction project with budget, schedule and owner links
    - ProjectApproval:  one approver's decision within an approval round

Architecture:
    User(client) ──1:N──▶ Project ◀──N:1── User(project manager)
    Project ──1:N──▶ ProjectApproval  (created in rounds, one record per level)
    Project ──1:N──▶ Task             (see models/task.py)

Lifecycle states:
    Project:          Planning → In Progress → Completed → Closed
                      Planning | In Progress ⇄ On Hold
    ProjectApproval:  Pending → Approved | Rejected
"""

from datetime import datetime, timezone
from decimal import Decimal

from constructhub.models import db


# ── Constants ────────────────────────────────────────────────────────────────

PROJECT_STATUSES = {"Planning", "In Progress", "On Hold", "Completed", "Closed"}

PROJECT_TYPES = {"Residential", "Commercial", "Industrial", "Infrastructure", "Renovation"}

APPROVAL_LEVELS = ("Project Manager", "Director", "Senior Director")

APPROVAL_STATUSES = {"Pending", "Approved", "Rejected"}

PROJECT_TRANSITIONS = {
    "Planning": ["In Progress", "On Hold"],
    "In Progress": ["On Hold", "Completed"],
    "On Hold": ["In Progress", "Planning"],
    "Completed": ["Closed"],
    "Closed": [],
}

# budget strictly above threshold → levels; checked top-down
APPROVAL_THRESHOLDS = (
    (Decimal("1000000"), ["Project Manager", "Director", "Senior Director"]),
    (Decimal("500000"), ["Project Manager", "Director"]),
)
DEFAULT_APPROVAL_LEVELS = ["Director"]


def validate_project_transition(old_status, new_status):
    """Return True if old_status → new_status is a valid project transition."""
    return new_status in PROJECT_TRANSITIONS.get(old_status, [])


def approval_levels_for_budget(budget):
    """Required approval chain for a budget, lowest level first."""
    amount = Decimal(str(budget or 0))
    for threshold, levels in APPROVAL_THRESHOLDS:
        if amount > threshold:
            return list(levels)
    return list(DEFAULT_APPROVAL_LEVELS)


def _money(value):
    return float(value) if value is not None else None


# ═════════════════════════════════════════════════════════════════════════════
# 1. Project
# ═════════════════════════════════════════════════════════════════════════════


class Project(db.Model):
    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text, default="")
    location = db.Column(db.String(300), default="")
    project_type = db.Column(db.String(50), nullable=True)

    budget = db.Column(db.Numeric(15, 2), nullable=False, default=0)
    actual_cost = db.Column(db.Numeric(15, 2), nullable=False, default=0)

    status = db.Column(
        db.String(20), nullable=False, default="Planning",
        comment="Planning | In Progress | On Hold | Completed | Closed",
    )

    client_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    project_manager_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    created_by = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True)

    start_date = db.Column(db.Date, nullable=False)
    end_date = db.Column(db.Date, nullable=False)

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
            "status IN ('Planning','In Progress','On Hold','Completed','Closed')",
            name="ck_project_status",
        ),
        db.CheckConstraint("start_date < end_date", name="ck_project_dates"),
        db.CheckConstraint("budget >= 0", name="ck_project_budget"),
        db.CheckConstraint("actual_cost >= 0", name="ck_project_actual_cost"),
    )

    client = db.relationship("User", foreign_keys=[client_id])
    project_manager = db.relationship("User", foreign_keys=[project_manager_id])
    approvals = db.relationship(
        "ProjectApproval",
        backref="project",
        lazy="dynamic",
        cascade="all, delete-orphan",
        order_by="ProjectApproval.id",
    )
    tasks = db.relationship(
        "Task",
        backref="project",
        lazy="dynamic",
        cascade="all, delete-orphan",
    )

    def to_dict(self, include_people=False):
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "location": self.location,
            "project_type": self.project_type,
            "budget": _money(self.budget),
            "actual_cost": _money(self.actual_cost),
            "status": self.status,
            "client_id": self.client_id,
            "project_manager_id": self.project_manager_id,
            "created_by": self.created_by,
            "start_date": self.start_date.isoformat() if self.start_date else None,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_people:
            result["client"] = self.client.to_summary() if self.client else None
            result["project_manager"] = (
                self.project_manager.to_summary() if self.project_manager else None
            )
        return result

    def __repr__(self):
        return f"<Project {self.id}: {self.name[:40]} [{self.status}]>"


# ═════════════════════════════════════════════════════════════════════════════
# 2. ProjectApproval
# ═════════════════════════════════════════════════════════════════════════════


class ProjectApproval(db.Model):
    """
    One approver's record inside an approval round.
    All records of a round are created together; a project never has more
    than one round with Pending records.
    """

    __tablename__ = "project_approvals"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer, db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    approver_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False, index=True,
    )
    approval_level = db.Column(db.String(30), nullable=False)
    round_number = db.Column(db.Integer, nullable=False, default=1,
                             comment="Approval round, stamped by request_approval")
    status = db.Column(db.String(20), nullable=False, default="Pending")
    comments = db.Column(db.Text, nullable=True)
    approved_at = db.Column(db.DateTime(timezone=True), nullable=True)

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
            "approval_level IN ('Project Manager','Director','Senior Director')",
            name="ck_project_approval_level",
        ),
        db.CheckConstraint(
            "status IN ('Pending','Approved','Rejected')",
            name="ck_project_approval_status",
        ),
        db.Index("ix_project_approvals_project_round", "project_id", "round_number"),
    )

    approver = db.relationship("User", foreign_keys=[approver_id])

    def to_dict(self, include_project=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "approver_id": self.approver_id,
            "approver": self.approver.to_summary() if self.approver else None,
            "approval_level": self.approval_level,
            "round": self.round_number,
            "status": self.status,
            "comments": self.comments,
            "approved_at": self.approved_at.isoformat() if self.approved_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_project and self.project is not None:
            result["project"] = {
                "id": self.project.id,
                "name": self.project.name,
                "budget": _money(self.project.budget),
                "status": self.project.status,
            }
        return result

    def __repr__(self):
        return f"<ProjectApproval {self.id}: project={self.project_id} {self.approval_level} [{self.status}]>"
