"""
Project Approval Workflow: service layer.

A round is the set of ProjectApproval records created by one
``request_approval`` call, one per level required by the project budget:

    budget > 1,000,000  → Project Manager, Director, Senior Director
    budget >   500,000  → Project Manager, Director
    otherwise           → Director

Decisions:
    - Rejected: every other Pending record of the round is rejected
      too and the project goes On Hold.
    - Approved: once no record of the round is Pending and all of them
      are Approved, the project moves to In Progress.

Records carry the ``round_number`` of the request that created them;
only the current round counts towards the decision. A round settles the
project only while it is still in Planning, and project_service closes
the open round whenever the project leaves Planning by another path.

Both operations hold a row lock on the project for the whole transaction,
so concurrent decisions on one project are serialized and the round is
finalized exactly once.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy import func, select

from constructhub.core.events import (
    ApprovalDecided,
    ApprovalRequested,
    ProjectApproved,
    publish,
)
from constructhub.core.exceptions import (
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from constructhub.models import db
from constructhub.models.project import (
    Project,
    ProjectApproval,
    approval_levels_for_budget,
)
from constructhub.models.user import User
from constructhub.services.project_service import get_project_for_update

logger = logging.getLogger(__name__)

DECISIONS = {"Approved", "Rejected"}

CASCADE_REJECTION_COMMENT = "Rejected due to previous rejection"


def _find_approver(level: str) -> User | None:
    """First Active user (lowest id) holding exactly the level's role."""
    stmt = (
        select(User)
        .where(User.role == level, User.status == "Active")
        .order_by(User.id)
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def request_approval(project_id: int, requester_id: int, requester_role=None) -> list[ProjectApproval]:
    """Open an approval round for a project in Planning.

    Raises:
        NotFoundError: project does not exist.
        ValidationError: project not in Planning, or a required level has
            no Active approver (nothing is created in that case).
        ConflictError: the project already has Pending approvals.
    """
    try:
        project = get_project_for_update(project_id)
        if project.status != "Planning":
            raise ValidationError("Only projects in Planning status can request approval")

        pending = db.session.execute(
            select(ProjectApproval.id)
            .where(ProjectApproval.project_id == project_id, ProjectApproval.status == "Pending")
            .limit(1)
        ).first()
        if pending:
            raise ConflictError("Approval request already exists for this project")

        round_number = (db.session.scalar(
            select(func.max(ProjectApproval.round_number)).where(ProjectApproval.project_id == project_id)
        ) or 0) + 1
        levels = approval_levels_for_budget(project.budget)
        assignments = [(level, _find_approver(level)) for level in levels]
        missing = [level for level, approver in assignments if approver is None]
        if missing:
            raise ValidationError(
                "No active approver available for required approval levels",
                details={"missing_levels": missing, "required_levels": levels},
            )

        approvals = []
        for level, approver in assignments:
            approval = ProjectApproval(
                project_id=project_id,
                approver_id=approver.id,
                approval_level=level,
                round_number=round_number,
                status="Pending",
            )
            db.session.add(approval)
            approvals.append(approval)
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Approval round opened project_id=%s round=%s levels=%s by=%s",
        project_id, round_number, [a.approval_level for a in approvals], requester_id,
    )
    publish(*[
        ApprovalRequested(
            approval_id=a.id,
            project_id=project_id,
            approver_id=a.approver_id,
            approval_level=a.approval_level,
            requested_by=requester_id,
        )
        for a in approvals
    ])
    return approvals


def process_approval(approval_id: int, approver_id: int, decision: str, comments: str | None = None) -> dict:
    """Record one approver's decision and settle the round if possible.

    Returns:
        {"approval": ProjectApproval, "project": Project | None}; the
        project is included once no record of the round is Pending.
    """
    if decision not in DECISIONS:
        raise ValidationError(
            f"Decision must be one of {sorted(DECISIONS)}", details={"decision": decision},
        )

    approval = db.session.get(ProjectApproval, approval_id)
    if approval is None:
        raise NotFoundError("Approval request", approval_id)
    if approval.approver_id != approver_id:
        raise AuthorizationError("You can only process your own approval requests")

    events = []
    try:
        project = get_project_for_update(approval.project_id)
        # re-read under the lock; a concurrent rejection may have resolved it
        db.session.refresh(approval)
        if approval.status != "Pending":
            raise ConflictError("This approval request has already been processed")
        if project.status != "Planning":
            raise ConflictError(
                "Project is no longer awaiting approval",
                details={"project_status": project.status},
            )

        now = datetime.now(timezone.utc)
        approval.status = decision
        approval.comments = comments
        approval.approved_at = now

        if decision == "Rejected":
            others = db.session.execute(
                select(ProjectApproval).where(
                    ProjectApproval.project_id == project.id,
                    ProjectApproval.round_number == approval.round_number,
                    ProjectApproval.status == "Pending",
                    ProjectApproval.id != approval.id,
                )
            ).scalars().all()
            for other in others:
                other.status = "Rejected"
                other.comments = CASCADE_REJECTION_COMMENT
            project.status = "On Hold"
            events.append(ApprovalDecided(
                approval_id=approval.id, project_id=project.id,
                approver_id=approver_id, decision="Rejected", comments=comments,
            ))
            remaining_pending = 0
        else:
            db.session.flush()
            statuses = db.session.execute(
                select(ProjectApproval.status).where(
                    ProjectApproval.project_id == project.id,
                    ProjectApproval.round_number == approval.round_number,
                )
            ).scalars().all()
            remaining_pending = sum(1 for s in statuses if s == "Pending")
            approved = sum(1 for s in statuses if s == "Approved")
            if remaining_pending == 0 and approved == len(statuses):
                project.status = "In Progress"
                events.append(ProjectApproved(project_id=project.id, approved_by=approver_id))
            else:
                events.append(ApprovalDecided(
                    approval_id=approval.id, project_id=project.id,
                    approver_id=approver_id, decision="Approved", comments=comments,
                ))
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    logger.info(
        "Approval processed id=%s project_id=%s decision=%s project_status=%s pending=%s",
        approval.id, project.id, decision, project.status, remaining_pending,
    )
    publish(*events)
    return {"approval": approval, "project": project if remaining_pending == 0 else None}


def get_pending_approvals(user_id: int) -> list[ProjectApproval]:
    """The approver's work queue, oldest first."""
    stmt = (
        select(ProjectApproval)
        .where(ProjectApproval.approver_id == user_id, ProjectApproval.status == "Pending")
        .order_by(ProjectApproval.created_at, ProjectApproval.id)
    )
    return db.session.execute(stmt).scalars().all()


def get_project_approvals(project_id: int) -> list[ProjectApproval]:
    if db.session.get(Project, project_id) is None:
        raise NotFoundError("Project", project_id)
    stmt = (
        select(ProjectApproval)
        .where(ProjectApproval.project_id == project_id)
        .order_by(ProjectApproval.created_at, ProjectApproval.id)
    )
    return db.session.execute(stmt).scalars().all()
