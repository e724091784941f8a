"""
Notification sink for domain events.

``NotificationService`` is registered as the application's event sink.
For each event it resolves the recipients, renders the matching email
template through ``EmailService`` and commits the EmailLog rows.

Delivery is best-effort: a failure resolving one event is logged and
dropped, and an SMTP failure for one recipient does not stop the others.
Failed sends keep their EmailLog row with status 'failed'. The business
transaction that produced the event has already committed.
"""

import logging
import smtplib

from sqlalchemy import select

from constructhub.core import events as ev
from constructhub.models import db
from constructhub.models.project import Project, ProjectApproval
from constructhub.models.task import Task, TaskApproval
from constructhub.models.user import User
from constructhub.services.email_service import EmailService

logger = logging.getLogger(__name__)


def _first_name(user: User) -> str:
    return (user.full_name or "").split(" ")[0] or "User"


def _money(value) -> str:
    return f"{float(value or 0):,.2f}"


def _users(ids) -> list[User]:
    ids = [i for i in dict.fromkeys(ids) if i]
    if not ids:
        return []
    return db.session.execute(select(User).where(User.id.in_(ids)).order_by(User.id)).scalars().all()


def _stakeholders(project: Project, *extra) -> list[User]:
    return _users([project.project_manager_id, project.client_id, *extra])


def _active_directors() -> list[int]:
    return db.session.execute(
        select(User.id).where(User.role == "Director", User.status == "Active")
    ).scalars().all()


class NotificationService:
    """Maps each event type to (template, recipients, context)."""

    def __init__(self, email_service=EmailService):
        self.email_service = email_service
        self._handlers = {
            ev.ProjectCreated: self._project_created,
            ev.ProjectStatusChanged: self._project_status_changed,
            ev.ProjectApproved: self._project_approved,
            ev.ProjectDeleted: self._project_deleted,
            ev.ApprovalRequested: self._approval_requested,
            ev.ApprovalDecided: self._approval_decided,
            ev.BudgetExceeded: self._budget_exceeded,
            ev.TaskAssigned: self._task_assigned,
            ev.TaskApprovalRequested: self._task_approval_requested,
            ev.TaskApprovalResponded: self._task_approval_responded,
            ev.TaskDeadlineApproaching: self._task_deadline,
        }

    def handle(self, event: ev.DomainEvent) -> None:
        handler = self._handlers.get(type(event))
        if handler is None:
            logger.debug("No notification for event %s", event.name)
            return
        try:
            template, recipients, context, project_id = handler(event)
        except Exception:
            db.session.rollback()
            logger.exception("Notification dropped for %s: %s", event.name, event.to_dict())
            return

        failed = []
        for user in recipients:
            try:
                self.email_service.send_from_template(
                    to_email=user.email,
                    to_name=user.full_name,
                    template_name=template,
                    context={"first_name": _first_name(user), **context},
                    category=event.name,
                    project_id=project_id,
                )
            except (smtplib.SMTPException, OSError):
                # EmailService already marked the row failed; keep going
                failed.append(user.email)
            except Exception:
                logger.exception("Notification %s not rendered for %s", event.name, user.email)
                failed.append(user.email)
        try:
            db.session.commit()
        except Exception:
            db.session.rollback()
            logger.exception("Email log not saved for %s", event.name)
            return
        if failed:
            logger.warning("Notification %s partially delivered, failed=%s", event.name, failed)

    # ── Project events ────────────────────────────────────────────────────

    def _project_created(self, event):
        project = db.session.get(Project, event.project_id)
        context = {"project_name": project.name, "budget": _money(project.budget)}
        return "project_created", _stakeholders(project), context, project.id

    def _project_status_changed(self, event):
        project = db.session.get(Project, event.project_id)
        context = {
            "project_name": project.name,
            "old_status": event.old_status,
            "new_status": event.new_status,
        }
        return "project_status_changed", _stakeholders(project), context, project.id

    def _project_approved(self, event):
        project = db.session.get(Project, event.project_id)
        context = {"project_name": project.name}
        return "project_approved", _stakeholders(project, project.created_by), context, project.id

    def _project_deleted(self, event):
        context = {"project_name": event.project_name}
        return "project_deleted", _users(event.recipient_ids), context, event.project_id

    def _budget_exceeded(self, event):
        project = db.session.get(Project, event.project_id)
        recipients = _users([project.project_manager_id, project.client_id, *_active_directors()])
        context = {
            "project_name": project.name,
            "budget": _money(event.budget),
            "actual_cost": _money(event.actual_cost),
            "over_budget_amount": _money(event.over_budget_amount),
            "over_budget_percentage": f"{event.over_budget_percentage:.2f}",
        }
        return "budget_alert", recipients, context, project.id

    # ── Approval events ───────────────────────────────────────────────────

    def _approval_requested(self, event):
        project = db.session.get(Project, event.project_id)
        context = {
            "project_name": project.name,
            "budget": _money(project.budget),
            "approval_level": event.approval_level,
        }
        return "approval_request", _users([event.approver_id]), context, project.id

    def _approval_decided(self, event):
        project = db.session.get(Project, event.project_id)
        approval = db.session.get(ProjectApproval, event.approval_id)
        approver = db.session.get(User, event.approver_id)
        context = {
            "project_name": project.name,
            "decision": event.decision.lower(),
            "approval_level": approval.approval_level if approval else "",
            "approver_name": approver.full_name if approver else "An approver",
            "comments": event.comments or "",
        }
        recipients = _stakeholders(project, project.created_by)
        return "approval_decision", recipients, context, project.id

    # ── Task events ───────────────────────────────────────────────────────

    def _task_assigned(self, event):
        task = db.session.get(Task, event.task_id)
        context = {
            "task_title": task.title,
            "project_name": task.project.name,
            "priority": task.priority,
            "due_date": task.due_date.isoformat() if task.due_date else "not set",
        }
        return "task_assigned", _users([event.assignee_id]), context, task.project_id

    def _task_approval_requested(self, event):
        task = db.session.get(Task, event.task_id)
        requester = db.session.get(User, event.requested_by)
        context = {
            "task_title": task.title,
            "requester_name": requester.full_name if requester else "A team member",
        }
        return "task_approval_request", _users([task.project.project_manager_id]), context, task.project_id

    def _task_approval_responded(self, event):
        approval = db.session.get(TaskApproval, event.approval_id)
        task = db.session.get(Task, event.task_id)
        context = {
            "task_title": task.title,
            "status": event.status.lower(),
            "comments": event.comments or "",
        }
        return "task_approval_response", _users([approval.requested_by]), context, task.project_id

    def _task_deadline(self, event):
        task = db.session.get(Task, event.task_id)
        context = {
            "task_title": task.title,
            "days": event.days_until_due,
            "due_date": task.due_date.isoformat(),
            "status": task.status,
            "completion": task.completion_percentage,
        }
        return "task_deadline", _users([event.assignee_id]), context, task.project_id
