"""
ConstructHub
Email Service.

Provides email sending with template support.
When SMTP is not configured, emails are logged but not sent (dev/test mode).

    - Flask-Mail compatible config (MAIL_SERVER, MAIL_PORT, etc.)
    - Falls back to logging-only mode when MAIL_SERVER is unset
    - Every email is recorded in EmailLog for audit

Configuration (env vars):
    MAIL_SERVER     SMTP host (default: None → log-only mode)
    MAIL_PORT       SMTP port (default: 587)
    MAIL_USE_TLS    Use TLS (default: true)
    MAIL_USERNAME   SMTP username
    MAIL_PASSWORD   SMTP password
    MAIL_DEFAULT_SENDER  Default from address
"""

from __future__ import annotations

import logging
import smtplib
from datetime import datetime, timezone
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from flask import current_app

from constructhub.models import db
from constructhub.models.notification import EmailLog

logger = logging.getLogger(__name__)


def _wrap(body: str) -> str:
    return (
        '<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">'
        '<div style="background: #1f2937; color: white; padding: 16px 24px;">'
        '<h2 style="margin: 0; font-size: 18px;">ConstructHub</h2></div>'
        f'<div style="padding: 24px; border: 1px solid #e5e7eb; border-top: none;">{body}</div>'
        "</div>"
    )


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates
# ═══════════════════════════════════════════════════════════════════════════

_TEMPLATES: dict[str, dict[str, str]] = {
    "project_created": {
        "subject": "New project created: {project_name}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>Project <strong>{project_name}</strong> has been created with a budget of "
            "{budget} and is now in Planning.</p>"
        ),
    },
    "project_status_changed": {
        "subject": "Project status changed: {project_name}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>Project <strong>{project_name}</strong> moved from {old_status} to "
            "<strong>{new_status}</strong>.</p>"
        ),
    },
    "project_approved": {
        "subject": "Project approved: {project_name}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>Project <strong>{project_name}</strong> has been approved and is now In Progress.</p>"
        ),
    },
    "project_deleted": {
        "subject": "Project deleted: {project_name}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>Project <strong>{project_name}</strong> has been deleted.</p>"
        ),
    },
    "approval_request": {
        "subject": "Approval required: {project_name}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>Your approval is required at the <strong>{approval_level}</strong> level for "
            "project <strong>{project_name}</strong> (budget {budget}).</p>"
        ),
    },
    "approval_decision": {
        "subject": "Approval {decision}: {project_name}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>{approver_name} ({approval_level}) has <strong>{decision}</strong> "
            "project <strong>{project_name}</strong>.</p><p>{comments}</p>"
        ),
    },
    "budget_alert": {
        "subject": "Budget alert: {project_name} is over budget",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>Project <strong>{project_name}</strong> has exceeded its budget.</p>"
            "<ul><li>Budget: {budget}</li><li>Actual cost: {actual_cost}</li>"
            "<li>Over budget: {over_budget_amount} ({over_budget_percentage}%)</li></ul>"
        ),
    },
    "task_assigned": {
        "subject": "Task assigned: {task_title}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>You have been assigned <strong>{task_title}</strong> on project {project_name}.</p>"
            "<p>Priority: {priority}. Due: {due_date}.</p>"
        ),
    },
    "task_approval_request": {
        "subject": "Task approval requested: {task_title}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>{requester_name} requested approval for task <strong>{task_title}</strong>.</p>"
        ),
    },
    "task_approval_response": {
        "subject": "Task approval {status}: {task_title}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>Your approval request for <strong>{task_title}</strong> was "
            "<strong>{status}</strong>.</p><p>{comments}</p>"
        ),
    },
    "task_deadline": {
        "subject": "Task deadline approaching: {task_title}",
        "html": _wrap(
            "<p>Hello {first_name},</p>"
            "<p>Your task <strong>{task_title}</strong> is due in {days} day(s) ({due_date}).</p>"
            "<p>Status: {status}. Completion: {completion}%.</p>"
        ),
    },
}


class EmailService:
    """
    Email sending service with template support.

    Without MAIL_SERVER, emails are recorded with status='logged' and
    written to the application log instead of going out over SMTP.
    """

    @staticmethod
    def is_configured() -> bool:
        return bool(current_app.config.get("MAIL_SERVER"))

    @staticmethod
    def get_template(template_name: str) -> dict[str, str] | None:
        return _TEMPLATES.get(template_name)

    @classmethod
    def send(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        subject: str,
        html_body: str,
        template_name: str | None = None,
        category: str = "system",
        project_id: int | None = None,
    ) -> EmailLog:
        """
        Send an email and record it. Caller commits.

        SMTP errors are recorded on the log row (status='failed') and
        re-raised so the caller decides whether to drop them.
        """
        log = EmailLog(
            recipient_email=to_email,
            recipient_name=to_name,
            subject=subject,
            template_name=template_name,
            category=category,
            status="queued",
            project_id=project_id,
        )
        db.session.add(log)

        if not cls.is_configured():
            log.status = "logged"
            log.sent_at = datetime.now(timezone.utc)
            logger.info(
                "Email (log-only): to=%s subject='%s' template=%s",
                to_email, subject, template_name,
            )
            return log

        try:
            cls._send_smtp(to_email=to_email, to_name=to_name,
                           subject=subject, html_body=html_body)
        except (smtplib.SMTPException, OSError) as exc:
            log.status = "failed"
            log.error_message = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_email, exc)
            raise
        log.status = "sent"
        log.sent_at = datetime.now(timezone.utc)
        logger.info("Email sent: to=%s subject='%s'", to_email, subject)
        return log

    @classmethod
    def send_from_template(
        cls,
        *,
        to_email: str,
        to_name: str | None = None,
        template_name: str,
        context: dict[str, Any],
        category: str = "system",
        project_id: int | None = None,
    ) -> EmailLog:
        """Render a named template with ``context`` and send it."""
        template = cls.get_template(template_name)
        if not template:
            raise KeyError(f"Email template not found: {template_name}")

        subject = template["subject"].format_map(_SafeDict(context))
        html_body = template["html"].format_map(_SafeDict(context))

        return cls.send(
            to_email=to_email,
            to_name=to_name,
            subject=subject,
            html_body=html_body,
            template_name=template_name,
            category=category,
            project_id=project_id,
        )

    @staticmethod
    def _send_smtp(*, to_email: str, to_name: str | None,
                   subject: str, html_body: str) -> None:
        cfg = current_app.config
        server = cfg.get("MAIL_SERVER")
        port = cfg.get("MAIL_PORT", 587)
        use_tls = cfg.get("MAIL_USE_TLS", True)
        username = cfg.get("MAIL_USERNAME")
        password = cfg.get("MAIL_PASSWORD")
        sender = cfg.get("MAIL_DEFAULT_SENDER", f"noreply@{server}")

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = sender
        msg["To"] = f"{to_name} <{to_email}>" if to_name else to_email
        msg.attach(MIMEText(html_body, "html"))

        with smtplib.SMTP(server, port, timeout=30) as smtp:
            if use_tls:
                smtp.starttls()
            if username and password:
                smtp.login(username, password)
            smtp.send_message(msg)


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"
