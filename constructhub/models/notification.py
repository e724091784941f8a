"""
Outbound email audit log.

Every email the notification layer produces is recorded here, whether it
was delivered over SMTP, only logged (no MAIL_SERVER) or failed.
"""

from datetime import datetime, timezone

from constructhub.models import db

EMAIL_STATUSES = {"queued", "sent", "logged", "failed"}


class EmailLog(db.Model):
    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=False, index=True)
    recipient_name = db.Column(db.String(200), nullable=True)
    subject = db.Column(db.String(500), nullable=False)
    template_name = db.Column(db.String(100), nullable=True)
    category = db.Column(db.String(30), default="system",
                         comment="Event family that triggered this email")
    status = db.Column(db.String(20), default="queued",
                       comment="queued, sent, logged, failed")
    error_message = db.Column(db.Text, nullable=True)
    project_id = db.Column(db.Integer, nullable=True, index=True)

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc))

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "recipient_name": self.recipient_name,
            "subject": self.subject,
            "template_name": self.template_name,
            "category": self.category,
            "status": self.status,
            "error_message": self.error_message,
            "project_id": self.project_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
