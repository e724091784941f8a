"""
User accounts.

A user carries exactly one ``Role`` (stored as its string value) and a
status; only Active users can log in or be picked as approvers.
"""

from datetime import datetime, timezone

from constructhub.core.roles import ROLE_VALUES
from constructhub.models import db

USER_STATUSES = {"Active", "Inactive", "Pending"}


class User(db.Model):
    __tablename__ = "users"

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    full_name = db.Column(db.String(200), nullable=False)
    phone = db.Column(db.String(30), nullable=True)
    role = db.Column(db.String(50), nullable=False, default="Employee")
    status = db.Column(db.String(20), nullable=False, default="Active")
    last_login_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(
        db.DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.CheckConstraint(
            "role IN (" + ",".join(f"'{r}'" for r in ROLE_VALUES) + ")",
            name="ck_user_role",
        ),
        db.CheckConstraint(
            "status IN ('Active','Inactive','Pending')",
            name="ck_user_status",
        ),
    )

    @property
    def is_active(self):
        return self.status == "Active"

    def to_dict(self):
        return {
            "id": self.id,
            "email": self.email,
            "full_name": self.full_name,
            "phone": self.phone,
            "role": self.role,
            "status": self.status,
            "last_login_at": self.last_login_at.isoformat() if self.last_login_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def to_summary(self):
        return {"id": self.id, "full_name": self.full_name, "email": self.email, "role": self.role}

    def __repr__(self):
        return f"<User {self.id}: {self.email} ({self.role})>"
