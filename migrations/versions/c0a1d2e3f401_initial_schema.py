"""initial_schema

Users, projects with multi-level approvals, tasks with dependencies,
task approvals, time logs and the email log.

Revision ID: c0a1d2e3f401
Revises:
Create Date: 2026-10-18 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "c0a1d2e3f401"
down_revision = None
branch_labels = None
depends_on = None

_ROLES = (
    "Director", "Senior Director", "Project Manager", "Quantity Surveyor", "Sales Manager",
    "Customer Success Manager", "Employee", "Customer", "Supplier",
)


def _in(column, values):
    return f"{column} IN (" + ",".join(f"'{v}'" for v in values) + ")"


def _timestamps():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
    ]


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=255), nullable=False),
            sa.Column("password_hash", sa.String(length=255), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=False),
            sa.Column("phone", sa.String(length=30), nullable=True),
            sa.Column("role", sa.String(length=50), nullable=False, server_default="Employee"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Active"),
            sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(_in("role", _ROLES), name="ck_user_role"),
            sa.CheckConstraint(_in("status", ("Active", "Inactive", "Pending")), name="ck_user_status"),
        )
        op.create_index("ix_users_email", "users", ["email"], unique=True)

    if "projects" not in existing_tables:
        op.create_table(
            "projects",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("location", sa.String(length=300), nullable=True),
            sa.Column("project_type", sa.String(length=50), nullable=True),
            sa.Column("budget", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("actual_cost", sa.Numeric(15, 2), nullable=False, server_default="0"),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Planning"),
            sa.Column("client_id", sa.Integer(), nullable=False),
            sa.Column("project_manager_id", sa.Integer(), nullable=False),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("start_date", sa.Date(), nullable=False),
            sa.Column("end_date", sa.Date(), nullable=False),
            *_timestamps(),
            sa.ForeignKeyConstraint(["client_id"], ["users.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["project_manager_id"], ["users.id"], ondelete="RESTRICT"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                _in("status", ("Planning", "In Progress", "On Hold", "Completed", "Closed")),
                name="ck_project_status",
            ),
            sa.CheckConstraint("start_date < end_date", name="ck_project_dates"),
            sa.CheckConstraint("budget >= 0", name="ck_project_budget"),
            sa.CheckConstraint("actual_cost >= 0", name="ck_project_actual_cost"),
        )
        op.create_index("ix_projects_client_id", "projects", ["client_id"])
        op.create_index("ix_projects_project_manager_id", "projects", ["project_manager_id"])

    if "project_approvals" not in existing_tables:
        op.create_table(
            "project_approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("approver_id", sa.Integer(), nullable=False),
            sa.Column("approval_level", sa.String(length=30), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["approver_id"], ["users.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                _in("approval_level", ("Project Manager", "Director", "Senior Director")),
                name="ck_project_approval_level",
            ),
            sa.CheckConstraint(
                _in("status", ("Pending", "Approved", "Rejected")),
                name="ck_project_approval_status",
            ),
        )
        op.create_index("ix_project_approvals_project_id", "project_approvals", ["project_id"])
        op.create_index("ix_project_approvals_approver_id", "project_approvals", ["approver_id"])

    if "tasks" not in existing_tables:
        op.create_table(
            "tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("project_id", sa.Integer(), nullable=False),
            sa.Column("assigned_to", sa.Integer(), nullable=True),
            sa.Column("created_by", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Not Started"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="Medium"),
            sa.Column("start_date", sa.Date(), nullable=True),
            sa.Column("due_date", sa.Date(), nullable=True),
            sa.Column("completion_percentage", sa.Integer(), nullable=False, server_default="0"),
            sa.Column("estimated_hours", sa.Numeric(8, 2), nullable=True),
            sa.Column("actual_hours", sa.Numeric(10, 2), nullable=False, server_default="0"),
            *_timestamps(),
            sa.ForeignKeyConstraint(["project_id"], ["projects.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["assigned_to"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                _in("status", ("Not Started", "In Progress", "Completed", "On Hold")),
                name="ck_task_status",
            ),
            sa.CheckConstraint(_in("priority", ("Low", "Medium", "High", "Critical")), name="ck_task_priority"),
            sa.CheckConstraint(
                "completion_percentage >= 0 AND completion_percentage <= 100",
                name="ck_task_completion",
            ),
        )
        op.create_index("ix_tasks_project_id", "tasks", ["project_id"])
        op.create_index("ix_tasks_assigned_to", "tasks", ["assigned_to"])

    if "task_dependencies" not in existing_tables:
        op.create_table(
            "task_dependencies",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("depends_on_task_id", sa.Integer(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["depends_on_task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("task_id", "depends_on_task_id", name="uq_task_dependency"),
            sa.CheckConstraint("task_id != depends_on_task_id", name="ck_task_dep_no_self_loop"),
        )
        op.create_index("ix_task_dependencies_task_id", "task_dependencies", ["task_id"])
        op.create_index("ix_task_dependencies_depends_on_task_id", "task_dependencies", ["depends_on_task_id"])

    if "task_approvals" not in existing_tables:
        op.create_table(
            "task_approvals",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("requested_by", sa.Integer(), nullable=True),
            sa.Column("approved_by", sa.Integer(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="Pending"),
            sa.Column("comments", sa.Text(), nullable=True),
            sa.Column("requested_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("responded_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["requested_by"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["approved_by"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.CheckConstraint(
                _in("status", ("Pending", "Approved", "Declined")),
                name="ck_task_approval_status",
            ),
        )
        op.create_index("ix_task_approvals_task_id", "task_approvals", ["task_id"])

    if "time_logs" not in existing_tables:
        op.create_table(
            "time_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("task_id", sa.Integer(), nullable=False),
            sa.Column("user_id", sa.Integer(), nullable=False),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=True),
            sa.Column("duration", sa.Integer(), nullable=True, comment="Minutes, set on stop"),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["task_id"], ["tasks.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_time_logs_task_id", "time_logs", ["task_id"])
        op.create_index("ix_time_logs_user_id", "time_logs", ["user_id"])
        op.create_index("ix_time_logs_task_user_active", "time_logs", ["task_id", "user_id", "is_active"])

    if "email_logs" not in existing_tables:
        op.create_table(
            "email_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient_email", sa.String(length=255), nullable=False),
            sa.Column("recipient_name", sa.String(length=200), nullable=True),
            sa.Column("subject", sa.String(length=500), nullable=False),
            sa.Column("template_name", sa.String(length=100), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("project_id", sa.Integer(), nullable=True),
            sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_email_logs_recipient_email", "email_logs", ["recipient_email"])
        op.create_index("ix_email_logs_project_id", "email_logs", ["project_id"])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    for table in ("email_logs", "time_logs", "task_approvals", "task_dependencies",
                  "tasks", "project_approvals", "projects", "users"):
        if table in existing_tables:
            op.drop_table(table)
