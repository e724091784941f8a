"""approval rounds and active time log guard

Numbers approval rounds so a decision only aggregates its own round, and
enforces at most one active time log per (task, user) in the database.

Existing approval rows are backfilled as round 1.

Revision ID: d1e2f3a4b502
Revises: c0a1d2e3f401
Create Date: 2026-10-20 10:30:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "d1e2f3a4b502"
down_revision = "c0a1d2e3f401"
branch_labels = None
depends_on = None


def upgrade():
    inspector = sa_inspect(op.get_bind())
    approval_columns = {c["name"] for c in inspector.get_columns("project_approvals")}
    time_log_indexes = {ix["name"] for ix in inspector.get_indexes("time_logs")}

    if "round_number" not in approval_columns:
        with op.batch_alter_table("project_approvals", schema=None) as batch_op:
            batch_op.add_column(sa.Column("round_number", sa.Integer(), nullable=False,
                                          server_default="1",
                                          comment="Approval round, stamped by request_approval"))
            batch_op.create_index("ix_project_approvals_project_round", ["project_id", "round_number"])

    if "uq_time_logs_active_task_user" not in time_log_indexes:
        op.create_index(
            "uq_time_logs_active_task_user", "time_logs", ["task_id", "user_id"],
            unique=True,
            postgresql_where=sa.text("is_active"),
            sqlite_where=sa.text("is_active"),
        )


def downgrade():
    op.drop_index("uq_time_logs_active_task_user", table_name="time_logs")
    with op.batch_alter_table("project_approvals", schema=None) as batch_op:
        batch_op.drop_index("ix_project_approvals_project_round")
        batch_op.drop_column("round_number")
