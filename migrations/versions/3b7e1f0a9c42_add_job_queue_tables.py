"""add job queue tables

Revision ID: 3b7e1f0a9c42
Revises:
Create Date: 2026-10-19 09:12:31.408215

"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "3b7e1f0a9c42"
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "jobs",
        sa.Column("id", sa.Uuid(), primary_key=True),
        sa.Column("type", sa.Text, nullable=False, comment="Handler registry key"),
        sa.Column(
            "payload",
            sa.JSON,
            nullable=False,
            comment="Handler-interpreted parameters",
        ),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="pending",
            comment="Job status: pending|running|completed|failed",
        ),
        sa.Column(
            "priority",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Higher is served first",
        ),
        sa.Column(
            "scheduled_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
            comment="Earliest time to run",
        ),
        # Retry accounting
        sa.Column(
            "attempts",
            sa.Integer,
            nullable=False,
            server_default="0",
            comment="Execution attempts so far",
        ),
        sa.Column(
            "max_retries",
            sa.Integer,
            nullable=False,
            server_default="3",
            comment="Attempt ceiling",
        ),
        sa.Column("last_error", sa.Text, nullable=True, comment="Last handler error"),
        sa.Column("result", sa.JSON, nullable=True, comment="Handler result on success"),
        # Lease
        sa.Column(
            "claimed_by",
            sa.Text,
            nullable=True,
            comment="Worker holding the exclusive lease",
        ),
        sa.Column(
            "claimed_at", sa.TIMESTAMP(timezone=True), nullable=True, comment="Lease start"
        ),
        # Provenance
        sa.Column("tags", sa.JSON, nullable=False),
        sa.Column("created_by", sa.Text, nullable=True),
        # Timestamps
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column("started_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column("completed_at", sa.TIMESTAMP(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        # Constraints
        sa.CheckConstraint(
            "status IN ('pending', 'running', 'completed', 'failed')",
            name="jobs_status_check",
        ),
        sa.CheckConstraint("attempts >= 0", name="jobs_attempts_check"),
    )

    # Claim order: status, then priority desc, scheduled_at asc, created_at asc
    op.create_index(
        "ix_jobs_claim_order",
        "jobs",
        ["status", "priority", "scheduled_at", "created_at"],
    )
    op.create_index("ix_jobs_claimed_by", "jobs", ["claimed_by"])
    op.create_index("ix_jobs_type_status", "jobs", ["type", "status"])
    op.create_index("ix_jobs_completed_at", "jobs", ["completed_at"])

    op.create_table(
        "workers",
        sa.Column("id", sa.Text, primary_key=True),
        sa.Column(
            "status",
            sa.Text,
            nullable=False,
            server_default="active",
            comment="Worker status: active|dead",
        ),
        sa.Column("last_heartbeat", sa.TIMESTAMP(timezone=True), nullable=False),
        sa.Column("hostname", sa.Text, nullable=True),
        sa.Column("pid", sa.Integer, nullable=True),
        sa.Column("concurrency", sa.Integer, nullable=False, server_default="1"),
        sa.Column("job_types", sa.JSON, nullable=False),
        sa.Column("jobs_processed", sa.Integer, nullable=False, server_default="0"),
        sa.Column("jobs_succeeded", sa.Integer, nullable=False, server_default="0"),
        sa.Column("jobs_failed", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("status IN ('active', 'dead')", name="workers_status_check"),
    )
    op.create_index(
        "ix_workers_status_heartbeat", "workers", ["status", "last_heartbeat"]
    )

    op.create_table(
        "job_logs",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "job_id",
            sa.Uuid(),
            sa.ForeignKey("jobs.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("level", sa.Text, nullable=False, server_default="info"),
        sa.Column("message", sa.Text, nullable=False),
        sa.Column("metadata", sa.JSON, nullable=True),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index("ix_job_logs_job_id_id", "job_logs", ["job_id", "id"])


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_table("job_logs")
    op.drop_table("workers")
    op.drop_table("jobs")
