"""Standalone health check results.

Revision ID: 002
Revises: 001
"""

from alembic import op
import sqlalchemy as sa

revision = "002"
down_revision = "001"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "health_checks",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("deployment_id", sa.String(100), nullable=True, index=True),
        sa.Column("commit_sha", sa.String(64), nullable=True),
        sa.Column("health_status", sa.String(20), nullable=False),
        sa.Column("healthy", sa.Boolean(), nullable=False),
        sa.Column("http_status", sa.Integer(), nullable=True),
        sa.Column("response_time_ms", sa.Float(), nullable=True),
        sa.Column("error_rate", sa.Float(), nullable=True),
        sa.Column("availability", sa.Float(), nullable=True),
        sa.Column("endpoint", sa.Text(), nullable=True),
        sa.Column("violations", sa.JSON(), nullable=True),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_health_checks_checked_at", "health_checks", ["checked_at"])
    op.create_index("ix_health_checks_status", "health_checks", ["health_status"])


def downgrade() -> None:
    op.drop_index("ix_health_checks_status", table_name="health_checks")
    op.drop_index("ix_health_checks_checked_at", table_name="health_checks")
    op.drop_table("health_checks")
