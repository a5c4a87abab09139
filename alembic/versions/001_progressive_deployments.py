"""Progressive deployments: runs, stages, version markers, rollback events.

Revision ID: 001
Revises:
"""

from alembic import op
import sqlalchemy as sa

revision = "001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "deployment_runs",
        sa.Column("deployment_id", sa.String(100), primary_key=True),
        sa.Column("commit_sha", sa.String(64), nullable=False, index=True),
        sa.Column("build_id", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, index=True),
        sa.Column("failure_reason", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now()),
    )

    op.create_table(
        "deployment_stages",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column(
            "deployment_id",
            sa.String(100),
            sa.ForeignKey("deployment_runs.deployment_id"),
            nullable=False,
        ),
        sa.Column("stage_index", sa.Integer(), nullable=False),
        sa.Column("traffic_percentage", sa.Integer(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("error_rate", sa.Float(), nullable=True),
        sa.Column("availability", sa.Float(), nullable=True),
        sa.Column("response_time_ms", sa.Float(), nullable=True),
        sa.Column("violations", sa.JSON(), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.UniqueConstraint("deployment_id", "stage_index", name="uq_stage_run_index"),
    )
    op.create_index("ix_stage_status", "deployment_stages", ["status"])

    op.create_table(
        "version_markers",
        sa.Column("marker_name", sa.String(50), primary_key=True),
        sa.Column("commit_sha", sa.String(64), nullable=False),
        sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "rollback_events",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("deployment_id", sa.String(100), nullable=False, index=True),
        sa.Column("from_commit", sa.String(64), nullable=False),
        sa.Column("to_commit", sa.String(64), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("triggered_at_stage", sa.Integer(), nullable=True),
        sa.Column("outcome", sa.String(20), nullable=False, index=True),
        sa.Column("incident_ref", sa.String(500), nullable=True),
        sa.Column("dry_run", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False, index=True),
    )


def downgrade() -> None:
    op.drop_table("rollback_events")
    op.drop_table("version_markers")
    op.drop_index("ix_stage_status", table_name="deployment_stages")
    op.drop_table("deployment_stages")
    op.drop_table("deployment_runs")
