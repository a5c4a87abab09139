"""SQLAlchemy ORM models for the deployment store.

Tables:
- deployment_runs: One row per progressive rollout attempt
- deployment_stages: Traffic stages of a run with the last health sample
- version_markers: Named stable-version markers (optimistic concurrency)
- rollback_events: Append-only rollback incident trail
- health_checks: Standalone health check results
"""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
    func,
)

from src.db.base import Base


class DeploymentRunRecord(Base):
    """Progressive rollout attempt."""

    __tablename__ = "deployment_runs"

    deployment_id = Column(String(100), primary_key=True)
    commit_sha = Column(String(64), nullable=False, index=True)
    build_id = Column(String(100))
    status = Column(String(20), nullable=False, index=True)
    failure_reason = Column(Text)
    created_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class DeploymentStageRecord(Base):
    """Traffic-percentage step within a run."""

    __tablename__ = "deployment_stages"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deployment_id = Column(
        String(100), ForeignKey("deployment_runs.deployment_id"), nullable=False
    )
    stage_index = Column(Integer, nullable=False)
    traffic_percentage = Column(Integer, nullable=False)
    status = Column(String(20), nullable=False)

    error_rate = Column(Float)
    availability = Column(Float)
    response_time_ms = Column(Float)
    violations = Column(JSON)

    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        UniqueConstraint("deployment_id", "stage_index", name="uq_stage_run_index"),
        Index("ix_stage_status", "status"),
    )


class VersionMarkerRecord(Base):
    """Named last-known-good commit."""

    __tablename__ = "version_markers"

    marker_name = Column(String(50), primary_key=True)
    commit_sha = Column(String(64), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), nullable=False)


class RollbackEventRecord(Base):
    """Rollback attempt; rows are never updated."""

    __tablename__ = "rollback_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deployment_id = Column(String(100), nullable=False, index=True)
    from_commit = Column(String(64), nullable=False)
    to_commit = Column(String(64))
    reason = Column(Text, nullable=False)
    triggered_at_stage = Column(Integer)
    outcome = Column(String(20), nullable=False, index=True)
    incident_ref = Column(String(500))
    dry_run = Column(Boolean, nullable=False, default=False)
    timestamp = Column(DateTime(timezone=True), nullable=False, index=True)


class HealthCheckRecord(Base):
    """Standalone health check result."""

    __tablename__ = "health_checks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    deployment_id = Column(String(100), index=True)
    commit_sha = Column(String(64))

    health_status = Column(String(20), nullable=False)
    healthy = Column(Boolean, nullable=False)
    http_status = Column(Integer)
    response_time_ms = Column(Float)
    error_rate = Column(Float)
    availability = Column(Float)
    endpoint = Column(Text)
    violations = Column(JSON)

    checked_at = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_health_checks_checked_at", "checked_at"),
        Index("ix_health_checks_status", "health_status"),
    )
