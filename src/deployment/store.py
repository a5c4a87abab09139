"""PRD-120: Progressive Deployment: Deployment Store Adapters."""

import copy
import itertools
import logging
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional, Tuple

from sqlalchemy import select, update
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from src.db.base import Base
from src.db.models import (
    DeploymentRunRecord,
    DeploymentStageRecord,
    HealthCheckRecord,
    RollbackEventRecord,
    VersionMarkerRecord,
)

from .config import RollbackOutcome, RunStatus, StageStatus
from .errors import StaleMarkerError, StoreError
from .models import (
    DeploymentRun,
    HealthCheck,
    HealthVerdict,
    RollbackEvent,
    StageRecord,
    VersionMarker,
)
from .ports import DeploymentStore

logger = logging.getLogger(__name__)


def _aware(value: Optional[datetime]) -> Optional[datetime]:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class InMemoryDeploymentStore(DeploymentStore):
    """Process-local store guarded by a lock."""

    def __init__(self):
        self._runs: Dict[str, Tuple[int, DeploymentRun]] = {}
        self._stages: Dict[str, Dict[int, StageRecord]] = {}
        self._events: List[RollbackEvent] = []
        self._markers: Dict[str, VersionMarker] = {}
        self._health_checks: List[HealthCheck] = []
        self._seq = itertools.count()
        self._lock = threading.Lock()

    def save_run(self, run: DeploymentRun) -> None:
        with self._lock:
            seq = self._runs[run.deployment_id][0] if run.deployment_id in self._runs else next(self._seq)
            self._runs[run.deployment_id] = (seq, copy.deepcopy(run))

    def get_run(self, deployment_id: str) -> Optional[DeploymentRun]:
        with self._lock:
            entry = self._runs.get(deployment_id)
            return copy.deepcopy(entry[1]) if entry else None

    def save_stage(self, stage: StageRecord) -> None:
        with self._lock:
            stages = self._stages.setdefault(stage.deployment_id, {})
            stages[stage.stage_index] = copy.deepcopy(stage)

    def list_stages(self, deployment_id: str) -> List[StageRecord]:
        with self._lock:
            stages = self._stages.get(deployment_id, {})
            return [copy.deepcopy(stages[i]) for i in sorted(stages)]

    def save_rollback_event(self, event: RollbackEvent) -> None:
        with self._lock:
            self._events.append(event)

    def list_rollback_events(
        self, deployment_id: Optional[str] = None
    ) -> List[RollbackEvent]:
        with self._lock:
            events = list(self._events)
        if deployment_id is not None:
            events = [e for e in events if e.deployment_id == deployment_id]
        return events

    def get_marker(self, marker_name: str) -> Optional[VersionMarker]:
        with self._lock:
            marker = self._markers.get(marker_name)
            return copy.deepcopy(marker) if marker else None

    def update_marker(
        self,
        marker_name: str,
        commit_sha: str,
        expected_version: Optional[int] = None,
    ) -> VersionMarker:
        with self._lock:
            current = self._markers.get(marker_name)
            actual = current.version if current else None
            if actual != expected_version:
                raise StaleMarkerError(marker_name, expected_version, actual)
            marker = VersionMarker(
                marker_name=marker_name,
                commit_sha=commit_sha,
                version=(actual or 0) + 1,
            )
            self._markers[marker_name] = marker
            return copy.deepcopy(marker)

    def latest_successful_commit(self, exclude_commit: str) -> Optional[str]:
        with self._lock:
            runs = list(self._runs.values())
        candidates = [
            (run.completed_at or run.created_at, seq, run.commit_sha)
            for seq, run in runs
            if run.status == RunStatus.COMPLETED and run.commit_sha != exclude_commit
        ]
        if not candidates:
            return None
        return max(candidates)[2]

    def save_health_check(self, check: HealthCheck) -> None:
        with self._lock:
            self._health_checks.append(copy.deepcopy(check))

    def list_health_checks(
        self, deployment_id: Optional[str] = None
    ) -> List[HealthCheck]:
        with self._lock:
            checks = [copy.deepcopy(c) for c in self._health_checks]
        if deployment_id is not None:
            checks = [c for c in checks if c.deployment_id == deployment_id]
        return checks

    def reset(self) -> None:
        """Clear all records (for testing)."""
        with self._lock:
            self._runs.clear()
            self._stages.clear()
            self._events.clear()
            self._markers.clear()
            self._health_checks.clear()


class SqlDeploymentStore(DeploymentStore):
    """SQLAlchemy-backed store; every call runs in its own transaction."""

    def __init__(self, engine: Engine):
        self._engine = engine
        self._session_factory = sessionmaker(bind=engine, expire_on_commit=False)

    def create_schema(self) -> None:
        """Create missing tables (development and tests; production uses alembic)."""
        try:
            Base.metadata.create_all(self._engine)
        except SQLAlchemyError as exc:
            raise StoreError(f"cannot create schema: {exc}") from exc

    @contextmanager
    def _transaction(self) -> Iterator[Session]:
        session = self._session_factory()
        try:
            with session.begin():
                yield session
        except StoreError:
            raise
        except SQLAlchemyError as exc:
            raise StoreError(str(exc)) from exc
        finally:
            session.close()

    # ── Runs ─────────────────────────────────────────────────────────

    def save_run(self, run: DeploymentRun) -> None:
        with self._transaction() as session:
            session.merge(
                DeploymentRunRecord(
                    deployment_id=run.deployment_id,
                    commit_sha=run.commit_sha,
                    build_id=run.build_id,
                    status=run.status.value,
                    failure_reason=run.failure_reason,
                    created_at=run.created_at,
                    completed_at=run.completed_at,
                )
            )

    def get_run(self, deployment_id: str) -> Optional[DeploymentRun]:
        with self._transaction() as session:
            row = session.get(DeploymentRunRecord, deployment_id)
            if row is None:
                return None
            return DeploymentRun(
                deployment_id=row.deployment_id,
                commit_sha=row.commit_sha,
                build_id=row.build_id or "unknown",
                status=RunStatus(row.status),
                created_at=_aware(row.created_at),
                completed_at=_aware(row.completed_at),
                failure_reason=row.failure_reason,
            )

    def latest_successful_commit(self, exclude_commit: str) -> Optional[str]:
        with self._transaction() as session:
            stmt = (
                select(DeploymentRunRecord.commit_sha)
                .where(DeploymentRunRecord.status == RunStatus.COMPLETED.value)
                .where(DeploymentRunRecord.commit_sha != exclude_commit)
                .order_by(
                    DeploymentRunRecord.completed_at.desc(),
                    DeploymentRunRecord.created_at.desc(),
                )
                .limit(1)
            )
            return session.execute(stmt).scalar_one_or_none()

    # ── Stages ───────────────────────────────────────────────────────

    def save_stage(self, stage: StageRecord) -> None:
        with self._transaction() as session:
            row = session.execute(
                select(DeploymentStageRecord)
                .where(DeploymentStageRecord.deployment_id == stage.deployment_id)
                .where(DeploymentStageRecord.stage_index == stage.stage_index)
            ).scalar_one_or_none()
            if row is None:
                row = DeploymentStageRecord(
                    deployment_id=stage.deployment_id,
                    stage_index=stage.stage_index,
                )
                session.add(row)
            row.traffic_percentage = stage.traffic_percentage
            row.status = stage.status.value
            row.error_rate = stage.error_rate
            row.availability = stage.availability
            row.response_time_ms = stage.response_time_ms
            row.violations = list(stage.violations)
            row.started_at = stage.started_at
            row.completed_at = stage.completed_at

    def list_stages(self, deployment_id: str) -> List[StageRecord]:
        with self._transaction() as session:
            rows = session.execute(
                select(DeploymentStageRecord)
                .where(DeploymentStageRecord.deployment_id == deployment_id)
                .order_by(DeploymentStageRecord.stage_index)
            ).scalars()
            return [
                StageRecord(
                    deployment_id=row.deployment_id,
                    stage_index=row.stage_index,
                    traffic_percentage=row.traffic_percentage,
                    status=StageStatus(row.status),
                    error_rate=row.error_rate,
                    availability=row.availability,
                    response_time_ms=row.response_time_ms,
                    violations=list(row.violations or []),
                    started_at=_aware(row.started_at),
                    completed_at=_aware(row.completed_at),
                )
                for row in rows
            ]

    # ── Rollback events ──────────────────────────────────────────────

    def save_rollback_event(self, event: RollbackEvent) -> None:
        with self._transaction() as session:
            session.add(
                RollbackEventRecord(
                    deployment_id=event.deployment_id,
                    from_commit=event.from_commit,
                    to_commit=event.to_commit,
                    reason=event.reason,
                    triggered_at_stage=event.triggered_at_stage,
                    outcome=event.outcome.value,
                    incident_ref=event.incident_ref,
                    dry_run=event.dry_run,
                    timestamp=event.timestamp,
                )
            )

    def list_rollback_events(
        self, deployment_id: Optional[str] = None
    ) -> List[RollbackEvent]:
        with self._transaction() as session:
            stmt = select(RollbackEventRecord).order_by(RollbackEventRecord.id)
            if deployment_id is not None:
                stmt = stmt.where(RollbackEventRecord.deployment_id == deployment_id)
            return [
                RollbackEvent(
                    deployment_id=row.deployment_id,
                    from_commit=row.from_commit,
                    to_commit=row.to_commit,
                    reason=row.reason,
                    outcome=RollbackOutcome(row.outcome),
                    triggered_at_stage=row.triggered_at_stage,
                    timestamp=_aware(row.timestamp),
                    incident_ref=row.incident_ref,
                    dry_run=bool(row.dry_run),
                )
                for row in session.execute(stmt).scalars()
            ]

    # ── Version marker ───────────────────────────────────────────────

    def get_marker(self, marker_name: str) -> Optional[VersionMarker]:
        with self._transaction() as session:
            row = session.get(VersionMarkerRecord, marker_name)
            if row is None:
                return None
            return VersionMarker(
                marker_name=row.marker_name,
                commit_sha=row.commit_sha,
                updated_at=_aware(row.updated_at),
                version=row.version,
            )

    def update_marker(
        self,
        marker_name: str,
        commit_sha: str,
        expected_version: Optional[int] = None,
    ) -> VersionMarker:
        now = datetime.now(timezone.utc)
        with self._transaction() as session:
            if expected_version is None:
                existing = session.get(VersionMarkerRecord, marker_name)
                if existing is not None:
                    raise StaleMarkerError(marker_name, None, existing.version)
                session.add(
                    VersionMarkerRecord(
                        marker_name=marker_name,
                        commit_sha=commit_sha,
                        version=1,
                        updated_at=now,
                    )
                )
                try:
                    session.flush()
                except IntegrityError as exc:
                    raise StaleMarkerError(marker_name, None, 1) from exc
                new_version = 1
            else:
                result = session.execute(
                    update(VersionMarkerRecord)
                    .where(VersionMarkerRecord.marker_name == marker_name)
                    .where(VersionMarkerRecord.version == expected_version)
                    .values(
                        commit_sha=commit_sha,
                        version=expected_version + 1,
                        updated_at=now,
                    )
                )
                if result.rowcount != 1:
                    current = session.get(VersionMarkerRecord, marker_name)
                    raise StaleMarkerError(
                        marker_name,
                        expected_version,
                        current.version if current else None,
                    )
                new_version = expected_version + 1
        return VersionMarker(
            marker_name=marker_name,
            commit_sha=commit_sha,
            updated_at=now,
            version=new_version,
        )

    # ── Health checks ────────────────────────────────────────────────

    def save_health_check(self, check: HealthCheck) -> None:
        verdict = check.verdict
        with self._transaction() as session:
            session.add(
                HealthCheckRecord(
                    deployment_id=check.deployment_id,
                    commit_sha=check.commit_sha,
                    health_status=verdict.status,
                    healthy=verdict.healthy,
                    http_status=verdict.http_status,
                    response_time_ms=verdict.response_time_ms,
                    error_rate=verdict.error_rate,
                    availability=verdict.availability_pct,
                    endpoint=verdict.endpoint,
                    violations=list(verdict.violations),
                    checked_at=verdict.checked_at,
                )
            )

    def list_health_checks(
        self, deployment_id: Optional[str] = None
    ) -> List[HealthCheck]:
        with self._transaction() as session:
            stmt = select(HealthCheckRecord).order_by(HealthCheckRecord.id)
            if deployment_id is not None:
                stmt = stmt.where(HealthCheckRecord.deployment_id == deployment_id)
            return [
                HealthCheck(
                    verdict=HealthVerdict(
                        healthy=bool(row.healthy),
                        status=row.health_status,
                        error_rate=row.error_rate,
                        availability_pct=row.availability,
                        response_time_ms=row.response_time_ms,
                        violations=list(row.violations or []),
                        http_status=row.http_status,
                        endpoint=row.endpoint or "",
                        checked_at=_aware(row.checked_at),
                    ),
                    deployment_id=row.deployment_id,
                    commit_sha=row.commit_sha,
                )
                for row in session.execute(stmt).scalars()
            ]
