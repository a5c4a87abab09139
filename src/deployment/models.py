"""PRD-120: Progressive Deployment: Data Model."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional

from .config import RollbackOutcome, RunStatus, StageStatus


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def generate_deployment_id() -> str:
    """Generate a deployment id in the ``deploy-<unix-ts>`` form."""
    return f"deploy-{int(time.time())}"


@dataclass
class HealthVerdict:
    """Result of a single health evaluation."""

    healthy: bool
    status: str = "unknown"
    error_rate: float = 0.0
    availability_pct: float = 100.0
    response_time_ms: float = 0.0
    violations: List[str] = field(default_factory=list)
    details: List[str] = field(default_factory=list)
    http_status: Optional[int] = None
    endpoint: str = ""
    checked_at: datetime = field(default_factory=_utcnow)

    def add_violation(self, code: str, detail: str) -> None:
        self.violations.append(code)
        self.details.append(detail)
        self.healthy = False


@dataclass
class DeploymentRun:
    """One progressive rollout attempt."""

    deployment_id: str = field(default_factory=generate_deployment_id)
    commit_sha: str = "unknown"
    build_id: str = "unknown"
    status: RunStatus = RunStatus.STARTED
    created_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    failure_reason: Optional[str] = None

    def transition(self, status: RunStatus, reason: Optional[str] = None) -> None:
        """Move to ``status``; a terminal run never changes again."""
        if self.status.is_terminal:
            raise ValueError(
                f"Run {self.deployment_id} already terminal ({self.status.value})"
            )
        self.status = status
        if status.is_terminal:
            self.completed_at = _utcnow()
        if reason:
            self.failure_reason = reason


@dataclass
class StageRecord:
    """One traffic-percentage step within a run."""

    deployment_id: str
    stage_index: int
    traffic_percentage: int
    status: StageStatus = StageStatus.STARTED
    error_rate: Optional[float] = None
    availability: Optional[float] = None
    response_time_ms: Optional[float] = None
    violations: List[str] = field(default_factory=list)
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_resolved(self) -> bool:
        return self.status != StageStatus.STARTED

    def resolve(
        self,
        passed: bool,
        verdict: Optional[HealthVerdict] = None,
        violations: Optional[List[str]] = None,
    ) -> None:
        """Record the health gate outcome exactly once."""
        if self.is_resolved:
            raise ValueError(
                f"Stage {self.stage_index} of {self.deployment_id} already "
                f"{self.status.value}"
            )
        if verdict is not None:
            self.error_rate = verdict.error_rate
            self.availability = verdict.availability_pct
            self.response_time_ms = verdict.response_time_ms
            self.violations = list(verdict.violations)
        if violations:
            self.violations = list(violations)
        self.status = StageStatus.COMPLETED if passed else StageStatus.FAILED
        self.completed_at = _utcnow()


@dataclass
class VersionMarker:
    """Last-known-good deployment target."""

    marker_name: str
    commit_sha: str
    updated_at: datetime = field(default_factory=_utcnow)
    version: int = 1


@dataclass(frozen=True)
class RollbackEvent:
    """Append-only record of a rollback attempt."""

    deployment_id: str
    from_commit: str
    to_commit: Optional[str]
    reason: str
    outcome: RollbackOutcome
    triggered_at_stage: Optional[int] = None
    timestamp: datetime = field(default_factory=_utcnow)
    incident_ref: Optional[str] = None
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.outcome == RollbackOutcome.ROLLED_BACK


@dataclass
class HealthCheck:
    """A standalone health check kept for later inspection."""

    verdict: HealthVerdict
    deployment_id: Optional[str] = None
    commit_sha: Optional[str] = None
