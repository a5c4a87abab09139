"""PRD-120: Progressive Deployment: External Ports.

Abstract collaborators the controller drives. Adapters live in
``traffic``, ``store``, ``notifier`` and ``vcs``.
"""

from abc import ABC, abstractmethod
from typing import List, Optional

from .models import (
    DeploymentRun,
    HealthCheck,
    RollbackEvent,
    StageRecord,
    VersionMarker,
)


class TrafficController(ABC):
    """Load balancer / service mesh / feature-flag integration."""

    @abstractmethod
    def set_percentage(self, deployment_id: str, percentage: int) -> bool:
        """Route ``percentage`` of traffic to the new version.

        Returns False or raises TrafficUpdateError when the change
        could not be applied.
        """


class DeploymentStore(ABC):
    """Persistence for runs, stages, rollback events, health checks and the marker."""

    @abstractmethod
    def save_run(self, run: DeploymentRun) -> None:
        ...

    @abstractmethod
    def get_run(self, deployment_id: str) -> Optional[DeploymentRun]:
        ...

    @abstractmethod
    def save_stage(self, stage: StageRecord) -> None:
        ...

    @abstractmethod
    def list_stages(self, deployment_id: str) -> List[StageRecord]:
        ...

    @abstractmethod
    def save_rollback_event(self, event: RollbackEvent) -> None:
        ...

    @abstractmethod
    def list_rollback_events(
        self, deployment_id: Optional[str] = None
    ) -> List[RollbackEvent]:
        ...

    @abstractmethod
    def get_marker(self, marker_name: str) -> Optional[VersionMarker]:
        ...

    @abstractmethod
    def update_marker(
        self,
        marker_name: str,
        commit_sha: str,
        expected_version: Optional[int] = None,
    ) -> VersionMarker:
        """Compare-and-set the marker.

        ``expected_version`` is the version read earlier (None when the
        marker did not exist). Raises StaleMarkerError on mismatch.
        """

    @abstractmethod
    def latest_successful_commit(self, exclude_commit: str) -> Optional[str]:
        """Commit of the most recent completed run other than ``exclude_commit``."""

    @abstractmethod
    def save_health_check(self, check: HealthCheck) -> None:
        ...

    @abstractmethod
    def list_health_checks(
        self, deployment_id: Optional[str] = None
    ) -> List[HealthCheck]:
        """Recorded checks, oldest first."""


class IncidentNotifier(ABC):
    """Incident ticketing and team notification. Both are best-effort."""

    @abstractmethod
    def create_ticket(self, event: RollbackEvent) -> Optional[str]:
        """Open an incident ticket; returns a reference (URL or id)."""

    @abstractmethod
    def send_notification(self, event: RollbackEvent) -> bool:
        ...


class VersionControlHistory(ABC):
    """Source history used to resolve and perform rollbacks."""

    @abstractmethod
    def verify(self) -> None:
        """Raise InfrastructureError when history is unreachable."""

    @abstractmethod
    def parent_of(self, commit: str) -> Optional[str]:
        ...

    @abstractmethod
    def current_branch(self) -> Optional[str]:
        ...

    @abstractmethod
    def fetch(self) -> None:
        ...

    @abstractmethod
    def reset_hard(self, commit: str) -> None:
        ...

    @abstractmethod
    def force_push(self, branch: str) -> None:
        ...

    def remote_repository(self) -> Optional[str]:
        """``owner/repo`` of the primary remote, when it can be derived."""
        return None


class RollbackAction(ABC):
    """Performs the actual rollback to a resolved commit."""

    name = "rollback_action"

    def preflight(self) -> None:
        """Raise InfrastructureError when the action cannot possibly run."""

    @abstractmethod
    def execute(self, target_commit: str) -> None:
        """Roll back to ``target_commit``; raises RollbackActionError."""
