"""PRD-120: Progressive Deployment: Error Taxonomy.

Unhealthy verdicts are ordinary values and never appear here. These
exceptions cover configuration problems, port failures and rollbacks
that need a human.
"""

from typing import Optional


class DeploymentError(Exception):
    """Base class for all progressive deployment errors."""


class ConfigurationError(DeploymentError):
    """Invalid thresholds, stage list, endpoint or missing integration.

    Raised before any traffic change is made.
    """


class InfrastructureError(DeploymentError):
    """A collaborator the rollback path depends on is unreachable."""


class InvalidTransition(DeploymentError):
    """The state machine was asked to make an illegal transition."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal transition {current.value} -> {target.value}"
        )


class PortFailure(DeploymentError):
    """An external port call failed."""

    def __init__(self, port: str, message: str):
        self.port = port
        super().__init__(f"{port}: {message}")


class TrafficUpdateError(PortFailure):
    def __init__(self, message: str):
        super().__init__("traffic_controller", message)


class StoreError(PortFailure):
    def __init__(self, message: str):
        super().__init__("deployment_store", message)


class NotificationError(PortFailure):
    def __init__(self, message: str):
        super().__init__("incident_notifier", message)


class RollbackActionError(PortFailure):
    def __init__(self, message: str):
        super().__init__("rollback_action", message)


class StaleMarkerError(StoreError):
    """The version marker changed between read and write."""

    def __init__(self, marker_name: str, expected: Optional[int], actual: Optional[int]):
        self.marker_name = marker_name
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"marker '{marker_name}' is at version {actual}, expected {expected}"
        )


class RollbackFailure(DeploymentError):
    """Rollback did not complete; human intervention is required.

    The ``event`` attribute holds the recorded ``RollbackEvent``.
    """

    def __init__(self, message: str, event=None):
        self.event = event
        super().__init__(message)


class PreviousVersionUnavailable(RollbackFailure):
    """No rollback target could be resolved by any method."""

    def __init__(self, current_commit: str, event=None):
        self.current_commit = current_commit
        super().__init__(
            f"no_previous_version: cannot resolve a rollback target for {current_commit}",
            event=event,
        )
