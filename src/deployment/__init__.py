"""PRD-120: Progressive Deployment & Rollback Automation."""

from .config import (
    DEFAULT_STAGES,
    ControllerState,
    DeploymentConfig,
    ExitCode,
    HealthThresholds,
    RollbackOutcome,
    RunStatus,
    StageStatus,
    Violation,
)
from .errors import (
    ConfigurationError,
    DeploymentError,
    InfrastructureError,
    InvalidTransition,
    NotificationError,
    PortFailure,
    PreviousVersionUnavailable,
    RollbackActionError,
    RollbackFailure,
    StaleMarkerError,
    StoreError,
    TrafficUpdateError,
)
from .models import (
    DeploymentRun,
    HealthCheck,
    HealthVerdict,
    RollbackEvent,
    StageRecord,
    VersionMarker,
    generate_deployment_id,
)
from .ports import (
    DeploymentStore,
    IncidentNotifier,
    RollbackAction,
    TrafficController,
    VersionControlHistory,
)
from .health import HealthEvaluator, parse_health_body
from .traffic import (
    InMemoryTrafficController,
    ScriptTrafficController,
    TrafficSplit,
)
from .store import InMemoryDeploymentStore, SqlDeploymentStore
from .notifier import (
    CompositeIncidentNotifier,
    GitHubIncidentNotifier,
    LoggingIncidentNotifier,
    WebhookNotifier,
)
from .vcs import GitHistory, GitRollbackAction, ScriptRollbackAction
from .rollback import RollbackCoordinator
from .controller import TRANSITIONS, DeploymentResult, StageController

__all__ = [
    # Config
    "DEFAULT_STAGES",
    "ControllerState",
    "DeploymentConfig",
    "ExitCode",
    "HealthThresholds",
    "RollbackOutcome",
    "RunStatus",
    "StageStatus",
    "Violation",
    # Errors
    "ConfigurationError",
    "DeploymentError",
    "InfrastructureError",
    "InvalidTransition",
    "NotificationError",
    "PortFailure",
    "PreviousVersionUnavailable",
    "RollbackActionError",
    "RollbackFailure",
    "StaleMarkerError",
    "StoreError",
    "TrafficUpdateError",
    # Models
    "DeploymentRun",
    "HealthCheck",
    "HealthVerdict",
    "RollbackEvent",
    "StageRecord",
    "VersionMarker",
    "generate_deployment_id",
    # Ports
    "DeploymentStore",
    "IncidentNotifier",
    "RollbackAction",
    "TrafficController",
    "VersionControlHistory",
    # Health
    "HealthEvaluator",
    "parse_health_body",
    # Traffic
    "InMemoryTrafficController",
    "ScriptTrafficController",
    "TrafficSplit",
    # Store
    "InMemoryDeploymentStore",
    "SqlDeploymentStore",
    # Notifier
    "CompositeIncidentNotifier",
    "GitHubIncidentNotifier",
    "LoggingIncidentNotifier",
    "WebhookNotifier",
    # Version control
    "GitHistory",
    "GitRollbackAction",
    "ScriptRollbackAction",
    # Rollback / controller
    "RollbackCoordinator",
    "DeploymentResult",
    "StageController",
    "TRANSITIONS",
]
