"""PRD-120: Progressive Deployment: Configuration."""

import enum
import logging
from dataclasses import dataclass, field, fields
from typing import List, Optional, Tuple
from urllib.parse import urlparse

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_STAGES = (10, 25, 50, 100)


class RunStatus(enum.Enum):
    """Persisted lifecycle status of a deployment run."""

    STARTED = "started"
    STAGE_RUNNING = "stage-running"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled-back"
    ROLLBACK_FAILED = "rollback-failed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in _TERMINAL_RUN_STATUSES


_TERMINAL_RUN_STATUSES = frozenset(
    {
        RunStatus.COMPLETED,
        RunStatus.ROLLED_BACK,
        RunStatus.ROLLBACK_FAILED,
        RunStatus.FAILED,
    }
)


class StageStatus(enum.Enum):
    """Status of a single traffic stage."""

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class RollbackOutcome(enum.Enum):
    """Outcome recorded on a rollback event."""

    ROLLED_BACK = "rolled-back"
    ROLLBACK_FAILED = "rollback-failed"


class ControllerState(enum.Enum):
    """States of the stage controller state machine."""

    INITIALIZED = "initialized"
    PROMOTING = "promoting"
    OBSERVING = "observing"
    GATED = "gated"
    ROLLING_BACK = "rolling_back"
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (
            ControllerState.COMPLETED,
            ControllerState.ROLLED_BACK,
            ControllerState.ROLLBACK_FAILED,
            ControllerState.FAILED,
        )


class ExitCode(enum.IntEnum):
    """Process exit codes for the CLI surface."""

    SUCCESS = 0
    HANDLED_FAILURE = 1
    CONFIGURATION_ERROR = 2
    HUMAN_REQUIRED = 3


class Violation:
    """Violation codes reported on verdicts, stages and rollback reasons."""

    STATUS_UNHEALTHY = "status_unhealthy"
    ERROR_RATE_EXCEEDED = "error_rate_exceeded"
    RESPONSE_TIME_EXCEEDED = "response_time_exceeded"
    AVAILABILITY_BELOW_THRESHOLD = "availability_below_threshold"
    ENDPOINT_UNREACHABLE = "endpoint_unreachable"
    TRAFFIC_UPDATE_FAILED = "traffic_update_failed"
    OPERATOR_ABORT = "operator_abort"
    NO_PREVIOUS_VERSION = "no_previous_version"


@dataclass
class HealthThresholds:
    """Limits a health verdict is judged against."""

    max_error_rate: float = 5.0
    max_response_time_ms: float = 2000.0
    min_availability: float = 99.0


@dataclass
class DeploymentConfig:
    """Progressive deployment configuration with sensible defaults."""

    stages: List[int] = field(default_factory=lambda: list(DEFAULT_STAGES))
    stage_wait_time: float = 300.0
    health_endpoint: str = "http://localhost:8080/health"
    health_timeout_seconds: float = 10.0
    thresholds: HealthThresholds = field(default_factory=HealthThresholds)
    dry_run: bool = False
    skip_rollback: bool = False
    notify_on_rollback: bool = True
    mark_stable_on_completion: bool = False
    marker_name: str = "last_stable"
    deployment_script: Optional[str] = None
    release_branches: Tuple[str, ...] = ("main", "master")
    git_remote: str = "origin"

    @classmethod
    def from_settings(cls, settings, **overrides) -> "DeploymentConfig":
        """Build a config from ``Settings``; ``None`` overrides are ignored."""
        config = cls(
            stages=list(settings.stage_percentages),
            stage_wait_time=settings.stage_wait_time,
            health_endpoint=settings.health_endpoint,
            health_timeout_seconds=settings.health_timeout_seconds,
            thresholds=HealthThresholds(
                max_error_rate=settings.max_error_rate,
                max_response_time_ms=settings.max_response_time_ms,
                min_availability=settings.min_availability,
            ),
            mark_stable_on_completion=settings.mark_stable_on_completion,
            marker_name=settings.marker_name,
            deployment_script=settings.deployment_script or None,
            release_branches=tuple(settings.release_branches),
            git_remote=settings.git_remote,
        )
        known = {f.name for f in fields(cls)}
        for key, value in overrides.items():
            if key not in known:
                raise ConfigurationError(f"Unknown configuration option '{key}'")
            if value is not None:
                setattr(config, key, value)
        return config

    def validate(self) -> None:
        """Raise ConfigurationError on the first invalid setting."""
        if not self.stages:
            raise ConfigurationError("Stage list must not be empty")
        previous = 0
        for pct in self.stages:
            if isinstance(pct, bool) or not isinstance(pct, int):
                raise ConfigurationError(f"Stage percentage {pct!r} is not an integer")
            if not 0 < pct <= 100:
                raise ConfigurationError(f"Stage percentage {pct} outside (0, 100]")
            if pct <= previous:
                raise ConfigurationError(
                    f"Stage percentages must be strictly increasing: {self.stages}"
                )
            previous = pct
        if self.stages[-1] != 100:
            raise ConfigurationError("Final stage must route 100% of traffic")

        t = self.thresholds
        if not 0.0 <= t.max_error_rate <= 100.0:
            raise ConfigurationError(f"max_error_rate {t.max_error_rate} outside [0, 100]")
        if not 0.0 <= t.min_availability <= 100.0:
            raise ConfigurationError(f"min_availability {t.min_availability} outside [0, 100]")
        if t.max_response_time_ms <= 0:
            raise ConfigurationError("max_response_time_ms must be positive")

        if self.stage_wait_time < 0:
            raise ConfigurationError("stage_wait_time must not be negative")
        if self.health_timeout_seconds <= 0:
            raise ConfigurationError("health_timeout_seconds must be positive")

        parsed = urlparse(self.health_endpoint or "")
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ConfigurationError(
                f"Health endpoint '{self.health_endpoint}' is not an http(s) URL"
            )
        if not self.marker_name:
            raise ConfigurationError("marker_name must not be empty")
