"""PRD-120: Progressive Deployment: Traffic Control Adapters."""

import logging
import os
import subprocess
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

from .errors import ConfigurationError, TrafficUpdateError
from .ports import TrafficController

logger = logging.getLogger(__name__)


@dataclass
class TrafficSplit:
    """How traffic is split between the stable and the canary version."""

    deployment_id: str = ""
    canary_percent: int = 0
    history: List[int] = field(default_factory=list)
    updated_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def stable_percent(self) -> int:
        return 100 - self.canary_percent


class InMemoryTrafficController(TrafficController):
    """Keeps traffic splits in process; useful for tests and local runs."""

    def __init__(self, fail_on: Optional[Sequence[int]] = None):
        self._splits: Dict[str, TrafficSplit] = {}
        self._fail_on = set(fail_on or ())
        self._lock = threading.Lock()

    def set_percentage(self, deployment_id: str, percentage: int) -> bool:
        if percentage in self._fail_on:
            logger.error(
                "Traffic update to %d%% rejected for %s", percentage, deployment_id
            )
            return False
        percentage = max(0, min(100, percentage))
        with self._lock:
            split = self._splits.setdefault(
                deployment_id, TrafficSplit(deployment_id=deployment_id)
            )
            split.canary_percent = percentage
            split.history.append(percentage)
            split.updated_at = datetime.now(timezone.utc)
            logger.info(
                "Traffic split for %s: stable=%d%% / canary=%d%%",
                deployment_id,
                split.stable_percent,
                split.canary_percent,
            )
        return True

    def get_split(self, deployment_id: str) -> Optional[TrafficSplit]:
        return self._splits.get(deployment_id)

    def reset(self) -> None:
        """Clear all traffic splits (for testing)."""
        with self._lock:
            self._splits.clear()


class ScriptTrafficController(TrafficController):
    """Delegates traffic changes to an operator-supplied deployment script.

    The script is invoked as ``bash <script> update-traffic <pct> <deployment_id>``
    and must exit 0 when the change has been applied.
    """

    def __init__(self, script_path: str, timeout_seconds: float = 120.0):
        if not script_path or not os.path.isfile(script_path):
            raise ConfigurationError(f"Deployment script not found: {script_path!r}")
        self.script_path = script_path
        self.timeout_seconds = timeout_seconds

    def set_percentage(self, deployment_id: str, percentage: int) -> bool:
        argv = ["bash", self.script_path, "update-traffic", str(percentage), deployment_id]
        logger.info("Updating traffic to %d%% via %s", percentage, self.script_path)
        try:
            proc = subprocess.run(
                argv,
                check=False,
                text=True,
                capture_output=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.TimeoutExpired as exc:
            raise TrafficUpdateError(
                f"update-traffic {percentage}% timed out after {self.timeout_seconds}s"
            ) from exc
        except OSError as exc:
            raise TrafficUpdateError(f"cannot run deployment script: {exc}") from exc

        if proc.returncode != 0:
            logger.error(
                "Deployment script failed to set traffic to %d%% (exit %d): %s",
                percentage,
                proc.returncode,
                (proc.stderr or proc.stdout).strip()[-500:],
            )
            return False
        logger.info("Traffic updated to %d%%", percentage)
        return True
