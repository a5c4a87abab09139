"""Deployment Context Management.

Thread-safe deployment context using contextvars for binding the
deployment id and current stage to log entries.
"""

from contextvars import ContextVar
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional


_deployment_id_var: ContextVar[str] = ContextVar("deployment_id", default="")
_stage_var: ContextVar[Optional[int]] = ContextVar("stage", default=None)
_extra_context_var: ContextVar[dict] = ContextVar("extra_context", default={})


def get_deployment_id() -> str:
    """Get the current deployment ID from context."""
    return _deployment_id_var.get()


def get_context_dict() -> dict[str, Any]:
    """Get all context variables as a dictionary for log binding."""
    ctx = {}
    deployment_id = _deployment_id_var.get()
    if deployment_id:
        ctx["deployment_id"] = deployment_id
    stage = _stage_var.get()
    if stage is not None:
        ctx["stage"] = stage
    extra = _extra_context_var.get()
    if extra:
        ctx.update(extra)
    return ctx


@dataclass
class DeploymentContext:
    """Context manager for run-scoped logging context.

    Binds deployment_id (and the current stage once set) to all log
    entries within the context. Cleans up on exit.

    Example:
        with DeploymentContext(deployment_id="deploy-1700000000") as ctx:
            ctx.set_stage(1)
            logger.info("promoting")  # includes deployment_id, stage
    """

    deployment_id: str = ""
    extra: dict[str, Any] = field(default_factory=dict)
    started_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )

    _tokens: list = field(default_factory=list, repr=False)

    def __enter__(self) -> "DeploymentContext":
        self._tokens = [
            _deployment_id_var.set(self.deployment_id),
            _stage_var.set(None),
            _extra_context_var.set(self.extra.copy()),
        ]
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        deployment_token, stage_token, extra_token = self._tokens
        _extra_context_var.reset(extra_token)
        _stage_var.reset(stage_token)
        _deployment_id_var.reset(deployment_token)
        self._tokens = []

    @property
    def elapsed_ms(self) -> float:
        """Milliseconds since context was created."""
        delta = datetime.now(timezone.utc) - self.started_at
        return delta.total_seconds() * 1000

    def set_stage(self, stage: Optional[int]) -> None:
        _stage_var.set(stage)

    def bind(self, **kwargs: Any) -> None:
        """Add extra key-value pairs to the context."""
        current = _extra_context_var.get()
        updated = {**current, **kwargs}
        _extra_context_var.set(updated)
        self.extra.update(kwargs)
