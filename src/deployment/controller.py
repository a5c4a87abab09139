"""PRD-120: Progressive Deployment: Stage Controller.

Drives a run through its traffic stages as a state machine. Every
state has a handler returning the next state; the run loop checks each
transition against ``TRANSITIONS`` and stops at a terminal state.
"""

import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from src.logging_config import DeploymentContext
from src.resilience import MaxRetriesExceeded, RetryConfig, call_with_retry

from .config import ControllerState, DeploymentConfig, ExitCode, RunStatus, Violation
from .errors import (
    ConfigurationError,
    InfrastructureError,
    InvalidTransition,
    PortFailure,
    RollbackFailure,
)
from .health import HealthEvaluator
from .models import DeploymentRun, RollbackEvent, StageRecord, generate_deployment_id
from .ports import DeploymentStore, TrafficController
from .rollback import RollbackCoordinator

logger = logging.getLogger(__name__)

S = ControllerState

TRANSITIONS: Dict[ControllerState, frozenset] = {
    S.INITIALIZED: frozenset({S.PROMOTING}),
    S.PROMOTING: frozenset({S.OBSERVING, S.ROLLING_BACK, S.FAILED}),
    S.OBSERVING: frozenset({S.GATED, S.ROLLING_BACK, S.FAILED}),
    S.GATED: frozenset({S.PROMOTING, S.COMPLETED, S.ROLLING_BACK, S.FAILED}),
    S.ROLLING_BACK: frozenset({S.ROLLED_BACK, S.ROLLBACK_FAILED}),
}

_RUN_STATUS = {
    S.COMPLETED: RunStatus.COMPLETED,
    S.ROLLED_BACK: RunStatus.ROLLED_BACK,
    S.ROLLBACK_FAILED: RunStatus.ROLLBACK_FAILED,
    S.FAILED: RunStatus.FAILED,
}

_EXIT_CODES = {
    S.COMPLETED: ExitCode.SUCCESS,
    S.ROLLED_BACK: ExitCode.HANDLED_FAILURE,
    S.ROLLBACK_FAILED: ExitCode.HUMAN_REQUIRED,
    S.FAILED: ExitCode.HUMAN_REQUIRED,
}


@dataclass
class DeploymentResult:
    """Final outcome of a run."""

    run: DeploymentRun
    exit_code: ExitCode
    stages: List[StageRecord] = field(default_factory=list)
    rollback_event: Optional[RollbackEvent] = None
    serving_commit: Optional[str] = None
    incident_filed: bool = False
    dry_run: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == ExitCode.SUCCESS

    def summary(self) -> str:
        run = self.run
        lines = [
            "=" * 50,
            "Deployment Summary",
            "=" * 50,
            f"Deployment ID: {run.deployment_id}",
            f"Commit:        {run.commit_sha}",
            f"Build ID:      {run.build_id}",
            f"Final state:   {run.status.value}",
        ]
        for stage in self.stages:
            line = (
                f"  Stage {stage.stage_index} ({stage.traffic_percentage}%): "
                f"{stage.status.value}"
            )
            if stage.violations:
                line += f" [{', '.join(stage.violations)}]"
            lines.append(line)
        if run.failure_reason:
            lines.append(f"Reason:        {run.failure_reason}")
        if self.dry_run:
            lines.append("Serving:       unchanged (dry run)")
        else:
            lines.append(f"Serving:       {self.serving_commit or 'unknown'}")
        if self.rollback_event is not None:
            lines.append(f"Rollback:      {self.rollback_event.outcome.value}")
        incident = "no"
        if self.incident_filed:
            incident = self.rollback_event.incident_ref or "yes"
        lines.append(f"Incident:      {incident}")
        lines.append(f"Exit code:     {int(self.exit_code)}")
        lines.append("=" * 50)
        return "\n".join(lines)


@dataclass
class _RunState:
    run: DeploymentRun
    previous_commit: Optional[str] = None
    state: ControllerState = S.INITIALIZED
    stage_index: int = 0
    stage: Optional[StageRecord] = None
    stages: List[StageRecord] = field(default_factory=list)
    failure_reason: Optional[str] = None
    rollback_event: Optional[RollbackEvent] = None
    log_context: Optional[DeploymentContext] = None


class StageController:
    """Promotes a commit through traffic stages gated on health."""

    def __init__(
        self,
        config: DeploymentConfig,
        traffic_controller: Optional[TrafficController],
        health_evaluator: HealthEvaluator,
        coordinator: RollbackCoordinator,
        store: DeploymentStore,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.config = config
        self.traffic = traffic_controller
        self.health = health_evaluator
        self.coordinator = coordinator
        self.store = store
        self._retry_config = (retry_config or RetryConfig()).with_exceptions(PortFailure)
        self._sleep = sleep
        self._cancelled = threading.Event()
        self._cancel_reason: Optional[str] = None
        self._handlers = {
            S.INITIALIZED: self._on_initialized,
            S.PROMOTING: self._on_promoting,
            S.OBSERVING: self._on_observing,
            S.GATED: self._on_gated,
            S.ROLLING_BACK: self._on_rolling_back,
        }

    # ── Public API ───────────────────────────────────────────────────

    def cancel(self, reason: str = "operator abort") -> None:
        """Abort the running deployment; the current stage fails and rolls back."""
        self._cancel_reason = reason
        self._cancelled.set()
        logger.warning("Cancellation requested: %s", reason)

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(
        self,
        commit_sha: str,
        build_id: str = "unknown",
        deployment_id: Optional[str] = None,
        previous_commit: Optional[str] = None,
    ) -> DeploymentResult:
        run = DeploymentRun(
            deployment_id=deployment_id or generate_deployment_id(),
            commit_sha=commit_sha,
            build_id=build_id,
        )
        try:
            self._preflight()
        except (ConfigurationError, InfrastructureError) as exc:
            logger.error("Pre-flight check failed: %s", exc)
            run.transition(RunStatus.FAILED, str(exc))
            return DeploymentResult(
                run=run,
                exit_code=ExitCode.CONFIGURATION_ERROR,
                dry_run=self.config.dry_run,
            )

        ctx = _RunState(run=run, previous_commit=previous_commit)
        with DeploymentContext(deployment_id=run.deployment_id) as log_context:
            ctx.log_context = log_context
            logger.info(
                "Starting progressive deployment of %s (build %s), stages %s",
                commit_sha,
                build_id,
                self.config.stages,
            )
            if self.config.dry_run:
                logger.info("DRY RUN MODE: no traffic, store or rollback changes will be made")
            while not ctx.state.is_terminal:
                self._transition(ctx, self._handlers[ctx.state](ctx))
            return self._finish(ctx)

    # ── State handlers ───────────────────────────────────────────────

    def _on_initialized(self, ctx: _RunState) -> ControllerState:
        self._save(self.store.save_run, ctx.run, what="run record write")
        return S.PROMOTING

    def _on_promoting(self, ctx: _RunState) -> ControllerState:
        ctx.stage_index += 1
        pct = self.config.stages[ctx.stage_index - 1]
        ctx.stage = StageRecord(
            deployment_id=ctx.run.deployment_id,
            stage_index=ctx.stage_index,
            traffic_percentage=pct,
        )
        ctx.stages.append(ctx.stage)
        if ctx.run.status == RunStatus.STARTED:
            ctx.run.transition(RunStatus.STAGE_RUNNING)
        ctx.log_context.set_stage(ctx.stage_index)
        self._save(self.store.save_stage, ctx.stage, what="stage record write")

        if self._cancelled.is_set():
            return self._fail_stage(ctx, [Violation.OPERATOR_ABORT])

        logger.info(
            "Stage %d: routing %d%% of traffic to the new version",
            ctx.stage_index,
            pct,
            extra={"state": ctx.state.value, "stage": ctx.stage_index, "traffic_percentage": pct},
        )
        if self.config.dry_run:
            logger.info("[DRY RUN] Would update traffic to %d%%", pct)
            return S.OBSERVING

        try:
            applied = self.traffic.set_percentage(ctx.run.deployment_id, pct)
        except Exception as exc:
            logger.error("Traffic update to %d%% failed: %s", pct, exc)
            applied = False
        if not applied:
            logger.error("Failed to update traffic to %d%%", pct)
            return self._fail_stage(ctx, [Violation.TRAFFIC_UPDATE_FAILED])
        return S.OBSERVING

    def _on_observing(self, ctx: _RunState) -> ControllerState:
        if self._cancelled.is_set():
            return self._fail_stage(ctx, [Violation.OPERATOR_ABORT])
        if self.config.dry_run:
            logger.info(
                "[DRY RUN] Skipping %.0fs observation wait", self.config.stage_wait_time
            )
            return S.GATED

        wait = self.config.stage_wait_time
        logger.info(
            "Waiting %.0fs before health check...",
            wait,
            extra={"state": ctx.state.value, "stage": ctx.stage_index},
        )
        if self._cancelled.wait(timeout=wait):
            return self._fail_stage(ctx, [Violation.OPERATOR_ABORT])
        return S.GATED

    def _on_gated(self, ctx: _RunState) -> ControllerState:
        if self._cancelled.is_set():
            return self._fail_stage(ctx, [Violation.OPERATOR_ABORT])

        verdict = self.health.evaluate()
        if not verdict.healthy:
            logger.error(
                "Health check failed at %d%% traffic",
                ctx.stage.traffic_percentage,
                extra={"violations": verdict.violations},
            )
            ctx.stage.resolve(False, verdict)
            self._save(self.store.save_stage, ctx.stage, what="stage record write")
            return self._fail_stage(ctx, verdict.violations)

        ctx.stage.resolve(True, verdict)
        self._save(self.store.save_stage, ctx.stage, what="stage record write")
        logger.info(
            "Stage %d (%d%%) completed successfully",
            ctx.stage_index,
            ctx.stage.traffic_percentage,
            extra={
                "state": ctx.state.value,
                "stage": ctx.stage_index,
                "traffic_percentage": ctx.stage.traffic_percentage,
            },
        )
        if ctx.stage_index >= len(self.config.stages):
            return S.COMPLETED
        return S.PROMOTING

    def _on_rolling_back(self, ctx: _RunState) -> ControllerState:
        try:
            ctx.rollback_event = self.coordinator.rollback(
                ctx.run.commit_sha,
                previous_commit=ctx.previous_commit,
                reason=ctx.failure_reason,
                deployment_id=ctx.run.deployment_id,
                triggered_at_stage=ctx.stage_index,
                dry_run=self.config.dry_run,
            )
        except RollbackFailure as exc:
            logger.critical("Rollback failed, manual intervention required: %s", exc)
            ctx.rollback_event = exc.event
            return S.ROLLBACK_FAILED
        return S.ROLLED_BACK

    # ── Internal helpers ─────────────────────────────────────────────

    def _preflight(self) -> None:
        self.config.validate()
        if self.traffic is None and not self.config.dry_run:
            raise ConfigurationError(
                "No traffic controller configured; set a deployment script or use --dry-run"
            )
        self.coordinator.preflight()

    def _transition(self, ctx: _RunState, target: ControllerState) -> None:
        if target not in TRANSITIONS.get(ctx.state, ()):
            raise InvalidTransition(ctx.state, target)
        logger.debug("State %s -> %s", ctx.state.value, target.value)
        ctx.state = target

    def _fail_stage(self, ctx: _RunState, violations: List[str]) -> ControllerState:
        stage = ctx.stage
        if not stage.is_resolved:
            stage.resolve(False, violations=violations)
            self._save(self.store.save_stage, stage, what="stage record write")
        ctx.failure_reason = f"{', '.join(violations)} (failed at stage {stage.stage_index})"
        if Violation.OPERATOR_ABORT in violations and self._cancel_reason:
            logger.warning("Deployment aborted: %s", self._cancel_reason)
        if self.config.skip_rollback:
            logger.warning("Skipping rollback (--skip-rollback), manual action required")
            return S.FAILED
        return S.ROLLING_BACK

    def _finish(self, ctx: _RunState) -> DeploymentResult:
        run = ctx.run
        run.transition(_RUN_STATUS[ctx.state], ctx.failure_reason)
        self._save(self.store.save_run, run, what="run record write")

        if ctx.state == S.COMPLETED:
            serving = run.commit_sha
            if self.config.mark_stable_on_completion:
                if self.config.dry_run:
                    logger.info("[DRY RUN] Would mark %s as stable", run.commit_sha[:8])
                else:
                    self.coordinator.mark_stable(run.commit_sha)
            logger.info("Progressive deployment completed successfully")
        elif ctx.state == S.ROLLED_BACK:
            serving = ctx.rollback_event.to_commit
            logger.warning("Deployment rolled back to %s", (serving or "")[:8])
        else:
            # traffic is split between versions until someone intervenes
            serving = run.commit_sha
            logger.critical("Deployment ended in %s: %s", run.status.value, run.failure_reason)

        event = ctx.rollback_event
        return DeploymentResult(
            run=run,
            exit_code=_EXIT_CODES[ctx.state],
            stages=list(ctx.stages),
            rollback_event=event,
            serving_commit=None if self.config.dry_run else serving,
            incident_filed=bool(event and event.incident_ref),
            dry_run=self.config.dry_run,
        )

    def _save(self, func, record, what: str) -> None:
        if self.config.dry_run:
            logger.debug("[DRY RUN] Skipping %s", what)
            return
        try:
            call_with_retry(func, record, config=self._retry_config, sleep=self._sleep)
        except MaxRetriesExceeded as exc:
            logger.warning("%s failed: %s", what.capitalize(), exc.last_exception)
        except Exception as exc:
            logger.warning("%s failed: %s", what.capitalize(), exc)
