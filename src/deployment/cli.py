"""CLI entry point: progressive-deploy deploy|rollback|health

Exit codes:
    0  success
    1  handled failure (deployment rolled back, service unhealthy)
    2  configuration or infrastructure error
    3  human required (rollback failed or skipped, operator declined,
       health wait timed out)
"""

import argparse
import logging
import signal
import sys
from contextlib import contextmanager
from typing import Callable, Iterator, List, Optional

from src.db import build_engine
from src.logging_config import LoggingConfig, configure_logging
from src.resilience import RetryConfig
from src.settings import Settings, get_settings

from .config import DeploymentConfig, ExitCode
from .controller import StageController
from .errors import (
    ConfigurationError,
    InfrastructureError,
    PreviousVersionUnavailable,
    RollbackFailure,
    StoreError,
)
from .health import HealthEvaluator
from .models import HealthCheck
from .notifier import (
    CompositeIncidentNotifier,
    GitHubIncidentNotifier,
    LoggingIncidentNotifier,
    WebhookNotifier,
)
from .ports import (
    DeploymentStore,
    IncidentNotifier,
    RollbackAction,
    TrafficController,
)
from .rollback import RollbackCoordinator
from .store import InMemoryDeploymentStore, SqlDeploymentStore
from .traffic import ScriptTrafficController
from .vcs import GitHistory, GitRollbackAction, ScriptRollbackAction

logger = logging.getLogger(__name__)


# ── Wiring ───────────────────────────────────────────────────────────


def parse_stages(value: str) -> List[int]:
    """Parse ``"10,25,50,100"`` into a stage list."""
    try:
        return [int(part) for part in value.split(",") if part.strip()]
    except ValueError as exc:
        raise ConfigurationError(f"Invalid stage list {value!r}") from exc


def build_retry_config(settings: Settings) -> RetryConfig:
    return RetryConfig(
        max_retries=settings.port_max_retries,
        base_delay=settings.port_retry_base_delay,
    )


def build_store(settings: Settings) -> DeploymentStore:
    if not settings.use_database:
        return InMemoryDeploymentStore()
    store = SqlDeploymentStore(build_engine(settings.database_url))
    try:
        store.create_schema()
    except StoreError as exc:
        raise InfrastructureError(f"Deployment database unavailable: {exc}") from exc
    return store


def build_history(settings: Settings) -> GitHistory:
    return GitHistory(workdir=settings.git_workdir, remote=settings.git_remote)


def build_traffic_controller(settings: Settings) -> Optional[TrafficController]:
    if not settings.deployment_script:
        logger.warning("No deployment script configured; traffic cannot be changed")
        return None
    return ScriptTrafficController(settings.deployment_script)


def build_rollback_action(settings: Settings, history: GitHistory) -> RollbackAction:
    if settings.deployment_script:
        return ScriptRollbackAction(settings.deployment_script)
    return GitRollbackAction(
        history,
        release_branches=settings.release_branches,
        write_token=settings.github_token or None,
    )


def build_notifier(settings: Settings, history: GitHistory) -> IncidentNotifier:
    notifiers: List[IncidentNotifier] = [LoggingIncidentNotifier()]
    repo = settings.github_repo or history.remote_repository()
    if settings.github_token and repo:
        notifiers.append(
            GitHubIncidentNotifier(
                repo=repo,
                token=settings.github_token,
                api_url=settings.github_api_url,
            )
        )
    else:
        logger.info("GitHub repo or token not configured, incident issues disabled")
    if settings.notification_webhook_url:
        notifiers.append(WebhookNotifier(settings.notification_webhook_url))
    return CompositeIncidentNotifier(notifiers)


def build_coordinator(
    settings: Settings,
    store: DeploymentStore,
    dry_run: bool = False,
    notify: bool = True,
) -> RollbackCoordinator:
    history = build_history(settings)
    return RollbackCoordinator(
        store=store,
        action=build_rollback_action(settings, history),
        history=history,
        notifier=build_notifier(settings, history),
        marker_name=settings.marker_name,
        dry_run=dry_run,
        notify=notify,
        retry_config=build_retry_config(settings),
    )


def record_health_check(settings: Settings, check: HealthCheck) -> None:
    """Persist a standalone check when the database is enabled."""
    if not settings.use_database:
        logger.debug("Database disabled, not storing health check")
        return
    try:
        build_store(settings).save_health_check(check)
    except (InfrastructureError, StoreError) as exc:
        logger.warning("Could not store health check: %s", exc)
        return
    logger.info("Health check stored (status=%s)", check.verdict.status)


@contextmanager
def cancel_on_signals(cancel: Callable[[str], None]) -> Iterator[None]:
    """Route SIGINT/SIGTERM to ``cancel`` while the block runs."""

    def handler(signum, frame):
        cancel(f"received {signal.Signals(signum).name}")

    previous = {
        sig: signal.signal(sig, handler) for sig in (signal.SIGINT, signal.SIGTERM)
    }
    try:
        yield
    finally:
        for sig, old in previous.items():
            signal.signal(sig, old)


# ── Commands ─────────────────────────────────────────────────────────


def _current_commit(args: argparse.Namespace, settings: Settings) -> str:
    return args.commit or build_history(settings).head_commit() or "unknown"


def cmd_deploy(args: argparse.Namespace, settings: Settings) -> int:
    config = DeploymentConfig.from_settings(
        settings,
        stages=parse_stages(args.stages) if args.stages else None,
        stage_wait_time=args.wait_time,
        health_endpoint=args.endpoint,
        dry_run=args.dry_run or None,
        skip_rollback=args.skip_rollback or None,
        notify_on_rollback=False if args.skip_issue else None,
    )
    config.validate()

    traffic = build_traffic_controller(settings)
    if traffic is None and not config.dry_run:
        raise ConfigurationError(
            "DEPLOY_DEPLOYMENT_SCRIPT is required to control traffic (or use --dry-run)"
        )

    store = build_store(settings)
    coordinator = build_coordinator(
        settings, store, dry_run=config.dry_run, notify=config.notify_on_rollback
    )
    with HealthEvaluator(
        endpoint=config.health_endpoint,
        timeout=config.health_timeout_seconds,
        thresholds=config.thresholds,
    ) as evaluator:
        controller = StageController(
            config=config,
            traffic_controller=traffic,
            health_evaluator=evaluator,
            coordinator=coordinator,
            store=store,
            retry_config=build_retry_config(settings),
        )
        with cancel_on_signals(controller.cancel):
            result = controller.run(
                commit_sha=_current_commit(args, settings),
                build_id=args.build_id,
                deployment_id=args.deployment_id,
                previous_commit=args.previous_commit,
            )
    print(result.summary())
    return int(result.exit_code)


def _confirm(commit: str, previous: Optional[str]) -> bool:
    print("WARNING: This will roll back the deployment")
    print(f"  Current commit:  {commit}")
    print(f"  Rollback target: {previous or 'auto-detect'}")
    try:
        answer = input("Are you sure you want to proceed? (yes/no): ")
    except EOFError:
        return False
    return answer.strip().lower() in ("yes", "y")


def cmd_rollback(args: argparse.Namespace, settings: Settings) -> int:
    commit = _current_commit(args, settings)
    if not args.force and not args.dry_run and not _confirm(commit, args.previous_commit):
        logger.info("Rollback cancelled by user")
        return int(ExitCode.HUMAN_REQUIRED)

    coordinator = build_coordinator(
        settings,
        build_store(settings),
        dry_run=args.dry_run,
        notify=not args.skip_issue,
    )
    coordinator.preflight()
    try:
        event = coordinator.rollback(
            commit,
            previous_commit=args.previous_commit,
            reason=args.reason,
            deployment_id=args.deployment_id,
        )
    except PreviousVersionUnavailable as exc:
        logger.error("%s", exc)
        return int(ExitCode.HUMAN_REQUIRED)
    except RollbackFailure as exc:
        logger.critical("Rollback failed, manual intervention required: %s", exc)
        return int(ExitCode.HUMAN_REQUIRED)

    print(f"Rolled back {event.from_commit[:8]} -> {event.to_commit[:8]}")
    if event.incident_ref:
        print(f"Incident: {event.incident_ref}")
    return int(ExitCode.SUCCESS)


def cmd_health(args: argparse.Namespace, settings: Settings) -> int:
    config = DeploymentConfig.from_settings(settings, health_endpoint=args.endpoint)
    config.validate()

    with HealthEvaluator(
        endpoint=config.health_endpoint,
        timeout=config.health_timeout_seconds,
        thresholds=config.thresholds,
    ) as evaluator:
        timed_out = False
        if args.wait:
            verdict, timed_out = evaluator.wait_until_healthy(
                max_wait=args.max_wait, poll_interval=args.poll_interval
            )
        else:
            verdict = evaluator.evaluate()

    record_health_check(
        settings,
        HealthCheck(
            verdict=verdict,
            deployment_id=args.deployment_id,
            commit_sha=args.commit,
        ),
    )
    if timed_out:
        return int(ExitCode.HUMAN_REQUIRED)

    print(
        f"status={verdict.status} error_rate={verdict.error_rate}% "
        f"availability={verdict.availability_pct}% "
        f"response_time={verdict.response_time_ms:.0f}ms"
    )
    for detail in verdict.details:
        print(f"  - {detail}")
    return int(ExitCode.SUCCESS if verdict.healthy else ExitCode.HANDLED_FAILURE)


# ── Parser ───────────────────────────────────────────────────────────


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="progressive-deploy",
        description="Progressive deployment with health-gated automatic rollback",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    deploy = sub.add_parser("deploy", help="Promote a commit through traffic stages")
    deploy.add_argument("--deployment-id", default=None, help="Deployment ID (default: deploy-<timestamp>)")
    deploy.add_argument("--commit", default=None, help="Commit SHA being deployed (default: HEAD)")
    deploy.add_argument("--previous-commit", default=None, help="Rollback target (default: auto-detect)")
    deploy.add_argument("--build-id", default="unknown", help="CI/CD build ID")
    deploy.add_argument("--endpoint", default=None, help="Health check endpoint URL")
    deploy.add_argument("--stages", default=None, help="Comma-separated traffic percentages, e.g. 10,25,50,100")
    deploy.add_argument("--wait-time", type=float, default=None, help="Seconds to observe each stage")
    deploy.add_argument("--dry-run", action="store_true", help="Log actions without executing them")
    deploy.add_argument("--skip-rollback", action="store_true", help="Do not roll back on failure")
    deploy.add_argument("--skip-issue", action="store_true", help="Do not open incident tickets")
    deploy.set_defaults(func=cmd_deploy)

    rollback = sub.add_parser("rollback", help="Roll back to the last known-good commit")
    rollback.add_argument("--deployment-id", default=None, help="Deployment ID to roll back")
    rollback.add_argument("--commit", default=None, help="Commit SHA being rolled back (default: HEAD)")
    rollback.add_argument("--previous-commit", default=None, help="Rollback target (default: auto-detect)")
    rollback.add_argument("--reason", default="Manual rollback", help="Reason recorded on the event")
    rollback.add_argument("--dry-run", action="store_true", help="Log actions without executing them")
    rollback.add_argument("--skip-issue", action="store_true", help="Do not open incident tickets")
    rollback.add_argument("--force", action="store_true", help="Skip the confirmation prompt")
    rollback.set_defaults(func=cmd_rollback)

    health = sub.add_parser("health", help="Check the health endpoint once or until healthy")
    health.add_argument("--endpoint", default=None, help="Health check endpoint URL")
    health.add_argument("--wait", action="store_true", help="Poll until healthy")
    health.add_argument("--max-wait", type=float, default=300.0, help="Maximum seconds to wait")
    health.add_argument("--poll-interval", type=float, default=10.0, help="Seconds between polls")
    health.add_argument("--deployment-id", default=None, help="Deployment ID to record the check under")
    health.add_argument("--commit", default=None, help="Commit SHA to record the check under")
    health.set_defaults(func=cmd_health)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    settings = get_settings()
    configure_logging(LoggingConfig.from_settings(settings))
    try:
        return args.func(args, settings)
    except (ConfigurationError, InfrastructureError) as exc:
        logger.error("%s", exc)
        return int(ExitCode.CONFIGURATION_ERROR)


if __name__ == "__main__":
    sys.exit(main())
