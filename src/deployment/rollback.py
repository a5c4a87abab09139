"""PRD-120: Progressive Deployment: Rollback Coordinator."""

import dataclasses
import logging
import time
from typing import Callable, Optional

from src.resilience import MaxRetriesExceeded, RetryConfig, call_with_retry

from .config import RollbackOutcome
from .errors import (
    PortFailure,
    PreviousVersionUnavailable,
    RollbackFailure,
    StaleMarkerError,
)
from .models import RollbackEvent, VersionMarker, generate_deployment_id
from .ports import (
    DeploymentStore,
    IncidentNotifier,
    RollbackAction,
    VersionControlHistory,
)

logger = logging.getLogger(__name__)


class RollbackCoordinator:
    """Resolves a rollback target, performs the rollback and records it.

    Store and notifier calls are retried and then degrade to warnings;
    only the rollback action itself decides success or failure.
    """

    def __init__(
        self,
        store: DeploymentStore,
        action: RollbackAction,
        history: Optional[VersionControlHistory] = None,
        notifier: Optional[IncidentNotifier] = None,
        marker_name: str = "last_stable",
        dry_run: bool = False,
        notify: bool = True,
        retry_config: Optional[RetryConfig] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.action = action
        self.history = history
        self.notifier = notifier
        self.marker_name = marker_name
        self.dry_run = dry_run
        self.notify = notify
        self._retry_config = (retry_config or RetryConfig()).with_exceptions(PortFailure)
        self._sleep = sleep

    def preflight(self) -> None:
        """Raise InfrastructureError when a rollback could not be performed."""
        self.action.preflight()

    # ── Target resolution ────────────────────────────────────────────

    def resolve_target(
        self, current_commit: str, previous_commit: Optional[str] = None
    ) -> Optional[str]:
        """Find the commit to roll back to, or None.

        Order: explicit commit, parent in history, stable marker, most
        recent completed run with a different commit.
        """
        if previous_commit:
            logger.info("Using explicit rollback target %s", previous_commit[:8])
            return previous_commit

        if self.history is not None:
            parent = self.history.parent_of(current_commit)
            if parent:
                logger.info("Using parent commit %s as rollback target", parent[:8])
                return parent

        marker = self._call(self.store.get_marker, self.marker_name, what="marker read")
        if marker is not None and marker.commit_sha != current_commit:
            logger.info(
                "Using stable marker '%s' -> %s as rollback target",
                self.marker_name,
                marker.commit_sha[:8],
            )
            return marker.commit_sha

        commit = self._call(
            self.store.latest_successful_commit,
            current_commit,
            what="deployment history read",
        )
        if commit:
            logger.info("Using last successful deployment %s as rollback target", commit[:8])
        return commit

    # ── Rollback ─────────────────────────────────────────────────────

    def rollback(
        self,
        current_commit: str,
        previous_commit: Optional[str] = None,
        reason: str = "manual rollback",
        deployment_id: Optional[str] = None,
        triggered_at_stage: Optional[int] = None,
        dry_run: bool = False,
    ) -> RollbackEvent:
        """Roll ``current_commit`` back to the last known-good commit.

        ``dry_run`` makes this call a dry run even when the coordinator
        itself is not.

        Raises:
            PreviousVersionUnavailable: No rollback target was found.
            RollbackFailure: The rollback action failed.
        """
        dry_run = dry_run or self.dry_run
        deployment_id = deployment_id or generate_deployment_id()
        logger.warning(
            "Initiating rollback of %s for deployment %s: %s",
            current_commit[:8],
            deployment_id,
            reason,
        )

        target = self.resolve_target(current_commit, previous_commit)
        if target is None:
            logger.error("Could not determine previous commit for rollback")
            event = RollbackEvent(
                deployment_id=deployment_id,
                from_commit=current_commit,
                to_commit=None,
                reason=reason,
                outcome=RollbackOutcome.ROLLBACK_FAILED,
                triggered_at_stage=triggered_at_stage,
                dry_run=dry_run,
            )
            if not dry_run:
                event = self._publish(event)
            raise PreviousVersionUnavailable(current_commit, event=event)

        if dry_run:
            logger.info(
                "[DRY RUN] Would roll back %s -> %s via %s action",
                current_commit[:8],
                target[:8],
                self.action.name,
            )
            logger.info("[DRY RUN] Would update marker '%s' to %s", self.marker_name, target[:8])
            logger.info("[DRY RUN] Would record rollback event and notify the team")
            return RollbackEvent(
                deployment_id=deployment_id,
                from_commit=current_commit,
                to_commit=target,
                reason=reason,
                outcome=RollbackOutcome.ROLLED_BACK,
                triggered_at_stage=triggered_at_stage,
                dry_run=True,
            )

        logger.info("Rolling back to %s via %s action", target[:8], self.action.name)
        try:
            self.action.execute(target)
        except Exception as exc:
            logger.error("Rollback to %s failed: %s", target[:8], exc)
            event = self._publish(
                RollbackEvent(
                    deployment_id=deployment_id,
                    from_commit=current_commit,
                    to_commit=target,
                    reason=reason,
                    outcome=RollbackOutcome.ROLLBACK_FAILED,
                    triggered_at_stage=triggered_at_stage,
                )
            )
            raise RollbackFailure(
                f"rollback to {target[:8]} failed: {exc}", event=event
            ) from exc

        self.mark_stable(target)
        event = self._publish(
            RollbackEvent(
                deployment_id=deployment_id,
                from_commit=current_commit,
                to_commit=target,
                reason=reason,
                outcome=RollbackOutcome.ROLLED_BACK,
                triggered_at_stage=triggered_at_stage,
            )
        )
        logger.info("Rollback completed: now serving %s", target[:8])
        return event

    def mark_stable(self, commit_sha: str) -> Optional[VersionMarker]:
        """Move the stable marker to ``commit_sha``.

        A concurrent marker change is reported and left in place.
        """
        return self._call(
            self._compare_and_set_marker, commit_sha, what="marker update"
        )

    # ── Internal helpers ─────────────────────────────────────────────

    def _compare_and_set_marker(self, commit_sha: str) -> Optional[VersionMarker]:
        current = self.store.get_marker(self.marker_name)
        expected = current.version if current else None
        try:
            marker = self.store.update_marker(self.marker_name, commit_sha, expected)
        except StaleMarkerError as exc:
            logger.warning("Stable marker changed concurrently, not overwriting: %s", exc)
            return None
        logger.info(
            "Marker '%s' now points at %s (version %d)",
            self.marker_name,
            commit_sha[:8],
            marker.version,
        )
        return marker

    def _publish(self, event: RollbackEvent) -> RollbackEvent:
        """Notify, attach the incident reference, then persist the event."""
        ref = None
        if self.notify and self.notifier is not None:
            ref = self._call(
                self.notifier.create_ticket, event, what="incident ticket"
            )
            self._call(
                self.notifier.send_notification, event, what="team notification"
            )
        event = dataclasses.replace(event, incident_ref=ref)
        self._call(self.store.save_rollback_event, event, what="rollback event write")
        return event

    def _call(self, func, *args, what: str):
        """Retry ``func``; a failure is logged and yields None."""
        try:
            return call_with_retry(
                func, *args, config=self._retry_config, sleep=self._sleep
            )
        except MaxRetriesExceeded as exc:
            logger.warning("%s failed: %s", what.capitalize(), exc.last_exception)
            return None
        except Exception as exc:
            logger.warning("%s failed: %s", what.capitalize(), exc, exc_info=True)
            return None
