"""PRD-120: Progressive Deployment: Incident Notification Adapters."""

import logging
from typing import List, Optional, Sequence

import httpx

from .errors import NotificationError
from .models import RollbackEvent
from .ports import IncidentNotifier

logger = logging.getLogger(__name__)

INCIDENT_LABELS = ("incident", "rollback", "automated")


def _short(commit: Optional[str]) -> str:
    return (commit or "none")[:8]


def incident_title(event: RollbackEvent) -> str:
    prefix = "Deployment Rollback" if event.succeeded else "Deployment Rollback FAILED"
    return f"{prefix}: {event.deployment_id}"


def incident_body(event: RollbackEvent) -> str:
    """Markdown body for the incident ticket."""
    if event.succeeded:
        details = (
            "- The deployment was automatically rolled back due to health check failures\n"
            "- Previous stable version has been restored\n"
            "- Service should be recovering now"
        )
        severity = "High"
    else:
        details = (
            "- Automated rollback did NOT complete\n"
            "- Traffic may still be split onto the failed version\n"
            "- Manual intervention is required"
        )
        severity = "Critical"
    stage = event.triggered_at_stage if event.triggered_at_stage is not None else "n/a"
    return (
        "## Deployment Rollback Incident\n\n"
        f"**Deployment ID:** `{event.deployment_id}`\n"
        f"**Rollback Commit:** `{_short(event.to_commit)}`\n"
        f"**Failed Commit:** `{_short(event.from_commit)}`\n"
        f"**Failed Stage:** {stage}\n"
        f"**Outcome:** {event.outcome.value}\n"
        f"**Rollback Time:** {event.timestamp:%Y-%m-%d %H:%M:%S} UTC\n\n"
        f"### Reason\n{event.reason}\n\n"
        f"### Details\n{details}\n\n"
        "### Action Items\n"
        "- [ ] Investigate root cause of the deployment failure\n"
        "- [ ] Review health check metrics and logs\n"
        "- [ ] Fix the issue in the failed commit\n"
        "- [ ] Test thoroughly before redeploying\n\n"
        "### Metadata\n"
        "- **Triggered By:** Automated rollback system\n"
        f"- **Severity:** {severity}\n"
    )


def notification_text(event: RollbackEvent) -> str:
    if event.succeeded:
        return (
            f"Deployment {event.deployment_id} has been rolled back to "
            f"{_short(event.to_commit)}. Reason: {event.reason}"
        )
    return (
        f"Rollback of deployment {event.deployment_id} FAILED "
        f"(from {_short(event.from_commit)}). Manual intervention required. "
        f"Reason: {event.reason}"
    )


class LoggingIncidentNotifier(IncidentNotifier):
    """Writes incidents to the log only."""

    def create_ticket(self, event: RollbackEvent) -> Optional[str]:
        logger.warning("Incident: %s", incident_title(event))
        return None

    def send_notification(self, event: RollbackEvent) -> bool:
        logger.warning("Team notification: %s", notification_text(event))
        return True


class GitHubIncidentNotifier(IncidentNotifier):
    """Opens incident issues through the GitHub REST API."""

    def __init__(
        self,
        repo: str,
        token: str,
        api_url: str = "https://api.github.com",
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.repo = repo
        self.token = token
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client()

    def create_ticket(self, event: RollbackEvent) -> Optional[str]:
        if not self.repo or not self.token:
            logger.warning("GitHub repo or token not set, skipping issue creation")
            return None
        logger.info("Creating incident issue in %s", self.repo)
        try:
            response = self._client.post(
                f"{self.api_url}/repos/{self.repo}/issues",
                json={
                    "title": incident_title(event),
                    "body": incident_body(event),
                    "labels": list(INCIDENT_LABELS),
                },
                headers={
                    "Authorization": f"Bearer {self.token}",
                    "Accept": "application/vnd.github+json",
                },
                timeout=self.timeout,
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"GitHub issue creation failed: {exc}") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise NotificationError(f"GitHub returned a non-JSON body: {exc}") from exc
        if not isinstance(payload, dict):
            raise NotificationError(
                f"GitHub returned unexpected payload type {type(payload).__name__}"
            )
        url = payload.get("html_url")
        logger.info("Incident issue created: %s", url)
        return url

    def send_notification(self, event: RollbackEvent) -> bool:
        return False


class WebhookNotifier(IncidentNotifier):
    """Posts a ``{"text": ...}`` message to a chat webhook."""

    def __init__(
        self,
        url: str,
        timeout: float = 10.0,
        client: Optional[httpx.Client] = None,
    ):
        self.url = url
        self.timeout = timeout
        self._client = client or httpx.Client()

    def create_ticket(self, event: RollbackEvent) -> Optional[str]:
        return None

    def send_notification(self, event: RollbackEvent) -> bool:
        try:
            response = self._client.post(
                self.url, json={"text": notification_text(event)}, timeout=self.timeout
            )
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise NotificationError(f"webhook notification failed: {exc}") from exc
        logger.info("Team notified via webhook")
        return True


class CompositeIncidentNotifier(IncidentNotifier):
    """Fans out to several notifiers; one failing never stops the others."""

    def __init__(self, notifiers: Sequence[IncidentNotifier]):
        self.notifiers: List[IncidentNotifier] = list(notifiers)

    def create_ticket(self, event: RollbackEvent) -> Optional[str]:
        ref = None
        for notifier in self.notifiers:
            try:
                result = notifier.create_ticket(event)
            except Exception as exc:
                logger.warning("%s: %s", type(notifier).__name__, exc)
                continue
            ref = ref or result
        return ref

    def send_notification(self, event: RollbackEvent) -> bool:
        sent = False
        for notifier in self.notifiers:
            try:
                sent = notifier.send_notification(event) or sent
            except Exception as exc:
                logger.warning("%s: %s", type(notifier).__name__, exc)
        return sent
