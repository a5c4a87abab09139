"""PRD-120: Progressive Deployment: Health Evaluation.

Fetches a health telemetry endpoint and judges the answer against
configured thresholds. An endpoint that cannot answer is evidence of
an unhealthy deployment, so network trouble becomes a verdict rather
than an exception.
"""

import json
import logging
import math
import re
import time
from typing import Any, Callable, Dict, Optional, Tuple

import httpx

from .config import HealthThresholds, Violation
from .errors import ConfigurationError
from .models import HealthVerdict

logger = logging.getLogger(__name__)

UNHEALTHY_STATUSES = ("unhealthy", "error")

_STATUS_HEALTHY_RE = re.compile(r'"status"\s*:\s*"healthy"', re.IGNORECASE)
_STATUS_UNHEALTHY_RE = re.compile(r'"status"\s*:\s*"unhealthy"', re.IGNORECASE)
_BARE_HEALTHY_RE = re.compile(r"\bhealthy\b", re.IGNORECASE)
_BARE_UNHEALTHY_RE = re.compile(r"\bunhealthy\b", re.IGNORECASE)


def _as_float(value: Any, default: float, name: str) -> float:
    if value is None:
        return default
    try:
        number = float(value)
    except (TypeError, ValueError):
        logger.warning("Ignoring non-numeric %s %r, using %s", name, value, default)
        return default
    if not math.isfinite(number):
        logger.warning("Ignoring non-finite %s %r, using %s", name, value, default)
        return default
    return number


def parse_health_body(body: str) -> Dict[str, Any]:
    """Extract ``status``, ``error_rate`` and ``availability`` from a body.

    JSON objects are read field by field, accepting ``errorRate`` as an
    alias. Anything else is scanned as text for a status. Missing
    metrics default to error_rate=0 and availability=100.
    """
    parsed = {"status": "unknown", "error_rate": 0.0, "availability": 100.0}

    try:
        data = json.loads(body) if body else None
    except ValueError:
        data = None

    if isinstance(data, dict):
        status = data.get("status")
        if status is not None:
            parsed["status"] = str(status)
        error_rate = data.get("error_rate")
        if error_rate is None:
            error_rate = data.get("errorRate")
        parsed["error_rate"] = _as_float(error_rate, 0.0, "error_rate")
        parsed["availability"] = _as_float(
            data.get("availability"), 100.0, "availability"
        )
        return parsed

    text = body or ""
    if _STATUS_HEALTHY_RE.search(text):
        parsed["status"] = "healthy"
    elif _STATUS_UNHEALTHY_RE.search(text):
        parsed["status"] = "unhealthy"
    elif _BARE_UNHEALTHY_RE.search(text):
        parsed["status"] = "unhealthy"
    elif _BARE_HEALTHY_RE.search(text):
        parsed["status"] = "healthy"
    return parsed


class HealthEvaluator:
    """Evaluates a health endpoint against thresholds."""

    def __init__(
        self,
        endpoint: str = "http://localhost:8080/health",
        timeout: float = 10.0,
        thresholds: Optional[HealthThresholds] = None,
        client: Optional[httpx.Client] = None,
        clock: Callable[[], float] = time.perf_counter,
        monotonic: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.endpoint = endpoint
        self.timeout = timeout
        self.thresholds = thresholds or HealthThresholds()
        self._owns_client = client is None
        self._client = client or httpx.Client(follow_redirects=True)
        self._clock = clock
        self._monotonic = monotonic
        self._sleep = sleep

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "HealthEvaluator":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def evaluate(
        self, endpoint: Optional[str] = None, timeout: Optional[float] = None
    ) -> HealthVerdict:
        """Fetch the endpoint once and return a verdict. Never raises on I/O."""
        endpoint = endpoint or self.endpoint
        timeout = self.timeout if timeout is None else timeout

        logger.info("Performing health check on %s", endpoint)
        start = self._clock()
        try:
            response = self._client.get(endpoint, timeout=timeout)
        except httpx.TimeoutException:
            return self._unreachable(
                endpoint, f"Health endpoint timed out after {timeout}s"
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            return self._unreachable(
                endpoint, f"Health endpoint is not accessible: {exc}"
            )
        elapsed_ms = (self._clock() - start) * 1000.0

        if not 200 <= response.status_code < 500:
            return self._unreachable(
                endpoint,
                f"Health endpoint answered HTTP {response.status_code}",
                http_status=response.status_code,
                response_time_ms=elapsed_ms,
            )

        fields = parse_health_body(response.text)
        verdict = HealthVerdict(
            healthy=True,
            status=fields["status"],
            error_rate=fields["error_rate"],
            availability_pct=fields["availability"],
            response_time_ms=round(elapsed_ms, 1),
            http_status=response.status_code,
            endpoint=endpoint,
        )
        self._judge(verdict)

        logger.info(
            "Health status=%s error_rate=%.2f%% availability=%.2f%% response_time=%.0fms",
            verdict.status,
            verdict.error_rate,
            verdict.availability_pct,
            verdict.response_time_ms,
        )
        if verdict.healthy:
            logger.info("Health check passed")
        else:
            logger.warning("Health check failed: %s", "; ".join(verdict.details))
        return verdict

    def wait_until_healthy(
        self,
        endpoint: Optional[str] = None,
        max_wait: float = 300.0,
        poll_interval: float = 10.0,
    ) -> Tuple[HealthVerdict, bool]:
        """Poll until healthy or ``max_wait`` elapses.

        Returns:
            Tuple of (last verdict, timed_out).
        """
        if poll_interval <= 0:
            raise ConfigurationError("poll_interval must be positive")
        if max_wait < 0:
            raise ConfigurationError("max_wait must not be negative")

        started = self._monotonic()
        deadline = started + max_wait
        logger.info("Waiting for health check to pass (max %.0fs)", max_wait)
        while True:
            verdict = self.evaluate(endpoint)
            waited = self._monotonic() - started
            if verdict.healthy:
                logger.info("Health check passed after %.0fs", waited)
                return verdict, False
            if self._monotonic() + poll_interval > deadline:
                logger.error("Health check did not pass within %.0fs", max_wait)
                return verdict, True
            logger.info(
                "Retrying in %.0fs... (%.0f/%.0fs elapsed)",
                poll_interval,
                waited,
                max_wait,
            )
            self._sleep(poll_interval)

    # ── Internal helpers ─────────────────────────────────────────────

    def _judge(self, verdict: HealthVerdict) -> None:
        t = self.thresholds
        if verdict.status.strip().lower() in UNHEALTHY_STATUSES:
            verdict.add_violation(
                Violation.STATUS_UNHEALTHY,
                f"Status reported as {verdict.status}",
            )
        if verdict.error_rate > t.max_error_rate:
            verdict.add_violation(
                Violation.ERROR_RATE_EXCEEDED,
                f"Error rate {verdict.error_rate}% exceeds threshold {t.max_error_rate}%",
            )
        if verdict.response_time_ms > t.max_response_time_ms:
            verdict.add_violation(
                Violation.RESPONSE_TIME_EXCEEDED,
                f"Response time {verdict.response_time_ms:.0f}ms exceeds threshold "
                f"{t.max_response_time_ms:.0f}ms",
            )
        if verdict.availability_pct < t.min_availability:
            verdict.add_violation(
                Violation.AVAILABILITY_BELOW_THRESHOLD,
                f"Availability {verdict.availability_pct}% below threshold "
                f"{t.min_availability}%",
            )

    def _unreachable(
        self,
        endpoint: str,
        detail: str,
        http_status: Optional[int] = None,
        response_time_ms: float = 0.0,
    ) -> HealthVerdict:
        logger.error(detail)
        verdict = HealthVerdict(
            healthy=False,
            status="unreachable",
            availability_pct=0.0,
            http_status=http_status,
            endpoint=endpoint,
            response_time_ms=round(response_time_ms, 1),
        )
        verdict.add_violation(Violation.ENDPOINT_UNREACHABLE, detail)
        return verdict
