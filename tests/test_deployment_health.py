"""Tests for PRD-120: Progressive Deployment: health evaluation."""

import httpx
import pytest

from src.deployment.config import HealthThresholds, Violation
from src.deployment.errors import ConfigurationError
from src.deployment.health import HealthEvaluator, parse_health_body

ENDPOINT = "http://service.test/health"


def _client(handler):
    return httpx.Client(transport=httpx.MockTransport(handler))


def _json_handler(payload, status_code=200):
    def handler(request):
        return httpx.Response(status_code, json=payload)

    return handler


class _Clock:
    """Returns ``start`` then ``start + step`` and so on."""

    def __init__(self, step=0.0):
        self.now = 0.0
        self.step = step

    def __call__(self):
        value = self.now
        self.now += self.step
        return value


def _evaluator(handler, clock_step=0.05, **kwargs):
    return HealthEvaluator(
        endpoint=ENDPOINT,
        client=_client(handler),
        clock=_Clock(clock_step),
        **kwargs,
    )


# ── Body Parsing ─────────────────────────────────────────────────────


class TestParseHealthBody:
    def test_json_fields(self):
        parsed = parse_health_body('{"status": "healthy", "error_rate": 1.5, "availability": 99.9}')
        assert parsed == {"status": "healthy", "error_rate": 1.5, "availability": 99.9}

    def test_camel_case_error_rate(self):
        assert parse_health_body('{"errorRate": 3}')["error_rate"] == 3.0

    def test_defaults(self):
        parsed = parse_health_body("{}")
        assert parsed == {"status": "unknown", "error_rate": 0.0, "availability": 100.0}

    def test_non_numeric_falls_back(self):
        parsed = parse_health_body('{"error_rate": "n/a", "availability": "lots"}')
        assert parsed["error_rate"] == 0.0
        assert parsed["availability"] == 100.0

    def test_non_finite_falls_back(self):
        parsed = parse_health_body('{"error_rate": NaN, "availability": Infinity}')
        assert parsed["error_rate"] == 0.0
        assert parsed["availability"] == 100.0

    def test_text_body_healthy(self):
        assert parse_health_body("service is healthy")["status"] == "healthy"

    def test_text_body_unhealthy(self):
        assert parse_health_body("service is UNHEALTHY")["status"] == "unhealthy"

    def test_text_body_status_pair(self):
        body = 'status report: "status": "unhealthy", previously healthy'
        assert parse_health_body(body)["status"] == "unhealthy"

    def test_empty_body(self):
        assert parse_health_body("")["status"] == "unknown"


# ── Evaluate ─────────────────────────────────────────────────────────


class TestHealthEvaluator:
    def test_healthy(self):
        evaluator = _evaluator(
            _json_handler({"status": "healthy", "error_rate": 0.1, "availability": 99.95})
        )
        verdict = evaluator.evaluate()
        assert verdict.healthy is True
        assert verdict.violations == []
        assert verdict.http_status == 200
        assert verdict.response_time_ms == pytest.approx(50.0)
        assert verdict.endpoint == ENDPOINT

    def test_explicit_unhealthy_status_overrides_metrics(self):
        evaluator = _evaluator(
            _json_handler({"status": "unhealthy", "error_rate": 0, "availability": 100})
        )
        verdict = evaluator.evaluate()
        assert verdict.healthy is False
        assert verdict.violations == [Violation.STATUS_UNHEALTHY]

    def test_error_status_case_insensitive(self):
        verdict = _evaluator(_json_handler({"status": "ERROR"})).evaluate()
        assert verdict.violations == [Violation.STATUS_UNHEALTHY]

    def test_error_rate_exceeded(self):
        verdict = _evaluator(
            _json_handler({"status": "healthy", "error_rate": 8.0, "availability": 99.9})
        ).evaluate()
        assert verdict.healthy is False
        assert verdict.violations == [Violation.ERROR_RATE_EXCEEDED]
        assert "8.0%" in verdict.details[0]

    def test_error_rate_at_threshold_passes(self):
        verdict = _evaluator(_json_handler({"error_rate": 5.0})).evaluate()
        assert verdict.healthy is True

    def test_availability_below_threshold(self):
        verdict = _evaluator(_json_handler({"availability": 98.5})).evaluate()
        assert verdict.violations == [Violation.AVAILABILITY_BELOW_THRESHOLD]

    def test_slow_response(self):
        verdict = _evaluator(_json_handler({"status": "healthy"}), clock_step=2.5).evaluate()
        assert verdict.response_time_ms == pytest.approx(2500.0)
        assert verdict.violations == [Violation.RESPONSE_TIME_EXCEEDED]

    def test_all_violations_collected(self):
        verdict = _evaluator(
            _json_handler({"status": "unhealthy", "error_rate": 12, "availability": 90}),
            clock_step=3.0,
        ).evaluate()
        assert verdict.violations == [
            Violation.STATUS_UNHEALTHY,
            Violation.ERROR_RATE_EXCEEDED,
            Violation.RESPONSE_TIME_EXCEEDED,
            Violation.AVAILABILITY_BELOW_THRESHOLD,
        ]
        assert len(verdict.details) == 4

    def test_custom_thresholds(self):
        verdict = _evaluator(
            _json_handler({"error_rate": 1.0}),
            thresholds=HealthThresholds(max_error_rate=0.5),
        ).evaluate()
        assert verdict.violations == [Violation.ERROR_RATE_EXCEEDED]

    def test_client_error_status_is_judged(self):
        verdict = _evaluator(_json_handler({"status": "healthy"}, status_code=404)).evaluate()
        assert verdict.healthy is True
        assert verdict.http_status == 404

    def test_server_error_is_unreachable(self):
        verdict = _evaluator(_json_handler({"status": "healthy"}, status_code=503)).evaluate()
        assert verdict.healthy is False
        assert verdict.violations == [Violation.ENDPOINT_UNREACHABLE]
        assert verdict.http_status == 503

    def test_connection_error_is_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        verdict = _evaluator(handler).evaluate()
        assert verdict.healthy is False
        assert verdict.status == "unreachable"
        assert verdict.availability_pct == 0.0
        assert verdict.violations == [Violation.ENDPOINT_UNREACHABLE]

    def test_timeout_is_unreachable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        verdict = _evaluator(handler, timeout=1.0).evaluate()
        assert verdict.violations == [Violation.ENDPOINT_UNREACHABLE]
        assert "timed out" in verdict.details[0]

    def test_endpoint_override(self):
        seen = []

        def handler(request):
            seen.append(str(request.url))
            return httpx.Response(200, text="healthy")

        _evaluator(handler).evaluate(endpoint="http://other.test/status")
        assert seen == ["http://other.test/status"]

    def test_text_body(self):
        def handler(request):
            return httpx.Response(200, text="OK - service healthy")

        verdict = _evaluator(handler).evaluate()
        assert verdict.healthy is True
        assert verdict.status == "healthy"


# ── Wait Until Healthy ───────────────────────────────────────────────


class TestWaitUntilHealthy:
    def _evaluator(self, statuses):
        responses = iter(statuses)
        self.sleeps = []
        self.now = 0.0

        def handler(request):
            return httpx.Response(200, json={"status": next(responses)})

        def sleep(seconds):
            self.sleeps.append(seconds)
            self.now += seconds

        return HealthEvaluator(
            endpoint=ENDPOINT,
            client=_client(handler),
            clock=_Clock(0.0),
            monotonic=lambda: self.now,
            sleep=sleep,
        )

    def test_healthy_first_time(self):
        verdict, timed_out = self._evaluator(["healthy"]).wait_until_healthy(
            max_wait=30, poll_interval=10
        )
        assert verdict.healthy is True
        assert timed_out is False
        assert self.sleeps == []

    def test_becomes_healthy(self):
        verdict, timed_out = self._evaluator(
            ["unhealthy", "unhealthy", "healthy"]
        ).wait_until_healthy(max_wait=60, poll_interval=10)
        assert verdict.healthy is True
        assert timed_out is False
        assert self.sleeps == [10, 10]

    def test_times_out(self):
        verdict, timed_out = self._evaluator(["unhealthy"] * 10).wait_until_healthy(
            max_wait=25, poll_interval=10
        )
        assert timed_out is True
        assert verdict.healthy is False
        assert self.sleeps == [10, 10]

    def test_invalid_arguments(self):
        evaluator = self._evaluator([])
        with pytest.raises(ConfigurationError):
            evaluator.wait_until_healthy(poll_interval=0)
        with pytest.raises(ConfigurationError):
            evaluator.wait_until_healthy(max_wait=-1)
