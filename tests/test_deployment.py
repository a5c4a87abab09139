"""Tests for PRD-120: Progressive Deployment: config, models and traffic."""

import dataclasses
from types import SimpleNamespace

import pytest

from src.deployment.config import (
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
from src.deployment.errors import (
    ConfigurationError,
    InvalidTransition,
    PreviousVersionUnavailable,
    StaleMarkerError,
    StoreError,
    TrafficUpdateError,
)
from src.deployment.models import (
    DeploymentRun,
    HealthVerdict,
    RollbackEvent,
    StageRecord,
    generate_deployment_id,
)
from src.deployment.traffic import (
    InMemoryTrafficController,
    ScriptTrafficController,
    TrafficSplit,
)
from src.settings import Settings


# ── Config Tests ─────────────────────────────────────────────────────


class TestDeploymentConfig:
    def test_run_status_values(self):
        assert RunStatus.STAGE_RUNNING.value == "stage-running"
        assert RunStatus.ROLLED_BACK.value == "rolled-back"
        assert RunStatus.ROLLBACK_FAILED.value == "rollback-failed"
        assert not RunStatus.STARTED.is_terminal
        assert not RunStatus.STAGE_RUNNING.is_terminal
        assert RunStatus.COMPLETED.is_terminal
        assert RunStatus.FAILED.is_terminal

    def test_controller_state_terminals(self):
        terminal = {s for s in ControllerState if s.is_terminal}
        assert terminal == {
            ControllerState.COMPLETED,
            ControllerState.ROLLED_BACK,
            ControllerState.ROLLBACK_FAILED,
            ControllerState.FAILED,
        }

    def test_exit_codes(self):
        assert int(ExitCode.SUCCESS) == 0
        assert int(ExitCode.HANDLED_FAILURE) == 1
        assert int(ExitCode.CONFIGURATION_ERROR) == 2
        assert int(ExitCode.HUMAN_REQUIRED) == 3

    def test_default_config(self):
        cfg = DeploymentConfig()
        assert cfg.stages == [10, 25, 50, 100]
        assert cfg.stage_wait_time == 300.0
        assert cfg.thresholds.max_error_rate == 5.0
        assert cfg.thresholds.max_response_time_ms == 2000.0
        assert cfg.thresholds.min_availability == 99.0
        assert cfg.mark_stable_on_completion is False
        assert cfg.marker_name == "last_stable"
        cfg.validate()

    def test_default_stages_not_shared(self):
        cfg = DeploymentConfig()
        cfg.stages.append(200)
        assert list(DEFAULT_STAGES) == [10, 25, 50, 100]
        assert DeploymentConfig().stages == [10, 25, 50, 100]

    @pytest.mark.parametrize(
        "stages",
        [[], [0, 100], [10, 10, 100], [50, 25, 100], [10, 50], [10, 150], [10.5, 100]],
    )
    def test_invalid_stages(self, stages):
        with pytest.raises(ConfigurationError):
            DeploymentConfig(stages=stages).validate()

    def test_single_full_stage_is_valid(self):
        DeploymentConfig(stages=[100]).validate()

    def test_invalid_thresholds(self):
        with pytest.raises(ConfigurationError):
            DeploymentConfig(thresholds=HealthThresholds(max_error_rate=150.0)).validate()
        with pytest.raises(ConfigurationError):
            DeploymentConfig(thresholds=HealthThresholds(min_availability=-1.0)).validate()
        with pytest.raises(ConfigurationError):
            DeploymentConfig(thresholds=HealthThresholds(max_response_time_ms=0)).validate()

    def test_invalid_timing(self):
        with pytest.raises(ConfigurationError):
            DeploymentConfig(stage_wait_time=-1).validate()
        with pytest.raises(ConfigurationError):
            DeploymentConfig(health_timeout_seconds=0).validate()

    def test_invalid_endpoint(self):
        with pytest.raises(ConfigurationError):
            DeploymentConfig(health_endpoint="localhost:8080/health").validate()
        with pytest.raises(ConfigurationError):
            DeploymentConfig(health_endpoint="ftp://example.com/health").validate()

    def test_from_settings_with_overrides(self):
        settings = Settings(
            stage_percentages=[20, 100],
            max_error_rate=2.5,
            deployment_script="",
        )
        cfg = DeploymentConfig.from_settings(
            settings, stage_wait_time=0, health_endpoint=None, dry_run=True
        )
        assert cfg.stages == [20, 100]
        assert cfg.thresholds.max_error_rate == 2.5
        assert cfg.stage_wait_time == 0
        assert cfg.health_endpoint == settings.health_endpoint
        assert cfg.dry_run is True
        assert cfg.deployment_script is None

    def test_from_settings_rejects_unknown_option(self):
        with pytest.raises(ConfigurationError):
            DeploymentConfig.from_settings(Settings(), canary_percent=5)


class TestSettings:
    def test_env_prefix_and_comma_lists(self, monkeypatch):
        monkeypatch.setenv("DEPLOY_STAGE_PERCENTAGES", "5,50,100")
        monkeypatch.setenv("DEPLOY_RELEASE_BRANCHES", "main, release")
        monkeypatch.setenv("DEPLOY_MAX_ERROR_RATE", "1.5")
        settings = Settings(_env_file=None)
        assert settings.stage_percentages == [5, 50, 100]
        assert settings.release_branches == ["main", "release"]
        assert settings.max_error_rate == 1.5

    def test_json_style_stage_list(self, monkeypatch):
        monkeypatch.setenv("DEPLOY_STAGE_PERCENTAGES", "[10, 100]")
        assert Settings(_env_file=None).stage_percentages == [10, 100]


# ── Model Tests ──────────────────────────────────────────────────────


class TestModels:
    def test_generate_deployment_id(self):
        dep_id = generate_deployment_id()
        assert dep_id.startswith("deploy-")
        assert dep_id.split("-", 1)[1].isdigit()

    def test_run_defaults(self):
        run = DeploymentRun()
        assert run.deployment_id.startswith("deploy-")
        assert run.commit_sha == "unknown"
        assert run.status == RunStatus.STARTED
        assert run.completed_at is None

    def test_run_terminal_transition(self):
        run = DeploymentRun(commit_sha="abc")
        run.transition(RunStatus.STAGE_RUNNING)
        assert run.completed_at is None
        run.transition(RunStatus.ROLLED_BACK, "error_rate_exceeded (failed at stage 2)")
        assert run.completed_at is not None
        assert run.failure_reason.startswith("error_rate_exceeded")

    def test_terminal_run_refuses_changes(self):
        run = DeploymentRun()
        run.transition(RunStatus.COMPLETED)
        with pytest.raises(ValueError):
            run.transition(RunStatus.ROLLED_BACK)
        assert run.status == RunStatus.COMPLETED

    def test_stage_resolved_once(self):
        stage = StageRecord(deployment_id="d", stage_index=1, traffic_percentage=10)
        verdict = HealthVerdict(healthy=True, error_rate=0.5, availability_pct=99.9)
        stage.resolve(True, verdict)
        assert stage.status == StageStatus.COMPLETED
        assert stage.error_rate == 0.5
        assert stage.completed_at is not None
        with pytest.raises(ValueError):
            stage.resolve(False, violations=[Violation.OPERATOR_ABORT])
        assert stage.status == StageStatus.COMPLETED

    def test_stage_failed_with_violations(self):
        stage = StageRecord(deployment_id="d", stage_index=2, traffic_percentage=25)
        stage.resolve(False, violations=[Violation.TRAFFIC_UPDATE_FAILED])
        assert stage.status == StageStatus.FAILED
        assert stage.violations == ["traffic_update_failed"]

    def test_verdict_add_violation(self):
        verdict = HealthVerdict(healthy=True)
        verdict.add_violation(Violation.ERROR_RATE_EXCEEDED, "too many errors")
        assert verdict.healthy is False
        assert verdict.violations == ["error_rate_exceeded"]
        assert verdict.details == ["too many errors"]

    def test_rollback_event_frozen(self):
        event = RollbackEvent(
            deployment_id="d",
            from_commit="new",
            to_commit="old",
            reason="r",
            outcome=RollbackOutcome.ROLLED_BACK,
        )
        assert event.succeeded
        with pytest.raises(dataclasses.FrozenInstanceError):
            event.reason = "changed"


class TestErrors:
    def test_invalid_transition_message(self):
        exc = InvalidTransition(ControllerState.COMPLETED, ControllerState.PROMOTING)
        assert "completed -> promoting" in str(exc)

    def test_port_failures(self):
        assert isinstance(StaleMarkerError("m", 1, 2), StoreError)
        assert str(TrafficUpdateError("boom")).startswith("traffic_controller:")

    def test_previous_version_unavailable(self):
        exc = PreviousVersionUnavailable("abc")
        assert str(exc).startswith("no_previous_version")
        assert exc.event is None


# ── Traffic Tests ────────────────────────────────────────────────────


class TestTrafficSplit:
    def test_default_split(self):
        split = TrafficSplit()
        assert split.canary_percent == 0
        assert split.stable_percent == 100


class TestInMemoryTrafficController:
    def setup_method(self):
        self.traffic = InMemoryTrafficController()

    def test_set_percentage(self):
        assert self.traffic.set_percentage("d1", 25) is True
        split = self.traffic.get_split("d1")
        assert split.canary_percent == 25
        assert split.stable_percent == 75

    def test_history(self):
        for pct in (10, 25, 50, 100):
            self.traffic.set_percentage("d1", pct)
        assert self.traffic.get_split("d1").history == [10, 25, 50, 100]

    def test_fail_on(self):
        traffic = InMemoryTrafficController(fail_on=[50])
        assert traffic.set_percentage("d1", 50) is False
        assert traffic.get_split("d1") is None

    def test_reset(self):
        self.traffic.set_percentage("d1", 10)
        self.traffic.reset()
        assert self.traffic.get_split("d1") is None


class TestScriptTrafficController:
    def test_missing_script(self, tmp_path):
        with pytest.raises(ConfigurationError):
            ScriptTrafficController(str(tmp_path / "missing.sh"))

    def test_invocation(self, tmp_path, monkeypatch):
        script = tmp_path / "deploy.sh"
        script.write_text("#!/bin/bash\n")
        calls = []

        def fake_run(argv, **kwargs):
            calls.append(argv)
            return SimpleNamespace(returncode=0, stdout="", stderr="")

        monkeypatch.setattr("src.deployment.traffic.subprocess.run", fake_run)
        traffic = ScriptTrafficController(str(script))
        assert traffic.set_percentage("deploy-1", 25) is True
        assert calls == [["bash", str(script), "update-traffic", "25", "deploy-1"]]

    def test_non_zero_exit(self, tmp_path, monkeypatch):
        script = tmp_path / "deploy.sh"
        script.write_text("#!/bin/bash\n")
        monkeypatch.setattr(
            "src.deployment.traffic.subprocess.run",
            lambda argv, **kw: SimpleNamespace(returncode=1, stdout="", stderr="lb down"),
        )
        assert ScriptTrafficController(str(script)).set_percentage("d", 10) is False

    def test_os_error_raises(self, tmp_path, monkeypatch):
        script = tmp_path / "deploy.sh"
        script.write_text("#!/bin/bash\n")

        def boom(argv, **kwargs):
            raise OSError("bash not found")

        monkeypatch.setattr("src.deployment.traffic.subprocess.run", boom)
        with pytest.raises(TrafficUpdateError):
            ScriptTrafficController(str(script)).set_percentage("d", 10)
