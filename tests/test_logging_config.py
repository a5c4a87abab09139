"""Tests for structured logging and deployment context."""

import io
import json
import logging
import sys
from types import SimpleNamespace

import pytest

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import (
    DeploymentContext,
    get_context_dict,
    get_deployment_id,
)
from src.logging_config.setup import (
    ConsoleFormatter,
    StructuredFormatter,
    configure_logging,
    get_logger,
)


def _record(msg="test", level=logging.INFO, name="test", lineno=1, exc_info=None):
    return logging.LogRecord(
        name=name, level=level, pathname="test.py",
        lineno=lineno, msg=msg, args=(), exc_info=exc_info,
    )


class TestLoggingConfig:
    """Tests for LoggingConfig defaults and enums."""

    def test_default_config_values(self):
        config = LoggingConfig()
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.CONSOLE
        assert config.color is None
        assert config.service_name == "progressive-deploy"

    def test_log_level_enum_values(self):
        assert LogLevel.DEBUG.value == "DEBUG"
        assert LogLevel.CRITICAL.value == "CRITICAL"

    def test_log_format_enum_values(self):
        assert LogFormat.JSON.value == "json"
        assert LogFormat.CONSOLE.value == "console"

    def test_from_settings(self):
        config = LoggingConfig.from_settings(SimpleNamespace(log_level="debug", log_format="JSON"))
        assert config.level == LogLevel.DEBUG
        assert config.format == LogFormat.JSON

    def test_from_settings_unknown_values(self):
        config = LoggingConfig.from_settings(SimpleNamespace(log_level="loud", log_format="xml"))
        assert config.level == LogLevel.INFO
        assert config.format == LogFormat.CONSOLE


class TestDeploymentContext:
    """Tests for deployment-scoped context variables."""

    def test_context_sets_deployment_id(self):
        with DeploymentContext(deployment_id="deploy-1"):
            assert get_deployment_id() == "deploy-1"

    def test_context_cleanup_on_exit(self):
        with DeploymentContext(deployment_id="deploy-1") as ctx:
            ctx.set_stage(2)
        assert get_deployment_id() == ""
        assert get_context_dict() == {}

    def test_get_context_dict(self):
        with DeploymentContext(deployment_id="deploy-1") as ctx:
            assert get_context_dict() == {"deployment_id": "deploy-1"}
            ctx.set_stage(3)
            assert get_context_dict() == {"deployment_id": "deploy-1", "stage": 3}

    def test_context_dict_empty_outside(self):
        assert get_context_dict() == {}

    def test_bind_extra_context(self):
        with DeploymentContext(deployment_id="deploy-1") as ctx:
            ctx.bind(commit="abc123")
            assert get_context_dict()["commit"] == "abc123"
            assert ctx.extra == {"commit": "abc123"}

    def test_nested_contexts_restore_outer(self):
        with DeploymentContext(deployment_id="outer"):
            with DeploymentContext(deployment_id="inner"):
                assert get_deployment_id() == "inner"
            assert get_deployment_id() == "outer"

    def test_elapsed_ms(self):
        ctx = DeploymentContext()
        assert ctx.elapsed_ms >= 0


class TestStructuredFormatter:
    """Tests for JSON structured log formatting."""

    def test_formats_as_json(self):
        parsed = json.loads(StructuredFormatter().format(_record("hello world")))
        assert parsed["message"] == "hello world"
        assert parsed["level"] == "INFO"
        assert parsed["logger"] == "test"
        assert parsed["service"] == "progressive-deploy"
        assert "timestamp" in parsed

    def test_timestamp_from_record(self):
        record = _record()
        record.created = 0.0
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["timestamp"] == "1970-01-01T00:00:00+00:00"

    def test_record_extras_override_context(self):
        record = _record()
        record.stage = 3
        with DeploymentContext(deployment_id="deploy-9") as ctx:
            ctx.set_stage(2)
            parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["deployment_id"] == "deploy-9"
        assert parsed["stage"] == 3

    def test_omits_unset_extras(self):
        parsed = json.loads(StructuredFormatter().format(_record()))
        assert "state" not in parsed
        assert "violations" not in parsed

    def test_includes_deployment_context(self):
        formatter = StructuredFormatter()
        with DeploymentContext(deployment_id="deploy-9") as ctx:
            ctx.set_stage(1)
            parsed = json.loads(formatter.format(_record()))
        assert parsed["deployment_id"] == "deploy-9"
        assert parsed["stage"] == 1

    def test_formats_exception(self):
        formatter = StructuredFormatter()
        try:
            raise ValueError("test error")
        except ValueError:
            record = _record("failed", level=logging.ERROR, exc_info=sys.exc_info())
            parsed = json.loads(formatter.format(record))
        assert parsed["exception"]["type"] == "ValueError"
        assert "test error" in parsed["exception"]["message"]

    def test_includes_stage_fields(self):
        record = _record()
        record.state = "promoting"
        record.traffic_percentage = 25
        record.duration_ms = 42.5
        parsed = json.loads(StructuredFormatter().format(record))
        assert parsed["state"] == "promoting"
        assert parsed["traffic_percentage"] == 25
        assert parsed["duration_ms"] == 42.5


class TestConsoleFormatter:
    """Tests for operator console lines."""

    def test_formats_readable_output(self):
        output = ConsoleFormatter(color=False).format(_record("hello"))
        assert output.endswith("INFO     hello")

    def test_includes_level_name(self):
        output = ConsoleFormatter(color=False).format(_record(level=logging.WARNING))
        assert "WARNING" in output

    def test_deployment_prefix(self):
        record = _record("routing traffic")
        record.traffic_percentage = 25
        with DeploymentContext(deployment_id="deploy-1") as ctx:
            ctx.set_stage(2)
            output = ConsoleFormatter(color=False).format(record)
        assert "[deploy-1 stage 2 @25%] routing traffic" in output

    def test_remaining_fields_as_pairs(self):
        record = _record("gate failed")
        record.state = "gated"
        with DeploymentContext(deployment_id="deploy-1") as ctx:
            ctx.bind(commit="abc123")
            output = ConsoleFormatter(color=False).format(record)
        assert output.endswith("gate failed commit=abc123 state=gated")

    def test_error_is_red(self):
        output = ConsoleFormatter(color=True).format(_record(level=logging.ERROR))
        assert "\033[31m" in output

    def test_no_color_codes_when_disabled(self):
        output = ConsoleFormatter(color=False).format(_record(level=logging.ERROR))
        assert "\033[" not in output

    def test_info_is_uncolored(self):
        assert "\033[" not in ConsoleFormatter(color=True).format(_record())


class TestConfigureLogging:
    """Tests for the configure_logging setup function."""

    @pytest.fixture(autouse=True)
    def restore_root(self):
        root = logging.getLogger()
        handlers, level = list(root.handlers), root.level
        yield
        root.handlers[:] = handlers
        root.setLevel(level)

    def test_configures_root_logger(self):
        configure_logging(LoggingConfig(format=LogFormat.CONSOLE))
        assert len(logging.getLogger().handlers) == 1

    def test_json_format(self):
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        assert isinstance(logging.getLogger().handlers[0].formatter, StructuredFormatter)

    def test_console_format(self):
        configure_logging(LoggingConfig(format=LogFormat.CONSOLE))
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)

    def test_sets_log_level(self):
        configure_logging(LoggingConfig(level=LogLevel.DEBUG))
        assert logging.getLogger().level == logging.DEBUG

    def test_get_logger_returns_logger(self):
        logger = get_logger("test.module")
        assert isinstance(logger, logging.Logger)
        assert logger.name == "test.module"

    def test_quiets_noisy_loggers(self):
        configure_logging()
        assert logging.getLogger("httpx").level >= logging.WARNING

    def test_env_var_override_level(self, monkeypatch):
        monkeypatch.setenv("DEPLOY_LOG_LEVEL", "DEBUG")
        configure_logging(LoggingConfig(level=LogLevel.ERROR))
        assert logging.getLogger().level == logging.DEBUG

    def test_env_var_override_format(self, monkeypatch):
        monkeypatch.setenv("DEPLOY_LOG_FORMAT", "CONSOLE")
        configure_logging(LoggingConfig(format=LogFormat.JSON))
        assert isinstance(logging.getLogger().handlers[0].formatter, ConsoleFormatter)

    def test_color_off_for_non_terminal_stream(self):
        stream = io.StringIO()
        configure_logging(LoggingConfig(format=LogFormat.CONSOLE), stream=stream)
        logging.getLogger("test.color").error("rollback failed")
        assert "rollback failed" in stream.getvalue()
        assert "\033[" not in stream.getvalue()

    def test_json_lines_written_to_stream(self):
        stream = io.StringIO()
        configure_logging(LoggingConfig(format=LogFormat.JSON), stream=stream)
        with DeploymentContext(deployment_id="deploy-3"):
            logging.getLogger("test.json").warning("stage failed")
        parsed = json.loads(stream.getvalue().strip())
        assert parsed["message"] == "stage failed"
        assert parsed["deployment_id"] == "deploy-3"
