"""Logging Setup.

Routes controller logs to stderr, either as one JSON object per line
for CI log collectors or as short operator lines prefixed with the
deployment and stage being rolled out. Stdout is left to the run
summary.
"""

import json
import logging
import os
import sys
from dataclasses import replace
from datetime import datetime, timezone
from typing import Any, Dict, Optional, TextIO

from src.logging_config.config import DEFAULT_LOGGING_CONFIG, LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import get_context_dict

# Stage fields handlers attach through ``extra=``
RECORD_EXTRA_KEYS = (
    "deployment_id",
    "state",
    "stage",
    "traffic_percentage",
    "duration_ms",
    "violations",
)

ENV_LEVEL = "DEPLOY_LOG_LEVEL"
ENV_FORMAT = "DEPLOY_LOG_FORMAT"

QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine", "alembic")


def deployment_fields(record: logging.LogRecord) -> Dict[str, Any]:
    """Bound deployment context overlaid with the record's stage extras."""
    fields = get_context_dict()
    for key in RECORD_EXTRA_KEYS:
        value = getattr(record, key, None)
        if value is not None:
            fields[key] = value
    return fields


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, deployment fields at the top level."""

    def __init__(self, service_name: str = "progressive-deploy"):
        super().__init__()
        self.service_name = service_name

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "service": self.service_name,
        }
        entry.update(deployment_fields(record))
        if record.exc_info and record.exc_info[0] is not None:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info),
            }
        return json.dumps(entry, default=str)


class ConsoleFormatter(logging.Formatter):
    """Operator lines: ``12:00:01 WARNING [deploy-1 stage 2 @25%] message``."""

    LEVEL_COLORS = {
        "WARNING": "\033[33m",
        "ERROR": "\033[31m",
        "CRITICAL": "\033[1;31m",
    }
    RESET = "\033[0m"

    def __init__(self, color: bool = True):
        super().__init__()
        self.color = color

    def _prefix(self, fields: Dict[str, Any]) -> str:
        parts = []
        if "deployment_id" in fields:
            parts.append(str(fields.pop("deployment_id")))
        if "stage" in fields:
            parts.append(f"stage {fields.pop('stage')}")
        if "traffic_percentage" in fields:
            parts.append(f"@{fields.pop('traffic_percentage')}%")
        return f" [{' '.join(parts)}]" if parts else ""

    def format(self, record: logging.LogRecord) -> str:
        fields = deployment_fields(record)
        level = f"{record.levelname:8s}"
        color = self.LEVEL_COLORS.get(record.levelname) if self.color else None
        if color:
            level = f"{color}{level}{self.RESET}"

        stamp = datetime.fromtimestamp(record.created, timezone.utc).strftime("%H:%M:%S")
        line = f"{stamp} {level}{self._prefix(fields)} {record.getMessage()}"
        if fields:
            line += " " + " ".join(f"{k}={v}" for k, v in fields.items())
        if record.exc_info and record.exc_info[0] is not None:
            line += "\n" + self.formatException(record.exc_info)
        return line


def _apply_env(config: LoggingConfig) -> LoggingConfig:
    level = os.environ.get(ENV_LEVEL, "").upper()
    if level in LogLevel.__members__:
        config = replace(config, level=LogLevel(level))
    fmt = os.environ.get(ENV_FORMAT, "").lower()
    if fmt in [f.value for f in LogFormat]:
        config = replace(config, format=LogFormat(fmt))
    return config


def configure_logging(
    config: Optional[LoggingConfig] = None, stream: Optional[TextIO] = None
) -> None:
    """Install a single stderr handler on the root logger.

    ``DEPLOY_LOG_LEVEL`` and ``DEPLOY_LOG_FORMAT`` override ``config``.
    """
    config = _apply_env(config or DEFAULT_LOGGING_CONFIG)
    stream = stream or sys.stderr

    if config.format == LogFormat.JSON:
        formatter = StructuredFormatter(service_name=config.service_name)
    else:
        color = config.color
        if color is None:
            color = hasattr(stream, "isatty") and stream.isatty()
        formatter = ConsoleFormatter(color=color)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(getattr(logging, config.level.value))

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
