"""Logging Configuration.

Settings for structured logging, log levels, and output formats.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class LogLevel(str, Enum):
    """Log level options."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output format."""
    JSON = "json"
    CONSOLE = "console"


@dataclass
class LoggingConfig:
    """Structured logging configuration."""

    level: LogLevel = LogLevel.INFO
    format: LogFormat = LogFormat.CONSOLE
    service_name: str = "progressive-deploy"
    color: Optional[bool] = None  # None: only when stderr is a terminal

    @classmethod
    def from_settings(cls, settings) -> "LoggingConfig":
        """Build from ``Settings``; unknown values fall back to defaults."""
        level = str(settings.log_level).upper()
        fmt = str(settings.log_format).lower()
        return cls(
            level=LogLevel(level) if level in LogLevel.__members__ else LogLevel.INFO,
            format=LogFormat(fmt) if fmt in [f.value for f in LogFormat] else LogFormat.CONSOLE,
        )


DEFAULT_LOGGING_CONFIG = LoggingConfig()
