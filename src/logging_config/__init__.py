"""Structured Logging & Deployment Context.

Provides structured JSON logging and deployment context propagation
for the progressive deployment controller.
"""

from src.logging_config.config import LogFormat, LoggingConfig, LogLevel
from src.logging_config.context import DeploymentContext, get_context_dict
from src.logging_config.setup import configure_logging, get_logger

__all__ = [
    "DeploymentContext",
    "LogFormat",
    "LogLevel",
    "LoggingConfig",
    "configure_logging",
    "get_context_dict",
    "get_logger",
]
