"""Configuration for port-call retries."""

from dataclasses import dataclass
from enum import Enum
from typing import Tuple, Type


class RetryStrategy(str, Enum):
    """Retry backoff strategies."""
    EXPONENTIAL = "exponential"
    LINEAR = "linear"
    CONSTANT = "constant"


# ── Default Constants ────────────────────────────────────────────────

DEFAULT_MAX_RETRIES = 3
DEFAULT_BASE_DELAY = 1.0  # seconds
DEFAULT_MAX_DELAY = 30.0  # seconds
DEFAULT_JITTER_MAX = 0.5  # seconds


@dataclass
class RetryConfig:
    """Configuration for retry logic."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = DEFAULT_BASE_DELAY
    max_delay: float = DEFAULT_MAX_DELAY
    jitter_max: float = DEFAULT_JITTER_MAX
    strategy: RetryStrategy = RetryStrategy.EXPONENTIAL
    retryable_exceptions: Tuple[Type[Exception], ...] = (
        ConnectionError,
        TimeoutError,
        OSError,
    )

    def with_exceptions(self, *exceptions: Type[Exception]) -> "RetryConfig":
        """Copy of this config retrying on ``exceptions`` as well."""
        return RetryConfig(
            max_retries=self.max_retries,
            base_delay=self.base_delay,
            max_delay=self.max_delay,
            jitter_max=self.jitter_max,
            strategy=self.strategy,
            retryable_exceptions=tuple(self.retryable_exceptions) + tuple(exceptions),
        )
