"""PRD-102: Resilience Patterns.

Retry with backoff for calls into external ports (deployment store,
incident notifier) so transient failures never reach the state machine.
"""

from .config import (
    RetryStrategy,
    RetryConfig,
)
from .retry import (
    MaxRetriesExceeded,
    call_with_retry,
    retry,
)

__all__ = [
    # Config / Enums
    "RetryStrategy",
    "RetryConfig",
    # Retry
    "MaxRetriesExceeded",
    "call_with_retry",
    "retry",
]
