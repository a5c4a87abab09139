"""Retry with exponential backoff.

Wraps port calls so transient store or notifier failures are retried
with configurable backoff and jitter before being reported.
"""

import functools
import logging
import random
import time
from typing import Any, Callable, Optional, Tuple, Type

from .config import RetryConfig, RetryStrategy

logger = logging.getLogger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(
            f"Max retries ({attempts}) exceeded. "
            f"Last error: {last_exception}"
        )


def _compute_delay(attempt: int, config: RetryConfig) -> float:
    """Compute the delay for the given attempt number.

    Args:
        attempt: Zero-based attempt index (0 = first retry).
        config: Retry configuration.

    Returns:
        Delay in seconds, capped at max_delay.
    """
    if config.strategy == RetryStrategy.EXPONENTIAL:
        delay = config.base_delay * (2 ** attempt)
    elif config.strategy == RetryStrategy.LINEAR:
        delay = config.base_delay * (attempt + 1)
    else:  # CONSTANT
        delay = config.base_delay

    if config.jitter_max > 0:
        delay += random.uniform(0, config.jitter_max)

    return min(delay, config.max_delay)


def call_with_retry(
    func: Callable,
    *args: Any,
    config: Optional[RetryConfig] = None,
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> Any:
    """Call ``func`` and retry on the configured exceptions.

    Non-retryable exceptions propagate immediately. When every attempt
    fails, MaxRetriesExceeded carries the last error.
    """
    cfg = config or RetryConfig()
    name = getattr(func, "__qualname__", repr(func))
    last_exc: Optional[Exception] = None
    for attempt in range(cfg.max_retries + 1):
        try:
            return func(*args, **kwargs)
        except cfg.retryable_exceptions as exc:
            last_exc = exc
            if attempt < cfg.max_retries:
                delay = _compute_delay(attempt, cfg)
                logger.warning(
                    "Retry %d/%d for %s after %.2fs: %s",
                    attempt + 1,
                    cfg.max_retries,
                    name,
                    delay,
                    exc,
                )
                sleep(delay)
            else:
                logger.error(
                    "All %d retries exhausted for %s: %s",
                    cfg.max_retries,
                    name,
                    exc,
                )
    raise MaxRetriesExceeded(cfg.max_retries, last_exc)  # type: ignore[arg-type]


def retry(
    max_retries: Optional[int] = None,
    base_delay: Optional[float] = None,
    max_delay: Optional[float] = None,
    jitter_max: Optional[float] = None,
    retryable_exceptions: Optional[Tuple[Type[Exception], ...]] = None,
    strategy: Optional[RetryStrategy] = None,
    config: Optional[RetryConfig] = None,
) -> Callable:
    """Decorator form of ``call_with_retry``.

    Explicit parameters override the matching field of ``config``.

    Usage:
        @retry(max_retries=3)
        def save_run(run):
            ...
    """
    base = config or RetryConfig()
    cfg = RetryConfig(
        max_retries=max_retries if max_retries is not None else base.max_retries,
        base_delay=base_delay if base_delay is not None else base.base_delay,
        max_delay=max_delay if max_delay is not None else base.max_delay,
        jitter_max=jitter_max if jitter_max is not None else base.jitter_max,
        retryable_exceptions=(
            retryable_exceptions
            if retryable_exceptions is not None
            else base.retryable_exceptions
        ),
        strategy=strategy if strategy is not None else base.strategy,
    )

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            return call_with_retry(func, *args, config=cfg, **kwargs)

        wrapper._retry_config = cfg  # type: ignore[attr-defined]
        return wrapper

    return decorator
