"""
Retry logic with exponential backoff for remote operations.

Remote commits can fail transiently (timeouts, contention, quota). Retrying
a commit is safe because documents are keyed by natural id, so a repeated
commit overwrites instead of duplicating.
"""

import logging
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Tuple, Type

from ..core.exceptions import DocumentStoreError
from ..core.logging import log_with_context


logger = logging.getLogger(__name__)


# Backends wrap their transient client errors in DocumentStoreError.
RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (DocumentStoreError,)


@dataclass
class RetryConfig:
    """
    Configuration for retry behavior.

    Attributes:
        max_attempts: Maximum number of attempts (including first try)
        initial_delay_ms: Initial delay in milliseconds
        max_delay_ms: Maximum delay in milliseconds
        backoff_multiplier: Multiplier for exponential backoff
        jitter: Whether to add random jitter to delay
    """
    max_attempts: int = 3
    initial_delay_ms: float = 500.0
    max_delay_ms: float = 8000.0
    backoff_multiplier: float = 2.0
    jitter: bool = True

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "RetryConfig":
        """Create from a configuration mapping, ignoring unknown keys."""
        data = data or {}
        defaults = cls()
        return cls(
            max_attempts=int(data.get("max_attempts", defaults.max_attempts)),
            initial_delay_ms=float(data.get("initial_delay_ms", defaults.initial_delay_ms)),
            max_delay_ms=float(data.get("max_delay_ms", defaults.max_delay_ms)),
            backoff_multiplier=float(data.get("backoff_multiplier", defaults.backoff_multiplier)),
            jitter=bool(data.get("jitter", defaults.jitter)),
        )



@dataclass
class RetryResult:
    """
    Outcome of a retried commit.

    Attributes:
        success: Whether a commit attempt went through
        result: Value returned by the successful attempt
        attempts: Number of attempts made
        error: The error that ended the retries, if any
        error_history: Message of every failed attempt, oldest first
        chunk_index: Chunk the commit belonged to, when known
    """
    success: bool
    result: Any = None
    attempts: int = 0
    error: Optional[Exception] = None
    error_history: List[str] = field(default_factory=list)
    chunk_index: Optional[int] = None


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Seconds to wait after failed attempt number ``attempt`` (0-based).

    The delay grows by ``backoff_multiplier`` per attempt up to
    ``max_delay_ms``; jitter spreads it over 75%-125% of that value.
    """
    base_ms = config.initial_delay_ms * config.backoff_multiplier ** attempt
    delay_ms = min(base_ms, config.max_delay_ms)
    if config.jitter:
        delay_ms *= random.uniform(0.75, 1.25)
    return delay_ms / 1000.0


def retry_with_backoff(
    operation: Callable[[], Any],
    config: RetryConfig,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    operation_name: str = "commit",
    chunk_index: Optional[int] = None,
) -> RetryResult:
    """
    Run a remote operation, retrying transient store failures with backoff.

    Only ``retry_on`` errors are retried. Anything else ends the attempt
    loop at once and is reported in the result, never raised.

    Args:
        operation: Zero-argument callable, usually one chunk commit
        config: Retry policy
        retry_on: Error types treated as transient
        operation_name: Label used in log lines
        chunk_index: Chunk being committed, attached to logs and the result

    Returns:
        RetryResult describing the last attempt
    """
    outcome = RetryResult(success=False, chunk_index=chunk_index)

    while outcome.attempts < config.max_attempts:
        outcome.attempts += 1
        try:
            outcome.result = operation()
        except retry_on as e:
            outcome.error = e
            outcome.error_history.append(str(e))
            log_with_context(
                logger, logging.WARNING,
                f"{operation_name}: attempt {outcome.attempts}/{config.max_attempts} failed: {e}",
                chunk_index=chunk_index,
            )
            if outcome.attempts < config.max_attempts:
                time.sleep(calculate_delay(outcome.attempts - 1, config))
            continue
        except Exception as e:
            outcome.error = e
            outcome.error_history.append(str(e))
            log_with_context(
                logger, logging.ERROR,
                f"{operation_name}: not retrying {type(e).__name__}: {e}",
                chunk_index=chunk_index,
            )
            return outcome

        outcome.success = True
        outcome.error = None
        if outcome.attempts > 1:
            log_with_context(
                logger, logging.INFO,
                f"{operation_name} went through on attempt {outcome.attempts}",
                chunk_index=chunk_index,
            )
        return outcome

    log_with_context(
        logger, logging.ERROR,
        f"{operation_name}: giving up after {outcome.attempts} attempt(s)",
        chunk_index=chunk_index,
    )
    return outcome
