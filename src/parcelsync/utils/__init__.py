"""
Shared utilities.
"""

from .retry import RetryConfig, RetryResult, calculate_delay, retry_with_backoff

__all__ = ["RetryConfig", "RetryResult", "calculate_delay", "retry_with_backoff"]
