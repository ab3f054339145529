"""Retry policy implementations."""

from querystate.infrastructure.retry.exponential import (
    ExponentialBackoffRetryPolicy,
    is_retryable,
)

__all__ = ["ExponentialBackoffRetryPolicy", "is_retryable"]
