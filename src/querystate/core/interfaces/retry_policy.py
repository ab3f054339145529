"""Retry policy interface."""

from collections.abc import Awaitable, Callable
from typing import Any, Protocol

from tenacity import AsyncRetrying, RetryCallState


class IRetryPolicy(Protocol):
    """Contract for deciding whether and when to retry a failed fetch."""

    def should_retry(
        self,
        error: BaseException,
        attempt: int,
        max_attempts: int,
    ) -> bool:
        """Decide whether another attempt is allowed.

        Args:
            error: The error raised by the last attempt.
            attempt: Number of attempts already made (1 after the first).
            max_attempts: Total attempts allowed.

        Returns:
            True to retry.
        """
        ...

    def next_delay(
        self,
        attempt: int,
        base_delay: float,
        max_delay: float,
    ) -> float:
        """Compute the wait before the next attempt.

        Args:
            attempt: Zero-based index of the retry about to happen.
            base_delay: Base delay in seconds.
            max_delay: Cap for the backoff in seconds.

        Returns:
            Delay in seconds.
        """
        ...

    def retrying(
        self,
        max_attempts: int,
        base_delay: float,
        max_delay: float,
        sleep: Callable[[float], Awaitable[Any]],
        before_sleep: Callable[[RetryCallState], None] | None = None,
    ) -> AsyncRetrying:
        """Build the retry controller for one fetch chain.

        Args:
            max_attempts: Total attempts allowed, the first included.
            base_delay: Delay before the first retry, in seconds.
            max_delay: Cap for the backoff in seconds.
            sleep: Coroutine used for backoff waits.
            before_sleep: Called with the retry state before each wait.

        Returns:
            A tenacity AsyncRetrying. Errors the policy refuses to retry
            must propagate unchanged; running out of attempts raises
            ``tenacity.RetryError``.
        """
        ...

    def is_retryable(self, error: BaseException) -> bool:
        """Check whether an error could succeed on a later attempt.

        Args:
            error: The error to inspect.

        Returns:
            False for errors that must not be retried.
        """
        ...
