"""Exponential backoff retry policy built on tenacity."""

from collections.abc import Awaitable, Callable
from typing import Any

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

# Client errors that are worth retrying: request timeout, too many requests.
_RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


class ExponentialBackoffRetryPolicy:
    """Retry policy with capped exponential backoff and random jitter.

    Any error is retried unless it is marked non-retryable: either through
    a false ``retryable`` attribute (see ``FetchError``) or by carrying an
    HTTP-like 4xx ``status_code``/``status`` other than 408 and 429.

    Jitter spreads retries of many entries failing at the same moment.
    """

    def __init__(self, jitter: float = 1.0) -> None:
        """Initialize the retry policy.

        Args:
            jitter: Upper bound of the random delay added to each backoff,
                in seconds.
        """
        self._jitter = jitter

    def wait(self, base_delay: float, max_delay: float) -> wait_base:
        """Build the wait strategy.

        The n-th retry waits ``min(base_delay * 2**(n-1), max_delay)`` plus
        a random jitter in ``[0, jitter]``.

        Args:
            base_delay: Delay before the first retry, in seconds.
            max_delay: Cap for the exponential part in seconds.

        Returns:
            A tenacity wait strategy.
        """
        strategy: wait_base = wait_exponential(multiplier=base_delay, max=max_delay)
        if self._jitter > 0:
            strategy = strategy + wait_random(0, self._jitter)
        return strategy

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
            True if attempts remain and the error is retryable.
        """
        state = _call_state(attempt, error)
        if stop_after_attempt(max_attempts)(state):
            return False
        return bool(retry_if_exception(self.is_retryable)(state))

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
            max_delay: Cap for the exponential part in seconds.

        Returns:
            Delay in seconds.
        """
        return float(self.wait(base_delay, max_delay)(_call_state(attempt + 1)))

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
            max_delay: Cap for the exponential part in seconds.
            sleep: Coroutine used for backoff waits.
            before_sleep: Called with the retry state before each wait.

        Returns:
            An AsyncRetrying that re-raises non-retryable errors unchanged
            and raises ``tenacity.RetryError`` once attempts run out.
        """
        return AsyncRetrying(
            stop=stop_after_attempt(max_attempts),
            retry=retry_if_exception(self.is_retryable),
            wait=self.wait(base_delay, max_delay),
            sleep=sleep,
            before_sleep=before_sleep,
        )

    def is_retryable(self, error: BaseException) -> bool:
        """Check whether an error could succeed on a later attempt."""
        return is_retryable(error)


def is_retryable(error: BaseException) -> bool:
    """Check whether an error is worth retrying.

    Args:
        error: The error to inspect.

    Returns:
        False for cancellation, for errors tagged non-retryable and for
        4xx client errors.
    """
    if not isinstance(error, Exception):
        return False

    retryable = getattr(error, "retryable", None)
    if retryable is not None:
        return bool(retryable)

    status = getattr(error, "status_code", None)
    if status is None:
        status = getattr(error, "status", None)
    if isinstance(status, int) and 400 <= status < 500:
        return status in _RETRYABLE_CLIENT_STATUSES

    return True


def _call_state(attempt: int, error: BaseException | None = None) -> RetryCallState:
    """Retry state after ``attempt`` attempts, the last one failing with ``error``."""
    state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})  # type: ignore[arg-type]
    state.attempt_number = attempt
    if error is not None:
        state.set_exception((type(error), error, error.__traceback__))
    return state
