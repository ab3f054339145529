"""Exceptions raised by querystate."""

from typing import Any


class QueryStateError(Exception):
    """Base class for all querystate errors."""

    pass


class InvalidKeyError(QueryStateError, ValueError):
    """Raised when a query key segment cannot be canonicalized.

    Functions, cyclic containers and other non-serializable values are
    rejected. Never retried.
    """

    def __init__(self, message: str, segment: Any = None) -> None:
        super().__init__(message)
        self.segment = segment


class FetchError(QueryStateError):
    """A failure reported by a fetch function.

    Fetch functions may raise any exception; raising ``FetchError`` lets
    them mark the failure as non-retryable.

    Attributes:
        retryable: False when retrying cannot succeed (e.g. a 4xx response).
    """

    def __init__(self, message: str, retryable: bool = True) -> None:
        super().__init__(message)
        self.retryable = retryable


class RetriesExhaustedError(FetchError):
    """Raised when every allowed attempt of a fetch has failed.

    The last underlying error is available as ``last_error`` and is also
    chained as ``__cause__``.
    """

    def __init__(self, last_error: BaseException, attempts: int) -> None:
        super().__init__(
            f"Fetch failed after {attempts} attempt(s): {last_error!r}",
            retryable=False,
        )
        self.last_error = last_error
        self.attempts = attempts


class ClientDisposedError(QueryStateError, RuntimeError):
    """Raised when a disposed QueryClient is used."""

    pass
