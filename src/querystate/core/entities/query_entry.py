"""Query entry entity."""

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from querystate.core.entities.query_config import QueryOptions


class QueryStatus(Enum):
    """Fetch state of a query entry.

    IDLE: Created but never fetched.
    LOADING: First fetch in flight, no data yet.
    SUCCESS: Data available.
    ERROR: Last fetch failed.
    """

    IDLE = "idle"
    LOADING = "loading"
    SUCCESS = "success"
    ERROR = "error"


@dataclass(frozen=True)
class QueryEntry:
    """Immutable snapshot of one cached query.

    The entry store replaces the snapshot on every write, so an instance
    handed to a caller or listener never changes underneath it.
    """

    key: tuple[Any, ...]
    key_hash: str
    status: QueryStatus = QueryStatus.IDLE
    data: Any = None
    error: BaseException | None = None
    updated_at: float = 0.0
    error_updated_at: float = 0.0
    is_fetching: bool = False
    is_refetching: bool = False
    is_invalidated: bool = False
    subscriber_count: int = 0
    fetch_failure_count: int = 0
    fetch_seq: int = 0
    fetch_fn: Callable[..., Any] | None = None
    options: QueryOptions | None = None

    @property
    def has_data(self) -> bool:
        """Check if a successful fetch has produced data."""
        return self.data is not None

    @property
    def is_success(self) -> bool:
        return self.status is QueryStatus.SUCCESS

    @property
    def is_error(self) -> bool:
        return self.status is QueryStatus.ERROR

    def is_stale(self, stale_time: float, now: float) -> bool:
        """Check if the entry needs a refetch.

        Args:
            stale_time: Freshness window in seconds.
            now: Current clock time.

        Returns:
            True unless the entry holds successful, non-invalidated data
            younger than ``stale_time``.
        """
        if self.status is not QueryStatus.SUCCESS or self.is_invalidated:
            return True
        return now - self.updated_at >= stale_time
