"""Query client configuration and per-call options."""

from dataclasses import dataclass, replace
from typing import Any

from querystate.utils.canonical import validate_delimiter


@dataclass
class QueryConfig:
    """Client-wide configuration.

    All durations are in seconds.

    Staleness:
        An entry is fresh for ``stale_time`` seconds after its last
        successful fetch. The default of 0 treats every entry as stale, so
        each resolve refetches (while still deduplicating concurrent calls).

    Garbage collection:
        Entries without subscribers are evicted ``cache_time`` seconds after
        they were last observed. At most ``max_size`` unobserved entries are
        retained; beyond that the oldest are evicted early. ``gc_interval``
        enables a periodic sweep when the client is started.

    Errors:
        With ``keep_data_on_error`` (stale-while-revalidate) a failed refetch
        keeps the previously fetched data visible next to the error. Set it
        to False to clear data on any error.
    """

    stale_time: float = 0.0
    cache_time: float = 300.0

    # Retry settings
    max_retries: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    retry_jitter: float = 1.0

    keep_data_on_error: bool = True

    # Garbage collection
    max_size: int = 1000
    gc_interval: float | None = None

    key_delimiter: str = "|"

    def __post_init__(self) -> None:
        """Validate configuration values."""
        if self.stale_time < 0:
            raise ValueError("stale_time must be >= 0")
        if self.cache_time < 0:
            raise ValueError("cache_time must be >= 0")
        if self.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        if self.retry_base_delay < 0 or self.retry_max_delay < 0:
            raise ValueError("retry delays must be >= 0")
        if self.retry_jitter < 0:
            raise ValueError("retry_jitter must be >= 0")
        if self.max_size < 1:
            raise ValueError("max_size must be >= 1")
        validate_delimiter(self.key_delimiter)


@dataclass(frozen=True)
class QueryOptions:
    """Per-call overrides for a resolve.

    ``None`` means "use the client configuration".

    Attributes:
        stale_time: Freshness window for this call.
        max_retries: Total attempts allowed for this call.
        retry_base_delay: Base backoff delay.
        retry_max_delay: Backoff delay cap.
        cancel_refetch: Start a new fetch even if one is in flight. The
            in-flight fetch is superseded and its result discarded.
        signal: Opaque cancellation handle forwarded to the fetch function
            as its only argument.
    """

    stale_time: float | None = None
    max_retries: int | None = None
    retry_base_delay: float | None = None
    retry_max_delay: float | None = None
    cancel_refetch: bool = False
    signal: Any = None

    def resolve(self, config: QueryConfig) -> "QueryOptions":
        """Return a copy with every unset value taken from ``config``.

        Args:
            config: The client configuration providing defaults.

        Returns:
            A fully populated QueryOptions.
        """
        return replace(
            self,
            stale_time=(
                config.stale_time if self.stale_time is None else self.stale_time
            ),
            max_retries=(
                config.max_retries if self.max_retries is None else self.max_retries
            ),
            retry_base_delay=(
                config.retry_base_delay
                if self.retry_base_delay is None
                else self.retry_base_delay
            ),
            retry_max_delay=(
                config.retry_max_delay
                if self.retry_max_delay is None
                else self.retry_max_delay
            ),
        )
