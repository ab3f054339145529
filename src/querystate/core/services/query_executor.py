"""Query executor - fetch orchestration for a single logical query."""

import asyncio
import functools
import inspect
import itertools
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from tenacity import RetryCallState, RetryError

from querystate.core.entities.query_config import QueryConfig, QueryOptions
from querystate.core.entities.query_entry import QueryEntry, QueryStatus
from querystate.core.entities.query_key import QueryKey
from querystate.core.exceptions import FetchError, RetriesExhaustedError
from querystate.core.interfaces.entry_store import IEntryStore
from querystate.core.interfaces.key_codec import IKeyCodec
from querystate.core.interfaces.retry_policy import IRetryPolicy

logger = logging.getLogger(__name__)

FetchFn = Callable[..., Any]


@dataclass
class _InFlight:
    """A running fetch chain and the sequence number it writes under."""

    seq: int
    task: "asyncio.Task[Any]"


class QueryExecutor:
    """Runs fetches through the entry store.

    State machine per key::

        IDLE -> LOADING -> SUCCESS | ERROR
        ERROR -> LOADING (or ERROR + is_refetching when data is kept)
        SUCCESS -> SUCCESS + is_refetching (data stays visible)

    At most one fetch chain per key may write to the store. Every chain is
    tagged with a sequence number; the entry records the number of the chain
    allowed to write, and results from any other chain are discarded.
    """

    def __init__(
        self,
        store: IEntryStore,
        key_codec: IKeyCodec,
        retry_policy: IRetryPolicy,
        config: QueryConfig,
        clock: Callable[[], float],
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        on_settled: Callable[[QueryEntry], None] | None = None,
    ) -> None:
        """Initialize the executor.

        Args:
            store: The entry store results are written to.
            key_codec: Codec for canonical key strings.
            retry_policy: Decides retries and backoff delays.
            config: Client configuration providing option defaults.
            clock: Time source shared with the store.
            sleep: Coroutine used for backoff waits.
            on_settled: Called with the entry after a fetch chain finishes.
        """
        self._store = store
        self._key_codec = key_codec
        self._retry_policy = retry_policy
        self._config = config
        self._clock = clock
        self._sleep = sleep
        self._on_settled = on_settled
        self._sequence = itertools.count(1)
        self._in_flight: dict[str, _InFlight] = {}
        self._chains: set[asyncio.Task[Any]] = set()
        self._background: set[asyncio.Task[Any]] = set()

        # Statistics
        self._hits = 0
        self._misses = 0
        self._deduplicated = 0
        self._fetches = 0
        self._discarded = 0

    @property
    def stats(self) -> dict[str, int]:
        """Get executor statistics.

        Returns:
            Dictionary with hits, misses, deduplicated joins, fetch
            attempts and discarded writes.
        """
        return {
            "hits": self._hits,
            "misses": self._misses,
            "deduplicated": self._deduplicated,
            "fetches": self._fetches,
            "discarded": self._discarded,
        }

    def reset_stats(self) -> None:
        """Reset all counters to zero."""
        self._hits = 0
        self._misses = 0
        self._deduplicated = 0
        self._fetches = 0
        self._discarded = 0

    async def resolve(
        self,
        key: QueryKey,
        fetch_fn: FetchFn,
        options: QueryOptions | None = None,
    ) -> Any:
        """Return data for a key, fetching only when needed.

        1. Fresh successful data is returned without I/O.
        2. A fetch already in flight is joined instead of duplicated,
           unless ``options.cancel_refetch`` is set.
        3. Otherwise a new fetch chain starts, with retries.

        Args:
            key: The query key.
            fetch_fn: Zero-argument callable returning an awaitable (or a
                one-argument callable when ``options.signal`` is set).
            options: Per-call overrides.

        Returns:
            The fetched or cached data.

        Raises:
            InvalidKeyError: If the key cannot be canonicalized.
            RetriesExhaustedError: If every allowed attempt failed.
            Exception: A non-retryable error raised by ``fetch_fn``.
        """
        call_options = options or QueryOptions()
        resolved = call_options.resolve(self._config)
        key_hash = self._key_codec.encode(key)
        entry = self._store.get(key)

        if entry is not None and not entry.is_stale(
            resolved.stale_time, self._clock()  # type: ignore[arg-type]
        ):
            self._hits += 1
            logger.debug("Cache hit for query %s", key_hash)
            return entry.data

        in_flight = self._in_flight.get(key_hash)
        if (
            in_flight is not None
            and entry is not None
            and entry.is_fetching
            and entry.fetch_seq == in_flight.seq
            and not resolved.cancel_refetch
        ):
            self._deduplicated += 1
            logger.debug("Joining in-flight fetch %d for %s", in_flight.seq, key_hash)
            return await asyncio.shield(in_flight.task)

        self._misses += 1
        task = self._start(key, key_hash, entry, fetch_fn, call_options, resolved)
        return await asyncio.shield(task)

    def resolve_in_background(
        self,
        key: QueryKey,
        fetch_fn: FetchFn,
        options: QueryOptions | None = None,
    ) -> "asyncio.Task[Any]":
        """Schedule a resolve without waiting for it.

        Failures are logged; their outcome reaches observers through the
        entry store like any other write.

        Args:
            key: The query key.
            fetch_fn: The fetch function.
            options: Per-call overrides.

        Returns:
            The scheduled task.
        """
        loop = asyncio.get_running_loop()
        task = loop.create_task(self.resolve(key, fetch_fn, options))
        self._background.add(task)
        task.add_done_callback(functools.partial(self._background_done, key))
        return task

    def cancel(self, key: QueryKey) -> bool:
        """Soft-cancel the fetch in flight for a key.

        The running fetch is not interrupted; it is superseded so that its
        result is discarded. A LOADING entry without data returns to IDLE.

        Args:
            key: The query key.

        Returns:
            True if a fetch was in flight.
        """
        entry = self._store.get(key)
        if entry is None or not entry.is_fetching:
            return False

        patch: dict[str, Any] = {
            "fetch_seq": next(self._sequence),
            "is_fetching": False,
            "is_refetching": False,
        }
        if entry.status is QueryStatus.LOADING:
            patch["status"] = QueryStatus.IDLE
        self._store.set(key, **patch)
        self._in_flight.pop(entry.key_hash, None)
        logger.debug("Cancelled fetch %d for %s", entry.fetch_seq, entry.key_hash)
        return True

    def is_fetching(self, key: QueryKey) -> bool:
        """Check if a fetch chain is running for a key."""
        return self._key_codec.encode(key) in self._in_flight

    @property
    def pending_count(self) -> int:
        """Number of running fetch chains and background resolves."""
        return len(self._chains) + len(self._background)

    async def wait_for_pending(self) -> None:
        """Wait until no fetch chain or background resolve is running."""
        while self._chains or self._background:
            tasks = [*self._chains, *self._background]
            await asyncio.gather(*tasks, return_exceptions=True)

    async def cancel_pending(self) -> None:
        """Cancel every running fetch chain and background resolve."""
        tasks = [*self._chains, *self._background]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        self._in_flight.clear()
        self._chains.clear()
        self._background.clear()

    def _start(
        self,
        key: QueryKey,
        key_hash: str,
        entry: QueryEntry | None,
        fetch_fn: FetchFn,
        call_options: QueryOptions,
        resolved: QueryOptions,
    ) -> "asyncio.Task[Any]":
        seq = next(self._sequence)

        patch: dict[str, Any] = {
            "is_fetching": True,
            "fetch_seq": seq,
            "fetch_fn": fetch_fn,
            "options": call_options,
            "fetch_failure_count": 0,
        }
        if entry is not None and entry.has_data:
            patch["is_refetching"] = True
        else:
            patch["status"] = QueryStatus.LOADING
        self._store.set(key, **patch)

        task = asyncio.get_running_loop().create_task(
            self._run(key, key_hash, seq, fetch_fn, resolved)
        )
        self._in_flight[key_hash] = _InFlight(seq=seq, task=task)
        self._chains.add(task)
        task.add_done_callback(functools.partial(self._finish, key, key_hash, seq))
        logger.debug("Started fetch %d for %s", seq, key_hash)
        return task

    async def _run(
        self,
        key: QueryKey,
        key_hash: str,
        seq: int,
        fetch_fn: FetchFn,
        options: QueryOptions,
    ) -> Any:
        max_attempts: int = options.max_retries  # type: ignore[assignment]
        attempts = 0

        async def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            self._fetches += 1
            data = await self._call(fetch_fn, options)
            if data is None:
                raise FetchError("Query function returned None", retryable=False)
            return data

        def before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception() if retry_state.outcome else None
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            logger.warning(
                "Fetch attempt %d/%d for %s failed, retrying in %.3fs: %r",
                retry_state.attempt_number,
                max_attempts,
                key_hash,
                delay,
                error,
            )
            self._write(
                key, key_hash, seq, fetch_failure_count=retry_state.attempt_number
            )

        retrying = self._retry_policy.retrying(
            max_attempts,
            options.retry_base_delay,  # type: ignore[arg-type]
            options.retry_max_delay,  # type: ignore[arg-type]
            sleep=self._sleep,
            before_sleep=before_sleep,
        )

        try:
            data = await retrying(attempt)
        except asyncio.CancelledError:
            self._release(key, seq)
            raise
        except RetryError as e:
            last_error = e.last_attempt.exception()
            exhausted = RetriesExhaustedError(last_error, attempts=attempts)  # type: ignore[arg-type]
            raise self._fail(key, key_hash, seq, exhausted, attempts) from last_error
        except Exception as e:
            raise self._fail(key, key_hash, seq, e, attempts)

        self._write(
            key,
            key_hash,
            seq,
            status=QueryStatus.SUCCESS,
            data=data,
            error=None,
            is_fetching=False,
            is_refetching=False,
            is_invalidated=False,
            fetch_failure_count=0,
        )
        return data

    def _fail(
        self,
        key: QueryKey,
        key_hash: str,
        seq: int,
        error: Exception,
        attempts: int,
    ) -> Exception:
        """Record a final failure and return the error to raise."""
        logger.warning(
            "Fetch for %s failed after %d attempt(s): %r", key_hash, attempts, error
        )

        patch: dict[str, Any] = {
            "status": QueryStatus.ERROR,
            "error": error,
            "error_updated_at": self._clock(),
            "is_fetching": False,
            "is_refetching": False,
            "fetch_failure_count": attempts,
        }
        if not self._config.keep_data_on_error:
            patch["data"] = None
        self._write(key, key_hash, seq, **patch)
        return error

    async def _call(self, fetch_fn: FetchFn, options: QueryOptions) -> Any:
        if options.signal is not None:
            result = fetch_fn(options.signal)
        else:
            result = fetch_fn()
        if inspect.isawaitable(result):
            result = await result
        return result

    def _write(self, key: QueryKey, key_hash: str, seq: int, **patch: Any) -> None:
        entry = self._store.get(key)
        if entry is None or entry.fetch_seq != seq:
            self._discarded += 1
            logger.debug("Discarding write from superseded fetch %d for %s", seq, key_hash)
            return
        self._store.set(key, **patch)

    def _release(self, key: QueryKey, seq: int) -> None:
        """Clear fetching flags of a cancelled chain that still owns the entry."""
        entry = self._store.get(key)
        if entry is None or entry.fetch_seq != seq:
            return
        patch: dict[str, Any] = {"is_fetching": False, "is_refetching": False}
        if entry.status is QueryStatus.LOADING:
            patch["status"] = QueryStatus.IDLE
        self._store.set(key, **patch)

    def _finish(
        self,
        key: QueryKey,
        key_hash: str,
        seq: int,
        task: "asyncio.Task[Any]",
    ) -> None:
        self._chains.discard(task)
        in_flight = self._in_flight.get(key_hash)
        if in_flight is not None and in_flight.seq == seq:
            del self._in_flight[key_hash]

        if not task.cancelled():
            # Mark the exception retrieved; callers see it through the shield.
            task.exception()

        entry = self._store.get(key)
        if self._on_settled is not None and entry is not None and not entry.is_fetching:
            self._on_settled(entry)

    def _background_done(self, key: QueryKey, task: "asyncio.Task[Any]") -> None:
        self._background.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning("Background fetch for %r failed: %r", key, error)
