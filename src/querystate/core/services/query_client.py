"""Query client - the cache instance handed to consumers."""

import asyncio
import contextlib
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from querystate.core.entities.query_config import QueryConfig, QueryOptions
from querystate.core.entities.query_entry import QueryEntry, QueryStatus
from querystate.core.entities.query_key import QueryKey
from querystate.core.exceptions import ClientDisposedError
from querystate.core.interfaces.entry_store import EntryListener
from querystate.core.interfaces.key_codec import IKeyCodec
from querystate.core.interfaces.retry_policy import IRetryPolicy
from querystate.core.services.garbage_collector import GarbageCollector
from querystate.core.services.invalidation import InvalidationEngine
from querystate.core.services.query_executor import FetchFn, QueryExecutor
from querystate.core.services.subscription_hub import SubscriptionHub, Unsubscribe
from querystate.infrastructure.key_codecs.default import DefaultKeyCodec
from querystate.infrastructure.retry.exponential import ExponentialBackoffRetryPolicy
from querystate.infrastructure.stores.memory import InMemoryEntryStore

logger = logging.getLogger(__name__)


class QueryClient:
    """Client-side server-state cache.

    Composes the entry store, executor, invalidation engine, subscription
    hub and garbage collector. Create one instance and pass it to every
    consumer; there is no process-wide cache.
    """

    def __init__(
        self,
        config: QueryConfig | None = None,
        key_codec: IKeyCodec | None = None,
        retry_policy: IRetryPolicy | None = None,
        clock: Callable[[], float] | None = None,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize the query client.

        Args:
            config: Optional configuration. Uses defaults if not provided.
            key_codec: Codec for canonical keys.
            retry_policy: Retry policy. Defaults to exponential backoff with
                ``config.retry_jitter``.
            clock: Time source in seconds. Defaults to ``time.monotonic``.
            sleep: Coroutine used for backoff waits.
        """
        self._config = config or QueryConfig()
        self._clock = clock or time.monotonic
        self._key_codec = key_codec or DefaultKeyCodec(self._config.key_delimiter)
        self._retry_policy = retry_policy or ExponentialBackoffRetryPolicy(
            jitter=self._config.retry_jitter
        )

        self._store = InMemoryEntryStore(key_codec=self._key_codec, clock=self._clock)
        self._hub = SubscriptionHub(self._store, self._key_codec)
        self._gc = GarbageCollector(
            self._store,
            self._key_codec,
            cache_time=self._config.cache_time,
            max_size=self._config.max_size,
            clock=self._clock,
        )
        self._executor = QueryExecutor(
            self._store,
            self._key_codec,
            self._retry_policy,
            self._config,
            clock=self._clock,
            sleep=sleep or asyncio.sleep,
            on_settled=self._on_settled,
        )
        self._invalidation = InvalidationEngine(self._store, self._executor)

        self._hub.on_observed(self._gc.unschedule)
        self._hub.on_unobserved(self._gc.schedule)

        self._gc_task: asyncio.Task[None] | None = None
        self._disposed = False

    @classmethod
    def create(
        cls,
        config: QueryConfig | None = None,
        **kwargs: Any,
    ) -> "QueryClient":
        """Create a client and start it if an event loop is running.

        Args:
            config: Optional configuration.
            **kwargs: Passed to the constructor.

        Returns:
            A new QueryClient.
        """
        client = cls(config, **kwargs)
        try:
            asyncio.get_running_loop()
        except RuntimeError:
            return client
        client.start()
        return client

    @property
    def config(self) -> QueryConfig:
        """Get the client configuration."""
        return self._config

    @property
    def stats(self) -> dict[str, int]:
        """Get cache statistics.

        Returns:
            Dictionary with hits, misses, deduplicated joins, fetch
            attempts, discarded writes, entries and evictions.
        """
        return {
            **self._executor.stats,
            "entries": len(self._store),
            "evicted": self._gc.evicted,
        }

    @property
    def is_disposed(self) -> bool:
        return self._disposed

    def start(self) -> None:
        """Start the periodic garbage collection sweep, if configured.

        Must be called with a running event loop.
        """
        self._check_alive()
        if self._config.gc_interval is None or self._gc_task is not None:
            return
        loop = asyncio.get_running_loop()
        self._gc_task = loop.create_task(self._gc_loop(self._config.gc_interval))

    async def dispose(self) -> None:
        """Stop background work and drop all cached state.

        Idempotent. The client cannot be used afterwards.
        """
        if self._disposed:
            return
        self._disposed = True

        if self._gc_task is not None:
            self._gc_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._gc_task
            self._gc_task = None

        await self._executor.cancel_pending()
        self._hub.clear()
        self._gc.clear()
        self._store.clear()
        logger.debug("Query client disposed")

    async def __aenter__(self) -> "QueryClient":
        self.start()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.dispose()

    async def resolve(
        self,
        key: QueryKey,
        fetch_fn: FetchFn,
        options: QueryOptions | None = None,
    ) -> Any:
        """Return data for a key, fetching it when missing or stale.

        Concurrent calls for the same key share one fetch. Failures are
        retried with backoff; calling ``resolve`` again after an error
        retries immediately.

        Args:
            key: The query key, e.g. ``("users", "42")``.
            fetch_fn: Async callable producing the data.
            options: Per-call overrides.

        Returns:
            The data.

        Raises:
            InvalidKeyError: If the key cannot be canonicalized.
            RetriesExhaustedError: If every allowed attempt failed.
            ClientDisposedError: If the client was disposed.
        """
        self._check_alive()
        return await self._executor.resolve(key, fetch_fn, options)

    async def prefetch(
        self,
        key: QueryKey,
        fetch_fn: FetchFn,
        options: QueryOptions | None = None,
    ) -> None:
        """Warm the cache for a key without raising fetch failures.

        A failure is still recorded on the entry.

        Args:
            key: The query key.
            fetch_fn: Async callable producing the data.
            options: Per-call overrides.

        Raises:
            InvalidKeyError: If the key cannot be canonicalized.
        """
        self._check_alive()
        self._key_codec.encode(key)
        try:
            await self._executor.resolve(key, fetch_fn, options)
        except Exception as e:
            logger.debug("Prefetch of %r failed: %r", key, e)

    def invalidate(self, prefix: QueryKey = (), refetch: bool = True) -> int:
        """Mark entries matching a key prefix as stale.

        Entries with subscribers are refetched in the background.

        Args:
            prefix: Key or key prefix; the default matches every entry.
            refetch: Whether to refetch observed entries.

        Returns:
            Number of entries marked stale.
        """
        self._check_alive()
        return self._invalidation.invalidate(prefix, refetch=refetch)

    async def refetch(self, prefix: QueryKey = ()) -> list[Any]:
        """Invalidate matching entries and wait for observed ones to refetch.

        Args:
            prefix: Key or key prefix.

        Returns:
            Data or exception per refetched entry.
        """
        self._check_alive()
        return await self._invalidation.refetch(prefix)

    def subscribe(
        self,
        key: QueryKey,
        listener: EntryListener,
        fetch_fn: FetchFn | None = None,
        options: QueryOptions | None = None,
    ) -> Unsubscribe:
        """Observe writes to a key.

        When ``fetch_fn`` is given and the entry is stale, a background
        fetch starts so the new observer receives fresh data.

        Args:
            key: The query key.
            listener: Called with each new entry snapshot.
            fetch_fn: Optional fetch function used to refresh stale data.
            options: Per-call overrides for that fetch.

        Returns:
            A callable removing the subscription.
        """
        self._check_alive()
        unsubscribe = self._hub.subscribe(key, listener)

        if fetch_fn is not None:
            entry = self._store.get(key)
            stale_time = (options or QueryOptions()).resolve(self._config).stale_time
            if entry is None or entry.is_stale(stale_time, self._clock()):  # type: ignore[arg-type]
                self._executor.resolve_in_background(key, fetch_fn, options)

        return unsubscribe

    def get_snapshot(self, key: QueryKey) -> QueryEntry | None:
        """Return the current entry for a key without triggering I/O."""
        return self._store.get(key)

    def get_query_data(self, key: QueryKey) -> Any | None:
        """Return the cached data for a key, or None."""
        entry = self._store.get(key)
        return entry.data if entry is not None else None

    def set_query_data(self, key: QueryKey, updater: Any) -> QueryEntry:
        """Write data for a key directly, e.g. after a mutation.

        The entry becomes a fresh success. A fetch in flight is not
        cancelled; call ``cancel`` first to keep it from overwriting the
        value.

        Args:
            key: The query key.
            updater: The new data, or a callable receiving the current data
                (or None) and returning the new data.

        Returns:
            The updated entry.

        Raises:
            ValueError: If the new data is None.
        """
        self._check_alive()
        data = updater(self.get_query_data(key)) if callable(updater) else updater
        if data is None:
            raise ValueError("Query data must not be None")

        entry = self._store.set(
            key,
            status=QueryStatus.SUCCESS,
            data=data,
            error=None,
            is_invalidated=False,
        )
        if entry.subscriber_count == 0 and not entry.is_fetching:
            self._gc.schedule(key)
        return entry

    def cancel(self, prefix: QueryKey = ()) -> int:
        """Soft-cancel fetches in flight for entries matching a prefix.

        Args:
            prefix: Key or key prefix.

        Returns:
            Number of fetches cancelled.
        """
        self._check_alive()
        return sum(
            1 for entry in self._store.find(prefix) if self._executor.cancel(entry.key)
        )

    def remove(self, prefix: QueryKey = ()) -> int:
        """Evict entries matching a prefix.

        Args:
            prefix: Key or key prefix.

        Returns:
            Number of entries removed.
        """
        self._check_alive()
        entries = self._store.find(prefix)
        for entry in entries:
            self._store.evict(entry.key)
        return len(entries)

    def clear(self) -> None:
        """Evict every entry and reset statistics."""
        self._check_alive()
        self._store.clear()
        self._gc.clear()
        self._executor.reset_stats()

    def collect_garbage(self) -> int:
        """Evict unobserved entries whose grace period has elapsed.

        Returns:
            Number of entries evicted.
        """
        return self._gc.collect()

    async def wait_for_pending(self) -> None:
        """Wait for every running fetch and background refetch to finish."""
        await self._executor.wait_for_pending()

    def _on_settled(self, entry: QueryEntry) -> None:
        if entry.subscriber_count == 0:
            self._gc.schedule(entry.key)

    async def _gc_loop(self, interval: float) -> None:
        while True:
            await asyncio.sleep(interval)
            evicted = self._gc.collect()
            if evicted:
                logger.debug("Garbage collection evicted %d entries", evicted)

    def _check_alive(self) -> None:
        if self._disposed:
            raise ClientDisposedError("QueryClient has been disposed")
