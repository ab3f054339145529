"""Garbage collection of unobserved query entries."""

import logging
from collections.abc import Callable
from typing import Any

from cachetools import TTLCache  # type: ignore[import-untyped]

from querystate.core.entities.query_key import QueryKey
from querystate.core.interfaces.entry_store import IEntryStore
from querystate.core.interfaces.key_codec import IKeyCodec

logger = logging.getLogger(__name__)


class _ExpiryQueue(TTLCache):  # type: ignore[misc]
    """TTLCache reporting keys dropped by expiry or size eviction.

    cachetools expires lazily on every mutation, so the hooks catch both
    explicit sweeps and expiries that happen as a side effect.
    """

    def __init__(
        self,
        maxsize: int,
        ttl: float,
        timer: Callable[[], float],
        on_drop: Callable[[Any], None],
    ) -> None:
        super().__init__(maxsize=maxsize, ttl=ttl, timer=timer)
        self._on_drop = on_drop

    def expire(self, time: float | None = None) -> list[tuple[Any, Any]]:
        expired = list(super().expire(time) or ())
        for _, key in expired:
            self._on_drop(key)
        return expired

    def popitem(self) -> tuple[Any, Any]:
        key_hash, key = super().popitem()
        self._on_drop(key)
        return key_hash, key


class GarbageCollector:
    """Evicts entries that stayed without subscribers for ``cache_time``.

    A key is scheduled when it loses its last subscriber or when a fetch
    settles with nobody observing it. Beyond ``max_size`` scheduled keys,
    the oldest is dropped early. A dropped key is evicted only if the entry
    is still unobserved and not fetching; a fetch that is still running
    reschedules the key when it settles.
    """

    def __init__(
        self,
        store: IEntryStore,
        key_codec: IKeyCodec,
        cache_time: float,
        max_size: int,
        clock: Callable[[], float],
    ) -> None:
        """Initialize the collector.

        Args:
            store: The entry store to evict from.
            key_codec: Codec for canonical key strings.
            cache_time: Grace period in seconds.
            max_size: Maximum number of scheduled keys.
            clock: Time source shared with the client.
        """
        self._store = store
        self._key_codec = key_codec
        self._queue = _ExpiryQueue(
            maxsize=max_size,
            ttl=cache_time,
            timer=clock,
            on_drop=self._collect_key,
        )
        self._evicted = 0

    @property
    def evicted(self) -> int:
        """Number of entries evicted so far."""
        return self._evicted

    def schedule(self, key: QueryKey) -> None:
        """Start (or restart) the grace period for a key.

        Args:
            key: The query key.
        """
        self._queue[self._key_codec.encode(key)] = key

    def unschedule(self, key: QueryKey) -> None:
        """Cancel a pending collection for a key.

        Args:
            key: The query key.
        """
        # TTLCache.pop ignores expired keys; flush them first so the key
        # does not linger until the next sweep.
        self._queue.expire()
        self._queue.pop(self._key_codec.encode(key), None)

    def is_scheduled(self, key: QueryKey) -> bool:
        """Check if a key is waiting for collection."""
        return self._key_codec.encode(key) in self._queue

    def collect(self) -> int:
        """Expire every key whose grace period has elapsed.

        Returns:
            Number of entries evicted by this sweep.
        """
        before = self._evicted
        self._queue.expire()
        return self._evicted - before

    def clear(self) -> None:
        """Forget all scheduled keys."""
        self._queue.clear()

    def __len__(self) -> int:
        return len(self._queue)

    def _collect_key(self, key: QueryKey) -> None:
        entry = self._store.get(key)
        if entry is None:
            return
        if entry.subscriber_count > 0 or entry.is_fetching:
            logger.debug("Skipping collection of active query %s", entry.key_hash)
            return
        self._store.evict(key)
        self._evicted += 1
        logger.debug("Garbage collected query %s", entry.key_hash)
