"""Invalidation engine - marks entries stale after mutations."""

import asyncio
import logging
from dataclasses import replace
from typing import Any

from querystate.core.entities.query_config import QueryOptions
from querystate.core.entities.query_entry import QueryEntry
from querystate.core.entities.query_key import QueryKey
from querystate.core.interfaces.entry_store import IEntryStore
from querystate.core.services.query_executor import QueryExecutor

logger = logging.getLogger(__name__)


class InvalidationEngine:
    """Flips freshness of entries matching a key prefix.

    Matching entries with live subscribers are refetched in the background
    right away; unobserved entries simply refetch on their next resolve.
    """

    def __init__(self, store: IEntryStore, executor: QueryExecutor) -> None:
        """Initialize the engine.

        Args:
            store: The entry store holding the entries.
            executor: Executor used to refetch active entries.
        """
        self._store = store
        self._executor = executor

    def invalidate(self, prefix: QueryKey, refetch: bool = True) -> int:
        """Mark every entry matching the prefix as stale.

        Never blocks: refetches run as background tasks and report through
        the normal subscription path. Refetching requires a running event
        loop.

        Args:
            prefix: Key or key prefix. An empty prefix matches all entries.
            refetch: Whether to refetch entries that have subscribers.

        Returns:
            Number of entries marked stale.

        Raises:
            RuntimeError: If an entry needs a refetch and no event loop is
                running. No entry is marked in that case.
        """
        if refetch and any(map(self._is_active, self._store.find(prefix))):
            asyncio.get_running_loop()

        entries = self._store.mark_stale(prefix)
        logger.debug("Invalidated %d entries for prefix %r", len(entries), prefix)

        if refetch:
            for entry in entries:
                if self._is_active(entry):
                    self._executor.resolve_in_background(
                        entry.key, entry.fetch_fn, _refetch_options(entry)  # type: ignore[arg-type]
                    )

        return len(entries)

    async def refetch(self, prefix: QueryKey) -> list[Any]:
        """Refetch every active entry matching the prefix and wait.

        Args:
            prefix: Key or key prefix.

        Returns:
            One result per refetched entry: the data, or the exception the
            refetch ended with.
        """
        entries = [
            entry for entry in self._store.mark_stale(prefix) if self._is_active(entry)
        ]
        return await asyncio.gather(
            *(
                self._executor.resolve(
                    entry.key, entry.fetch_fn, _refetch_options(entry)  # type: ignore[arg-type]
                )
                for entry in entries
            ),
            return_exceptions=True,
        )

    @staticmethod
    def _is_active(entry: QueryEntry) -> bool:
        return entry.subscriber_count > 0 and entry.fetch_fn is not None


def _refetch_options(entry: QueryEntry) -> QueryOptions:
    """Options for an invalidation refetch: supersede any fetch in flight."""
    return replace(entry.options or QueryOptions(), cancel_refetch=True)
