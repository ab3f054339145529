"""Entry store interface."""

from collections.abc import Callable
from typing import Any, Protocol

from querystate.core.entities.query_entry import QueryEntry
from querystate.core.entities.query_key import QueryKey

# Invoked synchronously with the new snapshot after every store write.
EntryListener = Callable[[QueryEntry], None]


class IEntryStore(Protocol):
    """Contract for the in-process query entry store.

    The store exclusively owns query entries. It performs no I/O and
    schedules no timers; every mutation goes through ``set``,
    ``mark_stale`` or ``evict``.
    """

    def get(self, key: QueryKey) -> QueryEntry | None:
        """Look up the entry for a key.

        Args:
            key: The query key.

        Returns:
            The current entry snapshot, or None if absent.
        """
        ...

    def set(self, key: QueryKey, **patch: Any) -> QueryEntry:
        """Merge a patch into the entry, creating it with defaults if needed.

        ``updated_at`` advances only when the patch sets a SUCCESS status.

        Args:
            key: The query key.
            **patch: QueryEntry fields to change.

        Returns:
            The new entry snapshot.
        """
        ...

    def mark_stale(self, prefix: QueryKey) -> list[QueryEntry]:
        """Flag every entry matching the prefix as invalidated.

        Args:
            prefix: Key prefix to match.

        Returns:
            The updated entries.
        """
        ...

    def evict(self, key: QueryKey) -> bool:
        """Remove an entry.

        Args:
            key: The query key.

        Returns:
            True if an entry was removed.
        """
        ...

    def find(self, prefix: QueryKey) -> list[QueryEntry]:
        """Return every entry matching the prefix."""
        ...

    def clear(self) -> None:
        """Remove all entries."""
        ...

    def add_listener(self, listener: EntryListener) -> None:
        """Register a callback for every write."""
        ...
