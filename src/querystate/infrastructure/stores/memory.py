"""In-memory query entry store."""

import logging
import time
from collections.abc import Callable
from dataclasses import fields, replace
from typing import Any

from querystate.core.entities.query_entry import QueryEntry, QueryStatus
from querystate.core.entities.query_key import QueryKey, as_key_tuple
from querystate.core.interfaces.entry_store import EntryListener
from querystate.core.interfaces.key_codec import IKeyCodec
from querystate.infrastructure.key_codecs.default import DefaultKeyCodec

logger = logging.getLogger(__name__)

_PATCHABLE_FIELDS = frozenset(f.name for f in fields(QueryEntry)) - {
    "key",
    "key_hash",
}


class InMemoryEntryStore:
    """Dict-backed store of immutable query entry snapshots.

    Each write replaces the entry with a new frozen snapshot and reports it
    synchronously to the registered listeners, in write order.
    """

    def __init__(
        self,
        key_codec: IKeyCodec | None = None,
        clock: Callable[[], float] | None = None,
    ) -> None:
        """Initialize the store.

        Args:
            key_codec: Codec for canonical key strings.
            clock: Time source for ``updated_at``. Defaults to
                ``time.monotonic``.
        """
        self._key_codec = key_codec or DefaultKeyCodec()
        self._clock = clock or time.monotonic
        self._entries: dict[str, QueryEntry] = {}
        self._listeners: list[EntryListener] = []

    def get(self, key: QueryKey) -> QueryEntry | None:
        """Look up the entry for a key.

        Args:
            key: The query key.

        Returns:
            The current entry snapshot, or None if absent.
        """
        return self._entries.get(self._key_codec.encode(key))

    def set(self, key: QueryKey, **patch: Any) -> QueryEntry:
        """Merge a patch into the entry, creating it with defaults if needed.

        Args:
            key: The query key.
            **patch: QueryEntry fields to change.

        Returns:
            The new entry snapshot.

        Raises:
            TypeError: If the patch names an unknown or read-only field.
        """
        unknown = set(patch) - _PATCHABLE_FIELDS
        if unknown:
            raise TypeError(f"Cannot patch entry fields: {sorted(unknown)}")

        key_hash = self._key_codec.encode(key)
        current = self._entries.get(key_hash)
        if current is None:
            current = QueryEntry(key=as_key_tuple(key), key_hash=key_hash)

        if patch.get("status") is QueryStatus.SUCCESS:
            # updated_at never moves backwards
            patch["updated_at"] = max(current.updated_at, self._clock())
        else:
            patch.pop("updated_at", None)

        entry = replace(current, **patch)
        self._entries[key_hash] = entry
        self._notify(entry)
        return entry

    def mark_stale(self, prefix: QueryKey) -> list[QueryEntry]:
        """Flag every entry matching the prefix as invalidated.

        Data and ``updated_at`` are left untouched.

        Args:
            prefix: Key prefix to match.

        Returns:
            The updated entries.
        """
        return [
            self.set(entry.key, is_invalidated=True) for entry in self.find(prefix)
        ]

    def evict(self, key: QueryKey) -> bool:
        """Remove an entry.

        Args:
            key: The query key.

        Returns:
            True if an entry was removed.
        """
        removed = self._entries.pop(self._key_codec.encode(key), None)
        if removed is not None:
            logger.debug("Evicted query %s", removed.key_hash)
        return removed is not None

    def find(self, prefix: QueryKey) -> list[QueryEntry]:
        """Return every entry matching the prefix.

        Args:
            prefix: Key prefix to match. An empty prefix matches all.

        Returns:
            Matching entries in insertion order.
        """
        return [
            entry
            for entry in list(self._entries.values())
            if self._key_codec.matches_prefix(entry.key, prefix)
        ]

    def clear(self) -> None:
        """Remove all entries."""
        self._entries.clear()

    def add_listener(self, listener: EntryListener) -> None:
        """Register a callback invoked after every write.

        Args:
            listener: Receives the new entry snapshot.
        """
        self._listeners.append(listener)

    def _notify(self, entry: QueryEntry) -> None:
        for listener in list(self._listeners):
            listener(entry)

    def __len__(self) -> int:
        """Return the number of entries."""
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        """Check if an entry exists for a key."""
        return self._key_codec.encode(key) in self._entries  # type: ignore[arg-type]
