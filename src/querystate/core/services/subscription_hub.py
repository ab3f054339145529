"""Subscription hub - per-key observers of entry writes."""

import logging
from collections.abc import Callable

from querystate.core.entities.query_entry import QueryEntry
from querystate.core.entities.query_key import QueryKey
from querystate.core.interfaces.entry_store import EntryListener, IEntryStore
from querystate.core.interfaces.key_codec import IKeyCodec

logger = logging.getLogger(__name__)

Unsubscribe = Callable[[], None]


class SubscriptionHub:
    """Registers listeners per query key and fans out entry writes.

    The hub attaches itself to the entry store, so listeners run
    synchronously inside the write that triggered them and always observe
    entries in write order.
    """

    def __init__(self, store: IEntryStore, key_codec: IKeyCodec) -> None:
        """Initialize the hub and attach it to the store.

        Args:
            store: The entry store whose writes are observed.
            key_codec: Codec used to group listeners by canonical key.
        """
        self._store = store
        self._key_codec = key_codec
        self._listeners: dict[str, list[EntryListener]] = {}
        self._on_unobserved: list[Callable[[QueryKey], None]] = []
        self._on_observed: list[Callable[[QueryKey], None]] = []
        store.add_listener(self._dispatch)

    def subscribe(self, key: QueryKey, listener: EntryListener) -> Unsubscribe:
        """Register a listener for writes to a key.

        Increments the entry's ``subscriber_count``, creating the entry if
        needed. The returned handle is idempotent.

        Args:
            key: The query key to observe.
            listener: Called with each new entry snapshot.

        Returns:
            A callable that removes the listener.
        """
        key_hash = self._key_codec.encode(key)
        listeners = self._listeners.setdefault(key_hash, [])
        listeners.append(listener)
        self._store.set(key, subscriber_count=len(listeners))

        for callback in self._on_observed:
            callback(key)

        active = True

        def unsubscribe() -> None:
            nonlocal active
            if not active:
                return
            active = False
            self._remove(key, key_hash, listener)

        return unsubscribe

    def listener_count(self, key: QueryKey) -> int:
        """Return the number of listeners registered for a key."""
        return len(self._listeners.get(self._key_codec.encode(key), ()))

    def on_observed(self, callback: Callable[[QueryKey], None]) -> None:
        """Register a callback for a key gaining a subscriber."""
        self._on_observed.append(callback)

    def on_unobserved(self, callback: Callable[[QueryKey], None]) -> None:
        """Register a callback for a key losing its last subscriber."""
        self._on_unobserved.append(callback)

    def clear(self) -> None:
        """Drop every listener without touching the store."""
        self._listeners.clear()

    def _remove(self, key: QueryKey, key_hash: str, listener: EntryListener) -> None:
        listeners = self._listeners.get(key_hash)
        if listeners is None:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[key_hash]

        if self._store.get(key) is None:
            # Evicted while observed
            return
        count = len(listeners)
        self._store.set(key, subscriber_count=count)
        if count == 0:
            for callback in self._on_unobserved:
                callback(key)

    def _dispatch(self, entry: QueryEntry) -> None:
        listeners = self._listeners.get(entry.key_hash, [])
        if entry.subscriber_count != len(listeners):
            # Entry was recreated after an eviction; the nested write
            # delivers the corrected snapshot.
            self._store.set(entry.key, subscriber_count=len(listeners))
            return
        for listener in list(listeners):
            try:
                listener(entry)
            except Exception:
                logger.exception("Listener failed for query %s", entry.key_hash)
