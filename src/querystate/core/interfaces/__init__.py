"""Core interfaces (Protocol classes) for querystate."""

from querystate.core.interfaces.entry_store import EntryListener, IEntryStore
from querystate.core.interfaces.key_codec import IKeyCodec
from querystate.core.interfaces.retry_policy import IRetryPolicy

__all__ = [
    "EntryListener",
    "IEntryStore",
    "IKeyCodec",
    "IRetryPolicy",
]
