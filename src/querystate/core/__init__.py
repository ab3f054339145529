"""Core domain layer for querystate."""

from querystate.core.entities import (
    QueryConfig,
    QueryEntry,
    QueryKey,
    QueryOptions,
    QueryStatus,
)
from querystate.core.exceptions import (
    ClientDisposedError,
    FetchError,
    InvalidKeyError,
    QueryStateError,
    RetriesExhaustedError,
)
from querystate.core.interfaces import (
    EntryListener,
    IEntryStore,
    IKeyCodec,
    IRetryPolicy,
)
from querystate.core.services import QueryClient

__all__ = [
    # Entities
    "QueryConfig",
    "QueryEntry",
    "QueryKey",
    "QueryOptions",
    "QueryStatus",
    # Exceptions
    "ClientDisposedError",
    "FetchError",
    "InvalidKeyError",
    "QueryStateError",
    "RetriesExhaustedError",
    # Interfaces
    "EntryListener",
    "IEntryStore",
    "IKeyCodec",
    "IRetryPolicy",
    # Services
    "QueryClient",
]
