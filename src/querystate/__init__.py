"""querystate - client-side server-state cache for asyncio.

Tracks asynchronous fetches by structured query keys, deduplicates
concurrent requests, serves cached data while it is fresh, retries
failures with exponential backoff, and lets callers invalidate parts of
the cache after mutations.

Example:
    import asyncio
    from querystate import QueryClient, QueryConfig

    async def fetch_user():
        return await api.get("/users/42")

    async def main():
        async with QueryClient(QueryConfig(stale_time=30)) as client:
            unsubscribe = client.subscribe(
                ("users", "42"),
                lambda entry: print(entry.status, entry.data),
            )

            # Concurrent calls share one request
            user, same_user = await asyncio.gather(
                client.resolve(("users", "42"), fetch_user),
                client.resolve(("users", "42"), fetch_user),
            )

            # After a mutation, mark every "users" query stale; observed
            # queries refetch in the background.
            client.invalidate(("users",))
            unsubscribe()

Decorators:
    from querystate.decorators import invalidates, query

    @query(client, key=["users", "{user_id}"])
    async def get_user(user_id: int) -> dict:
        return await api.get(f"/users/{user_id}")

    @invalidates(client, keys=[["users", "{user_id}"]])
    async def rename_user(user_id: int, name: str) -> None:
        await api.patch(f"/users/{user_id}", {"name": name})
"""

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
from querystate.core.services import (
    GarbageCollector,
    InvalidationEngine,
    QueryClient,
    QueryExecutor,
    SubscriptionHub,
)
from querystate.decorators import invalidates, query
from querystate.infrastructure import (
    DefaultKeyCodec,
    ExponentialBackoffRetryPolicy,
    InMemoryEntryStore,
)

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Core entities
    "QueryConfig",
    "QueryEntry",
    "QueryKey",
    "QueryOptions",
    "QueryStatus",
    # Errors
    "QueryStateError",
    "InvalidKeyError",
    "FetchError",
    "RetriesExhaustedError",
    "ClientDisposedError",
    # Core interfaces
    "EntryListener",
    "IEntryStore",
    "IKeyCodec",
    "IRetryPolicy",
    # Core services
    "QueryClient",
    "QueryExecutor",
    "InvalidationEngine",
    "SubscriptionHub",
    "GarbageCollector",
    # Infrastructure implementations
    "DefaultKeyCodec",
    "InMemoryEntryStore",
    "ExponentialBackoffRetryPolicy",
    # Decorators
    "query",
    "invalidates",
]
