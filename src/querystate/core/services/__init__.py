"""Domain services for querystate."""

from querystate.core.services.garbage_collector import GarbageCollector
from querystate.core.services.invalidation import InvalidationEngine
from querystate.core.services.query_client import QueryClient
from querystate.core.services.query_executor import FetchFn, QueryExecutor
from querystate.core.services.subscription_hub import SubscriptionHub, Unsubscribe

__all__ = [
    "FetchFn",
    "GarbageCollector",
    "InvalidationEngine",
    "QueryClient",
    "QueryExecutor",
    "SubscriptionHub",
    "Unsubscribe",
]
