"""Domain entities for querystate."""

from querystate.core.entities.query_config import QueryConfig, QueryOptions
from querystate.core.entities.query_entry import QueryEntry, QueryStatus
from querystate.core.entities.query_key import QueryKey, as_key_tuple

__all__ = [
    "QueryConfig",
    "QueryOptions",
    "QueryEntry",
    "QueryStatus",
    "QueryKey",
    "as_key_tuple",
]
