"""Query key value type."""

from collections.abc import Sequence
from typing import Any, Union

# A query key is an ordered sequence of primitive or plain-container
# segments, e.g. ("users", "42") or ("todos", {"page": 2}). A bare string
# is accepted as a one-segment key.
QueryKey = Union[str, Sequence[Any]]


def as_key_tuple(key: QueryKey) -> tuple[Any, ...]:
    """Normalize a query key to a tuple of segments.

    Args:
        key: A string or a sequence of segments.

    Returns:
        The key segments as a tuple.
    """
    if isinstance(key, str):
        return (key,)
    return tuple(key)
