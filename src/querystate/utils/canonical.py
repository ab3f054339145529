"""Canonical stringification utilities for query keys."""

import json
from typing import Any

from querystate.core.exceptions import InvalidKeyError

# Characters of JSON number tokens, plus the string quote. A delimiter
# containing one could match inside a segment, e.g. "2" splitting 12.
_TOKEN_CHARS = frozenset("0123456789+-.eE\"")


def stable_stringify(value: Any) -> str:
    """Create a deterministic string for a key segment.

    Dict segments are serialized with sorted keys so that the same
    properties in a different order produce the same string.

    Args:
        value: A primitive or plain container (dict, list, tuple).

    Returns:
        A compact JSON string.

    Raises:
        InvalidKeyError: If the value is callable, cyclic, or not
            representable as plain JSON.
    """
    _reject_callables(value, set())

    try:
        return json.dumps(
            value,
            sort_keys=True,
            separators=(",", ":"),
            allow_nan=False,
            ensure_ascii=False,
        )
    except (TypeError, ValueError) as e:
        raise InvalidKeyError(
            f"Query key segment is not serializable: {e}", segment=value
        ) from e


def _reject_callables(value: Any, seen: set[int]) -> None:
    """Walk containers looking for functions and cycles.

    Args:
        value: The value to inspect.
        seen: ids of the containers on the current path.

    Raises:
        InvalidKeyError: On a callable or a cyclic reference.
    """
    if callable(value):
        raise InvalidKeyError(
            f"Query key segment must not be callable: {value!r}", segment=value
        )

    if isinstance(value, dict):
        children = list(value.values())
    elif isinstance(value, (list, tuple)):
        children = list(value)
    else:
        return

    if id(value) in seen:
        raise InvalidKeyError("Query key segment contains a cycle", segment=value)

    seen.add(id(value))
    for child in children:
        _reject_callables(child, seen)
    seen.discard(id(value))


def validate_delimiter(delimiter: str) -> str:
    """Check that a segment delimiter cannot occur inside an encoded segment.

    Args:
        delimiter: The separator placed between encoded segments.

    Returns:
        The delimiter, unchanged.

    Raises:
        ValueError: If the delimiter is empty or contains a character of a
            JSON number token or a quote.
    """
    if not delimiter:
        raise ValueError("key_delimiter must not be empty")
    invalid = sorted(set(delimiter) & _TOKEN_CHARS)
    if invalid:
        raise ValueError(f"key_delimiter must not contain {''.join(invalid)!r}")
    return delimiter
