"""Key codec interface."""

from typing import Protocol

from querystate.core.entities.query_key import QueryKey


class IKeyCodec(Protocol):
    """Contract for turning structured query keys into lookup strings.

    Codecs must be deterministic: equivalent keys (including dict segments
    with a different property order) encode to the same string.
    """

    def encode(self, key: QueryKey) -> str:
        """Encode a query key to its canonical string.

        Args:
            key: The structured query key.

        Returns:
            The canonical key string.

        Raises:
            InvalidKeyError: If a segment cannot be canonicalized.
        """
        ...

    def matches_prefix(self, full_key: QueryKey, prefix_key: QueryKey) -> bool:
        """Check whether ``prefix_key`` is a segment-wise prefix of ``full_key``.

        Args:
            full_key: The key of a cached entry.
            prefix_key: The prefix to test.

        Returns:
            True if the keys are equal or ``prefix_key`` is a prefix.
        """
        ...
