"""Default key codec implementation."""

from querystate.core.entities.query_key import QueryKey, as_key_tuple
from querystate.utils.canonical import stable_stringify, validate_delimiter


class DefaultKeyCodec:
    """Key codec joining JSON-encoded segments with a delimiter.

    ``("users", 42)`` encodes to ``'"users"|42'``. Each segment is a
    complete JSON value, so delimiters inside string segments are quoted
    and cannot be confused with segment boundaries.
    """

    def __init__(self, delimiter: str = "|") -> None:
        """Initialize the codec.

        Args:
            delimiter: Separator placed between encoded segments.

        Raises:
            ValueError: If the delimiter could occur inside a segment.
        """
        self._delimiter = validate_delimiter(delimiter)

    @property
    def delimiter(self) -> str:
        return self._delimiter

    def encode(self, key: QueryKey) -> str:
        """Encode a query key to its canonical string.

        Args:
            key: A string or sequence of segments.

        Returns:
            The canonical key string.

        Raises:
            InvalidKeyError: If a segment cannot be canonicalized.
        """
        return self._delimiter.join(
            stable_stringify(segment) for segment in as_key_tuple(key)
        )

    def matches_prefix(self, full_key: QueryKey, prefix_key: QueryKey) -> bool:
        """Check whether ``prefix_key`` is a segment-wise prefix of ``full_key``.

        An empty prefix matches every key.

        Args:
            full_key: The key of a cached entry.
            prefix_key: The prefix to test.

        Returns:
            True if the keys are equal or ``prefix_key`` is a prefix.
        """
        return self.matches_encoded(self.encode(full_key), self.encode(prefix_key))

    def matches_encoded(self, full_hash: str, prefix_hash: str) -> bool:
        """Prefix test on already encoded keys.

        Args:
            full_hash: Canonical string of the full key.
            prefix_hash: Canonical string of the prefix.

        Returns:
            True if ``prefix_hash`` is equal to or a segment prefix of
            ``full_hash``.
        """
        if not prefix_hash:
            return True
        return full_hash == prefix_hash or full_hash.startswith(
            prefix_hash + self._delimiter
        )
