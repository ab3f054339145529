"""Infrastructure layer implementations for querystate."""

from querystate.infrastructure.key_codecs import DefaultKeyCodec
from querystate.infrastructure.retry import ExponentialBackoffRetryPolicy
from querystate.infrastructure.stores import InMemoryEntryStore

__all__ = [
    "DefaultKeyCodec",
    "ExponentialBackoffRetryPolicy",
    "InMemoryEntryStore",
]
