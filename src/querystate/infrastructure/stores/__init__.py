"""Entry store implementations."""

from querystate.infrastructure.stores.memory import InMemoryEntryStore

__all__ = ["InMemoryEntryStore"]
