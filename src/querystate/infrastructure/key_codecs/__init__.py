"""Key codec implementations."""

from querystate.infrastructure.key_codecs.default import DefaultKeyCodec

__all__ = ["DefaultKeyCodec"]
