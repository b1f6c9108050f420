"""Store adapters for the binary cache.

The HTTP layer only sees the :class:`Store` interface; :class:`LocalStore`
is the implementation used when serving a machine's own ``/nix/store``.
"""

from .base import (
    DrvOutput,
    NarSerializationError,
    PathInfo,
    Realisation,
    Store,
    StoreError,
    strip_trailing_slash,
)
from .hashing import Hash, HashEncoding, InvalidHash
from .local import LocalStore

__all__ = [
    "DrvOutput",
    "Hash",
    "HashEncoding",
    "InvalidHash",
    "LocalStore",
    "NarSerializationError",
    "PathInfo",
    "Realisation",
    "Store",
    "StoreError",
    "strip_trailing_slash",
]
