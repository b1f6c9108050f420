"""Streaming NAR (Nix Archive) serialization.

NAR is Nix's deterministic archive format: no timestamps or ownership, only
the executable bit, and directory entries in sorted order. Every token is
written as ``uint64_le(length) + bytes + zero padding to 8 bytes``::

    str("nix-archive-1")
    str("(") str("type")
      str("regular") [str("executable") str("")] str("contents") str(<data>)
    | str("symlink") str("target") str(<target>)
    | str("directory") { str("entry") str("(") str("name") str(<n>) str("node") <node> str(")") }
    str(")")

The serializer here never holds more than about one chunk of output in
memory; file contents are read in ``chunk_size`` slices as the consumer pulls.
"""

from __future__ import annotations

import os
import stat
import struct
from pathlib import Path
from typing import Iterator

from .base import NarSerializationError


NAR_VERSION_MAGIC = "nix-archive-1"


def _padding(length: int) -> bytes:
    return b"\0" * ((8 - length % 8) % 8)


def _token(value: str | bytes) -> bytes:
    if isinstance(value, str):
        value = value.encode()
    return struct.pack("<Q", len(value)) + value + _padding(len(value))


class _ChunkBuffer:
    """Coalesces small tokens so the consumer sees bounded, reasonably sized chunks."""

    def __init__(self, chunk_size: int) -> None:
        self.chunk_size = chunk_size
        self._pending = bytearray()

    def add(self, data: bytes) -> Iterator[bytes]:
        self._pending += data
        while len(self._pending) >= self.chunk_size:
            yield bytes(self._pending[: self.chunk_size])
            del self._pending[: self.chunk_size]

    def flush(self) -> Iterator[bytes]:
        if self._pending:
            yield bytes(self._pending)
            self._pending.clear()


def _dump_node(path: Path, buffer: _ChunkBuffer) -> Iterator[bytes]:
    info = os.lstat(path)
    yield from buffer.add(_token("(") + _token("type"))

    if stat.S_ISLNK(info.st_mode):
        target = os.readlink(path)
        yield from buffer.add(_token("symlink") + _token("target") + _token(os.fsencode(target)))

    elif stat.S_ISREG(info.st_mode):
        header = _token("regular")
        if info.st_mode & stat.S_IXUSR:
            header += _token("executable") + _token("")
        header += _token("contents") + struct.pack("<Q", info.st_size)
        yield from buffer.add(header)
        remaining = info.st_size
        with open(path, "rb") as handle:
            while remaining > 0:
                data = handle.read(min(buffer.chunk_size, remaining))
                if not data:
                    raise NarSerializationError(f"file '{path}' was truncated during serialization")
                remaining -= len(data)
                yield from buffer.add(data)
        yield from buffer.add(_padding(info.st_size))

    elif stat.S_ISDIR(info.st_mode):
        yield from buffer.add(_token("directory"))
        for name in sorted(os.listdir(path), key=os.fsencode):
            yield from buffer.add(_token("entry") + _token("(") + _token("name") + _token(os.fsencode(name)) + _token("node"))
            yield from _dump_node(path / name, buffer)
            yield from buffer.add(_token(")"))

    else:
        raise NarSerializationError(f"file '{path}' has an unsupported type")

    yield from buffer.add(_token(")"))


def dump_path(path: str | Path, chunk_size: int = 64 * 1024) -> Iterator[bytes]:
    """Yield the NAR serialization of ``path`` in chunks of at most ``chunk_size`` bytes."""
    if chunk_size <= 0:
        raise ValueError("chunk_size must be positive")
    buffer = _ChunkBuffer(chunk_size)
    try:
        yield from buffer.add(_token(NAR_VERSION_MAGIC))
        yield from _dump_node(Path(path), buffer)
    except OSError as exc:
        raise NarSerializationError(f"error serializing '{path}': {exc}") from exc
    yield from buffer.flush()
