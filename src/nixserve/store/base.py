"""Store adapter interface and the records it hands to the HTTP layer."""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Iterator, Mapping, Optional, Sequence

from .hashing import Hash, HashEncoding, InvalidHash


HASH_PART_LENGTH = 32


class StoreError(Exception):
    """Base class for failures raised by a store adapter."""


class NarSerializationError(StoreError):
    """Raised when a path cannot be serialized, typically mid-stream."""


def strip_trailing_slash(value: str) -> str:
    if value.endswith("/"):
        return value[:-1]
    return value


def store_path_base_name(path: str) -> str:
    return strip_trailing_slash(path).rsplit("/", 1)[-1]


@dataclass(frozen=True)
class PathInfo:
    """Metadata for one valid store path, as of the moment it was queried."""

    path: str
    nar_hash: Hash
    nar_size: int
    references: tuple[str, ...] = ()
    deriver: Optional[str] = None

    def fingerprint(self) -> str:
        """Text covered by a narinfo signature."""
        if self.nar_hash.algorithm != "sha256":
            raise StoreError(f"cannot compute fingerprint of '{self.path}' with a {self.nar_hash.algorithm} NAR hash")
        nar_hash = self.nar_hash.to_string(HashEncoding.NIX32, include_type=True)
        references = ",".join(strip_trailing_slash(ref) for ref in self.references)
        return f"1;{strip_trailing_slash(self.path)};{nar_hash};{self.nar_size};{references}"


@dataclass(frozen=True)
class DrvOutput:
    """Identifier of one output of a content-addressed derivation."""

    drv_hash: Hash
    output_name: str

    @classmethod
    def parse(cls, text: str) -> Optional["DrvOutput"]:
        """Parse ``<algo>:<hash>!<output>``; malformed input yields ``None``."""
        drv_hash, sep, output_name = text.partition("!")
        if not sep or not drv_hash or not output_name:
            return None
        try:
            parsed = Hash.parse_any(drv_hash)
        except InvalidHash:
            return None
        return cls(parsed, output_name)

    @property
    def hash_string(self) -> str:
        return self.drv_hash.to_string(HashEncoding.BASE16, include_type=True)

    def __str__(self) -> str:
        return f"{self.hash_string}!{self.output_name}"


@dataclass(frozen=True)
class Realisation:
    """Concrete output path a content-addressed derivation output resolved to."""

    id: DrvOutput
    out_path: str
    signatures: tuple[str, ...] = ()
    dependent_realisations: Mapping[str, str] = field(default_factory=dict)

    def to_json(self) -> dict[str, object]:
        return {
            "id": str(self.id),
            "outPath": store_path_base_name(self.out_path),
            "signatures": sorted(self.signatures),
            "dependentRealisations": {
                key: store_path_base_name(value) for key, value in sorted(self.dependent_realisations.items())
            },
        }

    def dumps(self) -> str:
        return json.dumps(self.to_json(), separators=(",", ":"))


class Store:
    """Read-only view of a Nix store consumed by the binary cache.

    Implementations must be safe to call from many worker threads at once.
    "Not found" is reported by returning ``None``; exceptions are reserved
    for genuine failures.
    """

    @property
    def store_dir(self) -> str:  # pragma: no cover - interface
        raise NotImplementedError

    def query_path_from_hash_part(self, hash_part: str) -> Optional[str]:  # pragma: no cover - interface
        raise NotImplementedError

    def query_path_info(self, path: str) -> Optional[PathInfo]:  # pragma: no cover - interface
        raise NotImplementedError

    def nar_chunks(self, path: str, chunk_size: int) -> Iterator[bytes]:  # pragma: no cover - interface
        """Lazily serialize ``path`` to NAR bytes, one bounded chunk at a time.

        The iterator is single-pass; callers close it to release file handles early.
        """
        raise NotImplementedError

    def query_realisation(self, drv_output: DrvOutput) -> Optional[Realisation]:  # pragma: no cover - interface
        raise NotImplementedError

    def close(self) -> None:
        return None


def unique_references(paths: Sequence[str]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for path in paths:
        seen.setdefault(path, None)
    return tuple(seen)
