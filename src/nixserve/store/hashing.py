"""Content hash values and the encodings Nix uses to print them.

Nix prints digests in one of three encodings: base16, base64, or its own
base-32 variant ("nix32") with a reduced alphabet and reversed bit order.
Which encoding a string uses is recoverable from its length alone, so
parsing never needs a hint beyond the expected algorithm.
"""

from __future__ import annotations

import base64
import binascii
import enum
from dataclasses import dataclass
from typing import Optional


NIX32_CHARS = "0123456789abcdfghijklmnpqrsvwxyz"
_NIX32_INDEX = {char: index for index, char in enumerate(NIX32_CHARS)}

DIGEST_SIZES = {
    "md5": 16,
    "sha1": 20,
    "sha256": 32,
    "sha512": 64,
}


class HashEncoding(str, enum.Enum):
    BASE16 = "base16"
    NIX32 = "nix32"
    BASE64 = "base64"


class InvalidHash(ValueError):
    """Raised when a string cannot be decoded as a hash of the expected type."""


def nix32_length(size: int) -> int:
    return (size * 8 - 1) // 5 + 1


def nix32_encode(data: bytes) -> str:
    length = nix32_length(len(data))
    chars = []
    for n in range(length - 1, -1, -1):
        bit = n * 5
        index = bit // 8
        shift = bit % 8
        value = data[index] >> shift
        if index + 1 < len(data):
            value |= data[index + 1] << (8 - shift)
        chars.append(NIX32_CHARS[value & 0x1F])
    return "".join(chars)


def nix32_decode(text: str, size: int) -> bytes:
    if len(text) != nix32_length(size):
        raise InvalidHash(f"nix32 string has wrong length for {size} bytes: {text!r}")
    out = bytearray(size)
    for n, char in enumerate(reversed(text)):
        digit = _NIX32_INDEX.get(char)
        if digit is None:
            raise InvalidHash(f"invalid nix32 character {char!r}")
        bit = n * 5
        index = bit // 8
        shift = bit % 8
        out[index] |= (digit << shift) & 0xFF
        carry = digit >> (8 - shift)
        if index + 1 < size:
            out[index + 1] |= carry
        elif carry:
            raise InvalidHash(f"nix32 string does not fit in {size} bytes: {text!r}")
    return bytes(out)


@dataclass(frozen=True)
class Hash:
    algorithm: str
    digest: bytes

    def __post_init__(self) -> None:
        expected = DIGEST_SIZES.get(self.algorithm)
        if expected is None:
            raise InvalidHash(f"unknown hash algorithm {self.algorithm!r}")
        if len(self.digest) != expected:
            raise InvalidHash(f"{self.algorithm} digest must be {expected} bytes, got {len(self.digest)}")

    @classmethod
    def parse_any(cls, text: str, algorithm: Optional[str] = None) -> "Hash":
        """Parse ``[<algo>:]<digest>`` where the digest is base16, nix32 or base64.

        An explicit prefix wins over ``algorithm``; one of the two must be present.
        """
        prefix, sep, body = text.partition(":")
        if sep:
            if algorithm is not None and prefix != algorithm:
                raise InvalidHash(f"hash {text!r} should have type {algorithm!r}")
            algorithm = prefix
        else:
            body = text
        if algorithm is None:
            raise InvalidHash(f"hash {text!r} does not include a type")
        size = DIGEST_SIZES.get(algorithm)
        if size is None:
            raise InvalidHash(f"unknown hash algorithm {algorithm!r}")

        if len(body) == size * 2:
            try:
                digest = bytes.fromhex(body)
            except ValueError as exc:
                raise InvalidHash(f"invalid base16 hash {body!r}") from exc
        elif len(body) == nix32_length(size):
            digest = nix32_decode(body, size)
        elif len(body) == len(base64.b64encode(bytes(size))):
            try:
                digest = base64.b64decode(body, validate=True)
            except binascii.Error as exc:
                raise InvalidHash(f"invalid base64 hash {body!r}") from exc
        else:
            raise InvalidHash(f"hash {text!r} has wrong length for {algorithm}")
        return cls(algorithm, digest)

    def to_string(self, encoding: HashEncoding = HashEncoding.NIX32, include_type: bool = True) -> str:
        if encoding is HashEncoding.BASE16:
            body = self.digest.hex()
        elif encoding is HashEncoding.BASE64:
            body = base64.b64encode(self.digest).decode("ascii")
        else:
            body = nix32_encode(self.digest)
        return f"{self.algorithm}:{body}" if include_type else body

    def __str__(self) -> str:
        return self.to_string()
