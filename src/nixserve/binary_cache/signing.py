"""Detached ed25519 signatures over narinfo fingerprints."""

from __future__ import annotations

import base64
import binascii
from pathlib import Path
from typing import Optional

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from ..store.base import PathInfo


class SigningKeyError(ValueError):
    """Raised when a secret key file is unreadable or malformed."""


class SecretKey:
    """A named ed25519 secret key in Nix's ``<name>:<base64>`` text format.

    The base64 payload is libsodium's 64-byte secret key (seed followed by
    the public key); only the 32-byte seed is needed to sign.
    """

    def __init__(self, name: str, private_key: Ed25519PrivateKey) -> None:
        self.name = name
        self._private_key = private_key

    @classmethod
    def from_text(cls, value: str) -> "SecretKey":
        name, sep, payload = value.strip().partition(":")
        if not sep or not name or not payload:
            raise SigningKeyError("secret key is corrupt")
        try:
            key_bytes = base64.b64decode(payload, validate=True)
        except binascii.Error as exc:
            raise SigningKeyError("secret key is not valid base64") from exc
        if len(key_bytes) != 64:
            raise SigningKeyError("secret key is not valid")
        private_key = Ed25519PrivateKey.from_private_bytes(key_bytes[:32])
        return cls(name, private_key)

    def sign_detached(self, data: str) -> str:
        signature = self._private_key.sign(data.encode())
        return f"{self.name}:{base64.b64encode(signature).decode('ascii')}"

    def public_key_text(self) -> str:
        raw = self._private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
        return f"{self.name}:{base64.b64encode(raw).decode('ascii')}"


def load_secret_key(path: Path) -> SecretKey:
    try:
        return SecretKey.from_text(path.read_text(encoding="utf-8"))
    except (OSError, SigningKeyError) as exc:
        raise SigningKeyError(f"{exc} (while reading '{path}')") from exc


class Signer:
    """Produces the narinfo ``Sig`` value when a key is configured.

    Without a key the signer is simply disabled; callers check ``enabled``
    and omit the line.
    """

    def __init__(self, key: Optional[SecretKey] = None) -> None:
        self._key = key

    @property
    def enabled(self) -> bool:
        return self._key is not None

    def sign(self, info: PathInfo) -> Optional[str]:
        if self._key is None:
            return None
        return self._key.sign_detached(info.fingerprint())
