from __future__ import annotations

import base64

import httpx
import pytest
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey
from cryptography.hazmat.primitives.serialization import Encoding, NoEncryption, PrivateFormat, PublicFormat

from nixserve.binary_cache.app import create_app
from nixserve.binary_cache.signing import SecretKey, Signer
from nixserve.common.settings import BinaryCacheSettings
from tests.utils.nix_db import NixTestStore
from tests.utils.store import FakeStore


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings(tmp_path) -> BinaryCacheSettings:
    return BinaryCacheSettings(
        store_dir="/nix/store",
        database_url=str(tmp_path / "unused.sqlite"),
        chunk_size=16,
        log_level="DEBUG",
    )


@pytest.fixture
def fake_store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def secret_key_text() -> str:
    private_key = Ed25519PrivateKey.generate()
    seed = private_key.private_bytes(Encoding.Raw, PrivateFormat.Raw, NoEncryption())
    public = private_key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw)
    return "cache.example.org-1:" + base64.b64encode(seed + public).decode("ascii")


@pytest.fixture
def signing_key(secret_key_text: str) -> SecretKey:
    return SecretKey.from_text(secret_key_text)


def _client(app) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://cache.test")


@pytest.fixture
async def client(settings, fake_store):
    app = create_app(settings, store=fake_store, signer=Signer())
    async with _client(app) as http_client:
        yield http_client


@pytest.fixture
async def signed_client(settings, fake_store, signing_key):
    app = create_app(settings, store=fake_store, signer=Signer(signing_key))
    async with _client(app) as http_client:
        yield http_client


@pytest.fixture
def nix_store(tmp_path):
    store = NixTestStore(tmp_path / "nix")
    try:
        yield store
    finally:
        store.dispose()
