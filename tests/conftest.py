"""
tests/conftest.py -- Shared test fixtures for Base App integration tests.

This module provides:
  - make_stores(): isolated in-memory DBs for accounts + audit
  - FakeRegistry: in-memory Farcaster registry (no RPC)
  - Wallet / sign_in helpers: real secp256k1 keys and SIWE/SIWF messages
  - api: module-scoped TestClient wired to isolated stores via a patched lifespan

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

Environment must be set before any core/auth import so get_settings() sees
it: a fixed SESSION_SECRET, the SIWE domain and URI the tests sign against,
and a known INITIAL_SUPER_ADMIN_ADDRESS.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from eth_account import Account
from eth_account.messages import encode_defunct

SUPER_ADMIN_KEY = "0x" + "5a" * 32
SUPER_ADMIN = Account.from_key(SUPER_ADMIN_KEY)

# CRITICAL: set before any core/auth import so the cached Settings sees it.
os.environ["DEBUG"] = "true"
os.environ["SESSION_SECRET"] = "test-session-secret-" + "x" * 44
os.environ["SIWE_DOMAIN"] = "localhost"
os.environ["FARCASTER_DOMAIN"] = "localhost"
os.environ["APP_URL"] = "http://localhost:3100"
os.environ["CHAIN_ID"] = "84532"
os.environ["ETH_RPC_URL"] = ""
os.environ["NONCE_RATE_LIMIT"] = "1000/minute"
os.environ["INITIAL_SUPER_ADMIN_ADDRESS"] = SUPER_ADMIN.address
os.environ["DATABASE_URL"] = "sqlite:///file:test_default?mode=memory&cache=shared&uri=true"

import pytest
from fastapi.testclient import TestClient
from siwe import SiweMessage

from api.main import app
from audit.store import AuditStore
from auth.permissions import PermissionGrantStore
from auth.roles import RoleResolver
from auth.siwe import MessageVerifier
from auth.store import AccountStore
from cache.store import RoleCache
from core.config import get_settings

# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def make_db_url(prefix: str) -> str:
    """Unique named shared-memory SQLite URI so test modules never share state."""
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def make_stores(prefix: str) -> tuple[AccountStore, AuditStore]:
    url = make_db_url(prefix)
    return AccountStore(db_url=url), AuditStore(db_url=url)


class FakeRegistry:
    """Farcaster registry stand-in: fid -> set of addresses allowed to sign."""

    def __init__(self) -> None:
        self.signers: dict[int, set[str]] = {}

    def register(self, fid: int, address: str) -> None:
        self.signers.setdefault(fid, set()).add(address.lower())

    def verify_signer(self, fid: int, address: str) -> bool:
        return address.lower() in self.signers.get(fid, set())


# ---------------------------------------------------------------------------
# Wallet helpers
# ---------------------------------------------------------------------------


def new_wallet():
    """A fresh random EOA (eth_account LocalAccount)."""
    return Account.create()


def sign(wallet, message: str) -> str:
    signed = wallet.sign_message(encode_defunct(text=message))
    return "0x" + signed.signature.hex().removeprefix("0x")


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def build_message(
    wallet,
    nonce: str,
    domain: str = "localhost",
    uri: str = "http://localhost:3100",
    chain_id: int = 84532,
    issued_at: datetime | None = None,
    ttl: timedelta | None = timedelta(minutes=5),
    resources: list[str] | None = None,
    not_before: datetime | None = None,
) -> str:
    """Render an EIP-4361 message the way a wallet or Farcaster client would."""
    issued = issued_at or datetime.now(timezone.utc)
    fields = dict(
        domain=domain,
        address=wallet.address,
        statement="Sign in to this app",
        uri=uri,
        version="1",
        chain_id=chain_id,
        nonce=nonce,
        issued_at=_iso(issued),
    )
    if ttl is not None:
        fields["expiration_time"] = _iso(issued + ttl)
    if resources:
        fields["resources"] = resources
    if not_before is not None:
        fields["not_before"] = _iso(not_before)
    return SiweMessage(**fields).prepare_message()


def sign_in(client: TestClient, wallet) -> dict:
    """Full SIWE round trip through the API. Returns the POST response JSON."""
    challenge = client.get("/api/v1/auth/siwe", params={"address": wallet.address, "chainId": 84532})
    assert challenge.status_code == 200, challenge.text
    message = challenge.json()["message"]
    resp = client.post("/api/v1/auth/siwe", json={"message": message, "signature": sign(wallet, message)})
    assert resp.status_code == 200, resp.text
    return resp.json()


# ---------------------------------------------------------------------------
# App harness
# ---------------------------------------------------------------------------


@dataclass
class Harness:
    client: TestClient
    store: AccountStore
    audit: AuditStore
    cache: RoleCache
    resolver: RoleResolver
    grants: PermissionGrantStore
    registry: FakeRegistry


def _patch_lifespan(store: AccountStore, audit: AuditStore, registry: FakeRegistry, cache: RoleCache):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs and the fake Farcaster registry instead of RPC.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        resolver = RoleResolver(store, cache)
        app.state.account_store = store
        app.state.audit_store = audit
        app.state.role_cache = cache
        app.state.role_resolver = resolver
        app.state.grant_store = PermissionGrantStore(store, resolver)
        app.state.verifier = MessageVerifier(get_settings(), registry=registry)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def api() -> Generator[Harness, None, None]:
    """Yield a Harness whose client hits the real app with isolated stores.

    The session lives in the client's cookie jar, so sign_in() switches the
    client's identity. Tests that need a clean slate call client.cookies.clear().
    """
    store, audit = make_stores("api")
    registry = FakeRegistry()
    cache = RoleCache()
    app.router.lifespan_context = _patch_lifespan(store, audit, registry, cache)

    with TestClient(app, raise_server_exceptions=True) as client:
        resolver = client.app.state.role_resolver
        yield Harness(
            client=client,
            store=store,
            audit=audit,
            cache=cache,
            resolver=resolver,
            grants=client.app.state.grant_store,
            registry=registry,
        )

    store.close()
    audit.close()


@pytest.fixture
def store() -> Generator[AccountStore, None, None]:
    """A standalone AccountStore on its own in-memory DB."""
    account_store = AccountStore(db_url=make_db_url("unit"))
    yield account_store
    account_store.close()
