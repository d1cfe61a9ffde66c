"""
tests/test_siwe.py -- Unit tests for auth.siwe message generation and verification.

Every test signs with a real secp256k1 key, so the signature path is the
production one. The Farcaster registry is the in-memory FakeRegistry.

Covers:
  - generate_siwe_message fields, checksumming, invalid address
  - happy path returns the address from the message
  - nonce / domain / URI binding (evil.com domain -> domain_mismatch)
  - malformed grammar -> 400 malformed_message
  - signature from another key -> invalid_signature
  - expired and not-yet-valid messages -> message_expired
  - SIWF: fid from resources, registry check, missing fid resource
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from conftest import FakeRegistry, build_message, new_wallet, sign

from auth.errors import (
    DomainMismatchError,
    FarcasterIdentityError,
    InvalidAddressError,
    MalformedMessageError,
    MessageExpiredError,
    NonceMismatchError,
    SignatureInvalidError,
    UriMismatchError,
)
from auth.nonce import generate_nonce
from auth.siwe import MESSAGE_TTL, MessageVerifier, generate_siwe_message
from core.config import get_settings


@pytest.fixture
def registry():
    return FakeRegistry()


@pytest.fixture
def verifier(registry):
    return MessageVerifier(get_settings(), registry=registry)


# ---------------------------------------------------------------------------
# generate_siwe_message
# ---------------------------------------------------------------------------


def test_generated_message_uses_configured_binding():
    wallet = new_wallet()
    now = datetime(2025, 1, 1, tzinfo=timezone.utc)
    msg = generate_siwe_message(wallet.address.lower(), 84532, "abcdef0123456789", now=now)
    assert msg.domain == "localhost"
    assert msg.address == wallet.address  # checksummed
    assert msg.chain_id == 84532
    assert msg.nonce == "abcdef0123456789"
    assert msg.uri == "http://localhost:3100"
    text = msg.prepare_message()
    assert "localhost wants you to sign in with your Ethereum account:" in text
    assert "Expiration Time: 2025-01-01T00:05:00.000Z" in text


def test_generated_message_rejects_bad_address():
    with pytest.raises(InvalidAddressError):
        generate_siwe_message("not-an-address", 84532, generate_nonce())


def test_nonce_is_32_hex_chars():
    nonce = generate_nonce()
    assert len(nonce) == 32
    int(nonce, 16)
    assert generate_nonce() != nonce


# ---------------------------------------------------------------------------
# verify_siwe_signature
# ---------------------------------------------------------------------------


def test_valid_signature_returns_message_address(verifier):
    wallet = new_wallet()
    nonce = generate_nonce()
    message = generate_siwe_message(wallet.address, 84532, nonce).prepare_message()
    identity = verifier.verify_siwe_signature(message, sign(wallet, message), nonce)
    assert identity.address == wallet.address
    assert identity.chain_id == 84532
    assert identity.fid is None


def test_nonce_mismatch(verifier):
    wallet = new_wallet()
    message = build_message(wallet, nonce=generate_nonce())
    with pytest.raises(NonceMismatchError):
        verifier.verify_siwe_signature(message, sign(wallet, message), generate_nonce())


def test_foreign_domain_rejected(verifier):
    wallet = new_wallet()
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce, domain="evil.com")
    with pytest.raises(DomainMismatchError) as exc:
        verifier.verify_siwe_signature(message, sign(wallet, message), nonce)
    assert exc.value.code == "domain_mismatch"
    assert exc.value.status_code == 401


def test_foreign_uri_rejected(verifier):
    wallet = new_wallet()
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce, uri="https://evil.com")
    with pytest.raises(UriMismatchError):
        verifier.verify_siwe_signature(message, sign(wallet, message), nonce)


def test_uri_must_match_exactly(verifier):
    wallet = new_wallet()
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce, uri="http://localhost:3100/")
    with pytest.raises(UriMismatchError):
        verifier.verify_siwe_signature(message, sign(wallet, message), nonce)


def test_malformed_message_is_400(verifier):
    with pytest.raises(MalformedMessageError) as exc:
        verifier.verify_siwe_signature("hello world", "0x" + "00" * 65, generate_nonce())
    assert exc.value.status_code == 400


def test_signature_from_other_key_rejected(verifier):
    wallet, other = new_wallet(), new_wallet()
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce)
    with pytest.raises(SignatureInvalidError):
        verifier.verify_siwe_signature(message, sign(other, message), nonce)


def test_garbage_signature_rejected(verifier):
    wallet = new_wallet()
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce)
    with pytest.raises(SignatureInvalidError):
        verifier.verify_siwe_signature(message, "0xdeadbeef", nonce)


def test_expired_message_rejected(verifier):
    wallet = new_wallet()
    nonce = generate_nonce()
    issued = datetime.now(timezone.utc) - MESSAGE_TTL - timedelta(minutes=1)
    message = build_message(wallet, nonce=nonce, issued_at=issued)
    with pytest.raises(MessageExpiredError):
        verifier.verify_siwe_signature(message, sign(wallet, message), nonce)


def test_not_yet_valid_message_rejected(verifier):
    wallet = new_wallet()
    nonce = generate_nonce()
    now = datetime.now(timezone.utc)
    message = build_message(wallet, nonce=nonce, ttl=timedelta(hours=2), not_before=now + timedelta(hours=1))
    with pytest.raises(MessageExpiredError):
        verifier.verify_siwe_signature(message, sign(wallet, message), nonce)


def test_injected_clock_controls_expiry(registry):
    wallet = new_wallet()
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce)
    later = MessageVerifier(
        get_settings(), registry=registry, clock=lambda: datetime.now(timezone.utc) + MESSAGE_TTL + timedelta(seconds=1)
    )
    with pytest.raises(MessageExpiredError):
        later.verify_siwe_signature(message, sign(wallet, message), nonce)


# ---------------------------------------------------------------------------
# verify_farcaster_sign_in
# ---------------------------------------------------------------------------


def test_farcaster_sign_in_returns_fid(verifier, registry):
    wallet = new_wallet()
    registry.register(4242, wallet.address)
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce, chain_id=10, resources=["farcaster://fid/4242"])
    identity = verifier.verify_farcaster_sign_in(message, sign(wallet, message), nonce)
    assert identity.fid == 4242
    assert identity.address == wallet.address
    assert identity.chain_id == get_settings().chain_id


def test_farcaster_unregistered_signer_rejected(verifier, registry):
    wallet = new_wallet()
    registry.register(4242, new_wallet().address)
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce, chain_id=10, resources=["farcaster://fid/4242"])
    with pytest.raises(FarcasterIdentityError):
        verifier.verify_farcaster_sign_in(message, sign(wallet, message), nonce)


def test_farcaster_message_without_fid_is_malformed(verifier):
    wallet = new_wallet()
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce, chain_id=10)
    with pytest.raises(MalformedMessageError):
        verifier.verify_farcaster_sign_in(message, sign(wallet, message), nonce)


def test_farcaster_domain_checked(verifier, registry):
    wallet = new_wallet()
    registry.register(7, wallet.address)
    nonce = generate_nonce()
    message = build_message(wallet, nonce=nonce, domain="evil.com", resources=["farcaster://fid/7"])
    with pytest.raises(DomainMismatchError):
        verifier.verify_farcaster_sign_in(message, sign(wallet, message), nonce)
