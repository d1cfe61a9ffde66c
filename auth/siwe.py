"""
auth/siwe.py -- Sign-In-With-Ethereum and Sign-In-With-Farcaster verification.

Challenge messages are EIP-4361 messages built and parsed with the `siwe`
library. Signatures are checked with eth_account against the exact text the
client signed, so verification never depends on re-rendering the message.

Verification order (SIWE):
  1. Parse the EIP-4361 grammar          -> MalformedMessageError (400)
  2. nonce == session nonce              -> NonceMismatchError
  3. domain == SIWE_DOMAIN               -> DomainMismatchError
  4. uri == APP_URL                      -> UriMismatchError
  5. expiration-time / not-before        -> MessageExpiredError
  6. signature recovers the message's    -> SignatureInvalidError
     address (EOA), or the address's
     EIP-1271 isValidSignature() agrees
     when ETH_RPC_URL is configured.

The returned identity is always the address embedded in the verified message.
Structural checks run before any cryptography so a cheap mismatch never
costs an ecrecover or an RPC round-trip.

SIWF follows the same steps with FARCASTER_DOMAIN, no URI binding, the fid
read from the signed farcaster://fid/<n> resource, and a final registry check
that the signer is the fid's custody or auth address.

The caller consumes the session nonce (auth.nonce.consume_nonce) before
calling in here, so every rejection path has already burned the challenge.

Layer rule: no imports from api/, audit/, or cache/.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Any

import requests
from eth_abi import encode
from eth_account import Account
from eth_account.messages import defunct_hash_message, encode_defunct
from eth_utils import function_signature_to_4byte_selector, is_address, to_bytes, to_checksum_address
from siwe import SiweMessage

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
from auth.farcaster import FarcasterRegistry
from auth.models import VerifiedIdentity
from auth.rpc import ExecutionReverted, eth_call
from core.config import Settings, get_settings

logger = logging.getLogger("baseapp.auth.siwe")

MESSAGE_TTL = timedelta(minutes=5)

_FID_RESOURCE_RE = re.compile(r"^farcaster://fid/(\d+)/?$")

_EIP1271_SELECTOR = function_signature_to_4byte_selector("isValidSignature(bytes32,bytes)")
_EIP1271_MAGIC_VALUE = bytes.fromhex("1626ba7e")


def _iso(ts: datetime) -> str:
    return ts.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def _as_datetime(value: Any) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def generate_siwe_message(
    address: str,
    chain_id: int,
    nonce: str,
    now: datetime | None = None,
    settings: Settings | None = None,
) -> SiweMessage:
    """Build the challenge message a wallet will sign.

    The address is EIP-55 checksummed (required by the EIP-4361 grammar).
    The message expires MESSAGE_TTL after issuance; the expiration is part of
    the signed text.
    """
    cfg = settings or get_settings()
    if not is_address(address):
        raise InvalidAddressError()
    issued = now or datetime.now(timezone.utc)
    return SiweMessage(
        domain=cfg.siwe_domain,
        address=to_checksum_address(address),
        statement=cfg.siwe_statement,
        uri=cfg.app_url,
        version="1",
        chain_id=chain_id,
        nonce=nonce,
        issued_at=_iso(issued),
        expiration_time=_iso(issued + MESSAGE_TTL),
    )


class MessageVerifier:
    """Decides whether (message, signature) proves control of an address."""

    def __init__(
        self,
        settings: Settings | None = None,
        registry: FarcasterRegistry | None = None,
        clock=None,
        http: requests.Session | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = registry or FarcasterRegistry(self.settings.farcaster_rpc_url, http)
        self._http = http
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def verify_siwe_signature(self, message: str, signature: str, expected_nonce: str) -> VerifiedIdentity:
        """Verify a SIWE login. Raises an AuthError subclass on any rejection."""
        parsed = self._parse(message)
        self._check_nonce(parsed, expected_nonce)
        if parsed.domain != self.settings.siwe_domain:
            raise DomainMismatchError()
        if parsed.uri != self.settings.app_url:
            raise UriMismatchError()
        self._check_validity_window(parsed)
        self._check_signature(message, signature, parsed.address)
        logger.info("SIWE signature verified for %s", parsed.address)
        return VerifiedIdentity(address=parsed.address, chain_id=int(parsed.chain_id))

    def verify_farcaster_sign_in(self, message: str, signature: str, expected_nonce: str) -> VerifiedIdentity:
        """Verify a SIWF login and return the fid and signer address it proves."""
        parsed = self._parse(message)
        self._check_nonce(parsed, expected_nonce)
        if parsed.domain != self.settings.farcaster_domain:
            raise DomainMismatchError()
        self._check_validity_window(parsed)
        fid = self._fid_from_resources(parsed)
        self._check_signature(message, signature, parsed.address)
        if not self.registry.verify_signer(fid, parsed.address):
            raise FarcasterIdentityError()
        logger.info("SIWF signature verified for fid %d", fid)
        return VerifiedIdentity(address=parsed.address, chain_id=self.settings.chain_id, fid=fid)

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    @staticmethod
    def _parse(message: str) -> SiweMessage:
        try:
            return SiweMessage.from_message(message=message)
        except Exception as exc:
            # The ABNF parser and the pydantic model raise unrelated types.
            raise MalformedMessageError() from exc

    @staticmethod
    def _check_nonce(parsed: SiweMessage, expected_nonce: str) -> None:
        if parsed.nonce != expected_nonce:
            raise NonceMismatchError()

    def _check_validity_window(self, parsed: SiweMessage) -> None:
        now = self._clock()
        expires = _as_datetime(parsed.expiration_time)
        not_before = _as_datetime(parsed.not_before)
        if expires is not None and now >= expires:
            raise MessageExpiredError()
        if not_before is not None and now < not_before:
            raise MessageExpiredError()

    @staticmethod
    def _fid_from_resources(parsed: SiweMessage) -> int:
        for resource in parsed.resources or []:
            match = _FID_RESOURCE_RE.match(str(resource))
            if match:
                return int(match.group(1))
        raise MalformedMessageError("Message does not name a Farcaster ID.")

    def _check_signature(self, message: str, signature: str, address: str) -> None:
        if self._recover(message, signature) == address.lower():
            return
        if self.settings.eth_rpc_url and self._is_valid_contract_signature(message, signature, address):
            return
        raise SignatureInvalidError()

    @staticmethod
    def _recover(message: str, signature: str) -> str | None:
        """Recover the EOA signer, or None if the signature is unusable."""
        try:
            return Account.recover_message(encode_defunct(text=message), signature=signature).lower()
        except Exception:
            return None

    def _is_valid_contract_signature(self, message: str, signature: str, address: str) -> bool:
        """EIP-1271: ask the contract wallet at address whether it signed message."""
        try:
            sig_bytes = to_bytes(hexstr=signature)
        except ValueError:
            return False
        data = _EIP1271_SELECTOR + encode(["bytes32", "bytes"], [defunct_hash_message(text=message), sig_bytes])
        try:
            result = eth_call(self.settings.eth_rpc_url, address, data, self._http)
        except ExecutionReverted:
            # Many wallets revert on a bad signature instead of returning a non-magic value.
            logger.info("isValidSignature reverted for %s", address)
            return False
        return result[:4] == _EIP1271_MAGIC_VALUE
