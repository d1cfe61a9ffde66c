"""
auth/farcaster.py -- Farcaster identity lookups against the on-chain registries.

A Sign-In-With-Farcaster message is an EIP-4361 message whose resources list
carries farcaster://fid/<n>. A valid signature only proves control of an
Ethereum address; this module answers whether that address speaks for the
fid, using the registries on OP mainnet:

  IdRegistry.idOf(address)            -> fid owned by a custody address
  KeyRegistry.keyDataOf(fid, bytes)   -> (state, keyType) for an auth address

A signer is accepted when it is the fid's custody address, or when it is
registered in the KeyRegistry as an auth address (keyType 2) in the ADDED
state.

RpcError propagates on transport failures -- that is a server-side fault
(the route layer maps it to 500), not a failed proof.

Layer rule: no imports from api/, audit/, or cache/.
"""

from __future__ import annotations

import logging

import requests
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, to_bytes

from auth.rpc import eth_call
from core.config import get_settings

logger = logging.getLogger("baseapp.auth.farcaster")

ID_REGISTRY_ADDRESS = "0x00000000Fc6c5F01Fc30151999387Bb99A9f489b"
KEY_REGISTRY_ADDRESS = "0x00000000Fc1237824fb747aBDE0FF18990E59b7e"

_ID_OF = function_signature_to_4byte_selector("idOf(address)")
_KEY_DATA_OF = function_signature_to_4byte_selector("keyDataOf(uint256,bytes)")

_KEY_STATE_ADDED = 1
_KEY_TYPE_AUTH_ADDRESS = 2


class FarcasterRegistry:
    """Read-only client for the Farcaster IdRegistry and KeyRegistry."""

    def __init__(self, rpc_url: str | None = None, http: requests.Session | None = None) -> None:
        self.rpc_url = rpc_url or get_settings().farcaster_rpc_url
        self._http = http

    def custody_fid(self, address: str) -> int:
        """Return the fid whose custody address is address, or 0 if none."""
        raw = eth_call(self.rpc_url, ID_REGISTRY_ADDRESS, _ID_OF + encode(["address"], [address]), self._http)
        if not raw:
            return 0
        (fid,) = decode(["uint256"], raw)
        return int(fid)

    def is_auth_address(self, fid: int, address: str) -> bool:
        """Return True if address is an active auth address key for fid."""
        data = _KEY_DATA_OF + encode(["uint256", "bytes"], [fid, to_bytes(hexstr=address)])
        raw = eth_call(self.rpc_url, KEY_REGISTRY_ADDRESS, data, self._http)
        if not raw:
            return False
        state, key_type = decode(["uint8", "uint32"], raw)
        return state == _KEY_STATE_ADDED and key_type == _KEY_TYPE_AUTH_ADDRESS

    def verify_signer(self, fid: int, address: str) -> bool:
        """True if address may sign in on behalf of fid."""
        if self.custody_fid(address) == fid:
            return True
        accepted = self.is_auth_address(fid, address)
        if not accepted:
            logger.info("Signer %s is not registered for fid %d", address, fid)
        return accepted
