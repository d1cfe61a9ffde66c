"""
auth/rpc.py -- Minimal Ethereum JSON-RPC eth_call client.

Used for read-only contract calls: the Farcaster registries and EIP-1271
smart-contract wallet signature checks. A module-level requests.Session is
shared for connection pooling; max_redirects is kept small because the
endpoints are known RPC providers.

Layer rule: no imports from api/, audit/, or cache/.
"""

from __future__ import annotations

from typing import Any

import requests
from eth_utils import to_bytes

_TIMEOUT = 10  # seconds

_session = requests.Session()
_session.max_redirects = 3


class RpcError(RuntimeError):
    """The RPC endpoint could not be queried or returned an error."""


class ExecutionReverted(RpcError):
    """The call reached the node and the contract reverted.

    The node answered, so this is a result about the call, not an outage.
    """


# JSON-RPC error code geth and most providers use for a reverted eth_call.
_EXECUTION_REVERTED_CODE = 3


def _is_revert(error: Any) -> bool:
    if not isinstance(error, dict):
        return False
    return error.get("code") == _EXECUTION_REVERTED_CODE or "execution reverted" in str(error.get("message", "")).lower()


def eth_call(rpc_url: str, to: str, data: bytes, http: requests.Session | None = None) -> bytes:
    """Execute eth_call against the latest block and return the raw result bytes.

    Raises ExecutionReverted when the contract reverts and RpcError for every
    other failure (transport, HTTP status, malformed payload, node error).
    """
    body: dict[str, Any] = {
        "jsonrpc": "2.0",
        "id": 1,
        "method": "eth_call",
        "params": [{"to": to, "data": "0x" + data.hex()}, "latest"],
    }
    try:
        resp = (http or _session).post(rpc_url, json=body, timeout=_TIMEOUT)
        resp.raise_for_status()
        payload = resp.json()
    except (requests.RequestException, ValueError) as exc:
        raise RpcError(f"eth_call failed: {exc}") from exc
    if "error" in payload:
        if _is_revert(payload["error"]):
            raise ExecutionReverted(f"eth_call reverted: {payload['error']}")
        raise RpcError(f"eth_call returned error: {payload['error']}")
    return to_bytes(hexstr=payload.get("result") or "0x")
