"""
auth/nonce.py -- Single-use challenge nonces bound to a session.

issue_nonce() stores a fresh nonce in the session; consume_nonce() takes it
back out. Consumption clears the nonce and saves the session BEFORE the
caller inspects the signed message, so every verification attempt -- success,
failure, or exception -- uses up the challenge. The only way to retry is to
request a new nonce.

Entropy: secrets.token_hex(16) gives 128 bits as 32 hex characters.
Hex keeps the value inside the EIP-4361 nonce grammar (alphanumeric, at
least 8 characters, no separators).

Layer rule: no imports from api/, audit/, or cache/.
"""

from __future__ import annotations

import secrets

from auth.errors import NoNonceError
from auth.session import SessionStore

_NONCE_BYTES = 16


def generate_nonce() -> str:
    return secrets.token_hex(_NONCE_BYTES)


def issue_nonce(store: SessionStore, nonce: str | None = None) -> str:
    """Bind nonce (a fresh one by default) to the caller's session and return it."""
    session = store.load()
    nonce = nonce or generate_nonce()
    session.nonce = nonce
    store.save(session)
    return nonce


def consume_nonce(store: SessionStore) -> str:
    """Remove the session's nonce and return it.

    Raises NoNonceError if no challenge is in progress. The session is saved
    in both cases so the cleared state is what the client gets back.
    """
    session = store.load()
    nonce = session.nonce
    session.nonce = None
    store.save(session)
    if not nonce:
        raise NoNonceError()
    return nonce
