"""
auth/session.py -- Encrypted cookie sessions.

The session is the authenticated principal for one browser: address, chain,
login flag, the in-progress SIWE nonce, optional Farcaster identity, and the
accepted terms-of-service version. It lives entirely in a client-side cookie;
there is no server-side session table. Integrity and confidentiality come from
the cookie's cryptographic seal, never from a database lookup.

Security design decisions:
  Seal: python-jose JWE with alg=dir, enc=A256GCM. The 256-bit content key is
       SHA-256(SESSION_SECRET). AES-GCM is authenticated encryption, so any
       modified byte fails decryption and the cookie loads as an empty session.

  Expiry: the sealed payload carries "exp" (epoch seconds). The cookie max_age
       matches it, but a replayed old cookie is still rejected by the exp check.

  Unseal failures never raise. An absent, tampered, undecodable, or expired
       cookie yields a fresh logged-out Session -- the caller decides whether
       that means 401.

SessionStore is the seam between the auth core and the web framework:
  load() / save() / destroy(). CookieSessionStore is the HTTP implementation;
  it records the pending Set-Cookie on request.state and the session cookie
  middleware in api/main.py writes it onto whatever response goes out --
  including error responses, so a cleared nonce is persisted on failure paths.

Layer rule: no imports from api/, audit/, or cache/.
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
from dataclasses import asdict, dataclass, fields
from typing import Any, Optional, Protocol

from jose import jwe
from jose.exceptions import JOSEError

from auth.models import VerifiedIdentity
from core.config import get_settings

logger = logging.getLogger("baseapp.auth.session")

SESSION_COOKIE_NAME = "base_app_session"

_ENCRYPTION = "A256GCM"
_ALGORITHM = "dir"


@dataclass
class Session:
    """Mutable per-browser session state."""

    address: Optional[str] = None
    chain_id: Optional[int] = None
    is_logged_in: bool = False
    nonce: Optional[str] = None
    fid: Optional[int] = None
    auth_method: Optional[str] = None  # "siwe" | "farcaster"
    tos_accepted_version: Optional[str] = None
    tos_accepted_at: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Session":
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})


def establish(session: Session, identity: VerifiedIdentity, auth_method: str) -> None:
    """Mark session as logged in for a verified identity.

    The address is lower-cased so every later lookup uses the canonical
    identity key regardless of the checksum casing in the signed message.
    Terms-of-service state belongs to the previous principal and is cleared
    when a different address signs in on the same session.
    """
    address = identity.address.lower()
    if session.address != address:
        session.tos_accepted_version = None
        session.tos_accepted_at = None
    session.address = address
    session.chain_id = identity.chain_id
    session.is_logged_in = True
    session.auth_method = auth_method
    session.fid = identity.fid


class SessionStore(Protocol):
    """Capability the auth core needs from the serving framework."""

    def load(self) -> Session: ...

    def save(self, session: Session) -> None: ...

    def destroy(self) -> None: ...


# ---------------------------------------------------------------------------
# Seal / unseal
# ---------------------------------------------------------------------------


class SessionSealer:
    """Encrypts Session objects into opaque cookie values and back."""

    def __init__(self, secret: str, max_age: int) -> None:
        if len(secret) < 32:
            raise ValueError("Session secret must be at least 32 characters.")
        self._key = hashlib.sha256(secret.encode("utf-8")).digest()
        self.max_age = max_age

    def seal(self, session: Session, now: float | None = None) -> str:
        issued = time.time() if now is None else now
        payload = session.to_dict()
        payload["exp"] = int(issued + self.max_age)
        token = jwe.encrypt(
            json.dumps(payload, separators=(",", ":")).encode("utf-8"),
            self._key,
            algorithm=_ALGORITHM,
            encryption=_ENCRYPTION,
        )
        return token.decode("ascii") if isinstance(token, bytes) else token

    def unseal(self, token: str | None, now: float | None = None) -> Session:
        """Return the Session sealed in token, or a fresh one on any failure."""
        if not token:
            return Session()
        try:
            payload = json.loads(jwe.decrypt(token, self._key))
            exp = int(payload.pop("exp"))
        except (JOSEError, ValueError, TypeError, KeyError, AttributeError):
            logger.debug("Discarding unreadable session cookie")
            return Session()
        current = time.time() if now is None else now
        if current >= exp:
            logger.debug("Discarding expired session cookie")
            return Session()
        return Session.from_dict(payload)


def get_sealer() -> SessionSealer:
    settings = get_settings()
    return SessionSealer(settings.session_secret, settings.session_duration)


# ---------------------------------------------------------------------------
# HTTP cookie implementation
# ---------------------------------------------------------------------------


class CookieSessionStore:
    """SessionStore backed by the base_app_session cookie.

    request is any object exposing .cookies (mapping) and .state (attribute
    namespace) -- a Starlette Request in production. save()/destroy() only
    record the pending cookie; apply_session_cookie() writes it to a response.
    """

    def __init__(self, request, sealer: SessionSealer | None = None) -> None:
        self._request = request
        self._sealer = sealer or get_sealer()

    def load(self) -> Session:
        cached = getattr(self._request.state, "session", None)
        if cached is not None:
            return cached
        session = self._sealer.unseal(self._request.cookies.get(SESSION_COOKIE_NAME))
        self._request.state.session = session
        return session

    def save(self, session: Session) -> None:
        self._request.state.session = session
        self._request.state.session_cookie = ("set", self._sealer.seal(session))

    def destroy(self) -> None:
        self._request.state.session = Session()
        self._request.state.session_cookie = ("delete", None)


def apply_session_cookie(request, response) -> None:
    """Write the pending session cookie (if any) recorded on request.state."""
    pending = getattr(request.state, "session_cookie", None)
    if pending is None:
        return
    action, value = pending
    settings = get_settings()
    if action == "delete":
        response.delete_cookie(SESSION_COOKIE_NAME, httponly=True, samesite="lax", secure=settings.secure_cookies)
        return
    response.set_cookie(
        SESSION_COOKIE_NAME,
        value=value,
        httponly=True,
        samesite="lax",
        secure=settings.secure_cookies,
        max_age=settings.session_duration,
    )
