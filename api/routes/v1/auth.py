"""
api/routes/v1/auth.py -- Wallet sign-in and session REST endpoints.

Routes:
  GET  /api/v1/auth/siwe?address=&chainId=  -- SIWE challenge; stores nonce in session
  POST /api/v1/auth/siwe                    -- verify SIWE signature; logs in
  GET  /api/v1/auth/farcaster               -- SIWF nonce; stores nonce in session
  POST /api/v1/auth/farcaster               -- verify SIWF signature; logs in
  GET  /api/v1/auth/session                 -- current session state (public)
  POST /api/v1/auth/logout                  -- destroys the session cookie

Sign-in sequence (both methods):
  1. consume_nonce() -- clears the session nonce and saves the session BEFORE
     the message is inspected. Replays and failed attempts both leave the
     session without a nonce; the client must request a new challenge.
  2. MessageVerifier checks grammar, nonce, domain, URI, validity window,
     signature (and for SIWF, the fid registry). AuthError on rejection.
  3. Upsert the account by the VERIFIED address -- never from request fields.
  4. initialize_super_admin() -- promotes the configured bootstrap address.
  5. establish() the session, copy the account's terms-of-service state into
     it, and save it.

Security:
  Challenge issuance is rate-limited per IP (NONCE_RATE_LIMIT).
  Cache-Control: no-store on every sign-in response.
  Auth failures are logged with the error code only, never the signature or nonce.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Query, Request, Response

from api.limiter import limiter, nonce_limit
from api.models import (
    ChallengeResponse,
    FarcasterSignInRequest,
    SessionResponse,
    SignInRequest,
    SignInResponse,
    SuccessResponse,
    UserSummary,
)
from auth.dependencies import get_account_store, get_role_resolver, get_session_store, get_verifier
from auth.errors import AuthError
from auth.nonce import consume_nonce, generate_nonce, issue_nonce
from auth.roles import RoleResolver
from auth.session import CookieSessionStore, establish
from auth.siwe import MessageVerifier, generate_siwe_message
from auth.store import AccountStore
from core.config import get_settings

logger = logging.getLogger("baseapp.api.auth")

# Auth policy:
# - every route in this module is public; sign-in IS the authentication step.
router = APIRouter()


# ---------------------------------------------------------------------------
# SIWE
# ---------------------------------------------------------------------------


@limiter.limit(nonce_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.get("/auth/siwe", response_model=ChallengeResponse, response_model_exclude_none=True)
def siwe_challenge(
    request: Request,
    address: str = Query(min_length=1, max_length=64),
    chain_id: int | None = Query(default=None, alias="chainId"),
    sessions: CookieSessionStore = Depends(get_session_store),
) -> ChallengeResponse:
    """Issue a nonce and the EIP-4361 message the wallet should sign.

    chainId defaults to the configured CHAIN_ID. An invalid address is a
    400 invalid_address; the nonce is only stored once the message builds.
    """
    settings = get_settings()
    nonce = generate_nonce()
    message = generate_siwe_message(address, chain_id or settings.chain_id, nonce, settings=settings)
    issue_nonce(sessions, nonce)
    return ChallengeResponse(nonce=nonce, message=message.prepare_message())


@router.post("/auth/siwe", response_model=SignInResponse)
def siwe_sign_in(
    body: SignInRequest,
    response: Response,
    sessions: CookieSessionStore = Depends(get_session_store),
    verifier: MessageVerifier = Depends(get_verifier),
    store: AccountStore = Depends(get_account_store),
    resolver: RoleResolver = Depends(get_role_resolver),
) -> SignInResponse:
    """Verify a signed SIWE message and log the session in."""
    expected = consume_nonce(sessions)
    try:
        identity = verifier.verify_siwe_signature(body.message, body.signature, expected)
    except AuthError as exc:
        logger.warning("SIWE sign-in rejected: %s", exc.code)
        raise

    account = store.upsert_account_by_address(identity.address, identity.chain_id)
    resolver.initialize_super_admin(account.address)

    session = sessions.load()
    establish(session, identity, auth_method="siwe")
    session.tos_accepted_version = account.tos_accepted_version
    session.tos_accepted_at = account.tos_accepted_at
    sessions.save(session)
    logger.info("SIWE sign-in for %s", account.address)

    response.headers["Cache-Control"] = "no-store"
    return SignInResponse(user=UserSummary.from_account(account))


# ---------------------------------------------------------------------------
# Sign In With Farcaster
# ---------------------------------------------------------------------------


@limiter.limit(nonce_limit)
@router.get("/auth/farcaster", response_model=ChallengeResponse, response_model_exclude_none=True)
def farcaster_challenge(
    request: Request,
    sessions: CookieSessionStore = Depends(get_session_store),
) -> ChallengeResponse:
    """Issue a nonce for the Farcaster client to embed in its SIWF message."""
    return ChallengeResponse(nonce=issue_nonce(sessions))


@router.post("/auth/farcaster", response_model=SignInResponse)
def farcaster_sign_in(
    body: FarcasterSignInRequest,
    response: Response,
    sessions: CookieSessionStore = Depends(get_session_store),
    verifier: MessageVerifier = Depends(get_verifier),
    store: AccountStore = Depends(get_account_store),
    resolver: RoleResolver = Depends(get_role_resolver),
) -> SignInResponse:
    """Verify a SIWF message and log the session in.

    The fid and address come only from the verified message. username,
    displayName and pfpUrl are stored as cosmetic profile data.
    """
    expected = consume_nonce(sessions)
    try:
        identity = verifier.verify_farcaster_sign_in(body.message, body.signature, expected)
    except AuthError as exc:
        logger.warning("SIWF sign-in rejected: %s", exc.code)
        raise

    account = store.upsert_account_by_address(identity.address, identity.chain_id)
    resolver.initialize_super_admin(account.address)
    store.upsert_farcaster_user(account.id, identity.fid, body.username, body.display_name, body.pfp_url)

    session = sessions.load()
    establish(session, identity, auth_method="farcaster")
    session.tos_accepted_version = account.tos_accepted_version
    session.tos_accepted_at = account.tos_accepted_at
    sessions.save(session)
    logger.info("SIWF sign-in for fid %d (%s)", identity.fid, account.address)

    response.headers["Cache-Control"] = "no-store"
    user = UserSummary.from_account(account, fid=identity.fid, farcaster_username=body.username)
    if user.username is None and body.username:
        user = user.model_copy(update={"username": body.username})
    if user.avatar_url is None and body.pfp_url:
        user = user.model_copy(update={"avatar_url": body.pfp_url})
    return SignInResponse(user=user)


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/auth/session", response_model=SessionResponse, response_model_exclude_none=True)
def get_session_state(
    sessions: CookieSessionStore = Depends(get_session_store),
    store: AccountStore = Depends(get_account_store),
) -> SessionResponse:
    """Return the caller's session. Logged-out callers get {isLoggedIn: false}."""
    session = sessions.load()
    if not session.is_logged_in or not session.address:
        return SessionResponse(is_logged_in=False)
    account = store.get_account_by_address(session.address)
    return SessionResponse(
        is_logged_in=True,
        address=session.address,
        chain_id=session.chain_id,
        fid=session.fid,
        auth_method=session.auth_method,
        tos_accepted_version=session.tos_accepted_version,
        user=UserSummary.from_account(account) if account is not None else None,
    )


@router.post("/auth/logout", response_model=SuccessResponse)
def logout(sessions: CookieSessionStore = Depends(get_session_store)) -> SuccessResponse:
    """Destroy the session cookie. Safe to call when already logged out."""
    sessions.destroy()
    return SuccessResponse()
