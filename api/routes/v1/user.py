"""
api/routes/v1/user.py -- Signed-in user's own profile endpoints.

Routes:
  GET   /api/v1/user            -- own profile
  PATCH /api/v1/user            -- update username / avatarUrl
  POST  /api/v1/user/accept-tos -- record terms-of-service acceptance
  GET   /api/v1/user/audit-log  -- own API request history, newest first

Every route requires a logged-in session and only ever touches the account
at the session address. There is no way to address another account here.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query

from api.models import (
    AcceptTosRequest,
    AcceptTosResponse,
    ApiRequestRow,
    ProfileResponse,
    ProfileUpdateRequest,
    UserAuditLogResponse,
    UserResponse,
)
from audit.store import AuditStore
from auth.dependencies import get_account_store, get_audit_store, get_session_store, require_auth
from auth.errors import AccountNotFoundError
from auth.session import CookieSessionStore, Session
from auth.store import AccountStore

# Auth policy: every route requires auth (require_auth).
router = APIRouter()


@router.get("/user", response_model=UserResponse)
def get_profile(
    session: Session = Depends(require_auth),
    store: AccountStore = Depends(get_account_store),
) -> UserResponse:
    account = store.get_account_by_address(session.address)
    if account is None:
        raise AccountNotFoundError("User not found.")
    return UserResponse(user=ProfileResponse.from_account(account))


@router.patch("/user", response_model=UserResponse)
def update_profile(
    body: ProfileUpdateRequest,
    session: Session = Depends(require_auth),
    store: AccountStore = Depends(get_account_store),
) -> UserResponse:
    """Update cosmetic profile fields. Omitted or null fields are left unchanged."""
    account = store.update_profile(session.address, username=body.username, avatar_url=body.avatar_url)
    if account is None:
        raise AccountNotFoundError("User not found.")
    return UserResponse(user=ProfileResponse.from_account(account))


@router.post("/user/accept-tos", response_model=AcceptTosResponse)
def accept_tos(
    body: AcceptTosRequest,
    session: Session = Depends(require_auth),
    sessions: CookieSessionStore = Depends(get_session_store),
    store: AccountStore = Depends(get_account_store),
) -> AcceptTosResponse:
    """Stamp the accepted version on the account and mirror it into the session."""
    account = store.update_tos_acceptance(session.address, body.version)
    if account is None:
        raise AccountNotFoundError("User not found.")
    session.tos_accepted_version = body.version
    session.tos_accepted_at = account.tos_accepted_at
    sessions.save(session)
    return AcceptTosResponse(version=body.version, accepted_at=account.tos_accepted_at)


@router.get("/user/audit-log", response_model=UserAuditLogResponse)
def get_own_audit_log(
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(require_auth),
    store: AccountStore = Depends(get_account_store),
    audit: AuditStore = Depends(get_audit_store),
) -> UserAuditLogResponse:
    account_id = store.get_account_id_by_address(session.address)
    if account_id is None:
        return UserAuditLogResponse(entries=[], total=0, limit=limit, offset=offset)
    entries, total = audit.list_api_requests(account_id, limit=limit, offset=offset)
    return UserAuditLogResponse(
        entries=[ApiRequestRow.from_entry(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )
