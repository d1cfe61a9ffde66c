"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

The principal is the sealed session cookie (auth/session.py). Every helper
loads it through a CookieSessionStore bound to the request, so a route that
both reads and rewrites the session sees one consistent object.

Authorization state machine for protected routes:
  no logged-in session          -> NotAuthenticatedError       (401)
  logged in, role too low       -> InsufficientRoleError       (403)
  admin, permission not granted -> InsufficientPermissionError (403)
  otherwise                     -> the Session is returned

get_current_session() is the soft variant (never raises).
require_auth() raises 401. require_admin() / require_superadmin() raise 403
on role. require_permission(p) builds a dependency that additionally needs p.

Stores live on app.state (created by the lifespan in api/main.py); the
get_* accessors below are the only place routes reach for them.

Layer rule: no imports from api/ or cache/.
  auth/dependencies.py may import from fastapi (for Request) because this
  module is part of the FastAPI dependency injection system. audit/ is
  imported for the AuditStore type only.
"""

from __future__ import annotations

from collections.abc import Callable

from fastapi import Request

from audit.store import AuditStore
from auth.errors import InsufficientPermissionError, InsufficientRoleError, NotAuthenticatedError
from auth.models import AdminPermission
from auth.permissions import PermissionGrantStore
from auth.roles import RoleResolver
from auth.session import CookieSessionStore, Session
from auth.siwe import MessageVerifier
from auth.store import AccountStore

# ---------------------------------------------------------------------------
# app.state accessors
# ---------------------------------------------------------------------------


def get_session_store(request: Request) -> CookieSessionStore:
    return CookieSessionStore(request)


def get_account_store(request: Request) -> AccountStore:
    return request.app.state.account_store


def get_audit_store(request: Request) -> AuditStore:
    return request.app.state.audit_store


def get_role_resolver(request: Request) -> RoleResolver:
    return request.app.state.role_resolver


def get_grant_store(request: Request) -> PermissionGrantStore:
    return request.app.state.grant_store


def get_verifier(request: Request) -> MessageVerifier:
    return request.app.state.verifier


# ---------------------------------------------------------------------------
# Session / role gates
# ---------------------------------------------------------------------------


def get_current_session(request: Request) -> Session | None:
    """Return the logged-in Session, or None. Never raises."""
    session = get_session_store(request).load()
    if not session.is_logged_in or not session.address:
        return None
    return session


def require_auth(request: Request) -> Session:
    """Require a logged-in session. Raises NotAuthenticatedError (401).

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(session: Session = Depends(require_auth)): ...
    """
    session = get_current_session(request)
    if session is None:
        raise NotAuthenticatedError()
    return session


def require_admin(request: Request) -> Session:
    """Require admin or superadmin. 401 if unauthenticated, 403 if not admin."""
    session = require_auth(request)
    if not get_role_resolver(request).is_admin(session.address):
        raise InsufficientRoleError()
    return session


def require_superadmin(request: Request) -> Session:
    session = require_auth(request)
    if not get_role_resolver(request).is_super_admin(session.address):
        raise InsufficientRoleError("Super admin access required.")
    return session


def require_permission(permission: AdminPermission) -> Callable[[Request], Session]:
    """Dependency factory: admin role plus one specific permission.

    Superadmins pass every permission check.

        @router.get("/admin/users")
        async def route(session: Session = Depends(require_permission(AdminPermission.VIEW_USERS))): ...
    """

    def dependency(request: Request) -> Session:
        session = require_admin(request)
        if not get_grant_store(request).has_permission(session.address, permission):
            raise InsufficientPermissionError(permission.value)
        return session

    return dependency
