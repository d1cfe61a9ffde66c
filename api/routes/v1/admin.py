"""
api/routes/v1/admin.py -- Role, permission and audit administration endpoints.

Routes:
  GET    /api/v1/admin/role                     -- caller's role + permissions (auth; never 403)
  GET    /api/v1/admin/users                    -- list accounts (admin)
  PATCH  /api/v1/admin/users                    -- change a role (superadmin; audited role.update)
  GET    /api/v1/admin/permissions?accountId=   -- list grants (admin + manage_permissions)
  POST   /api/v1/admin/permissions              -- grant (admin + manage_permissions; audited)
  DELETE /api/v1/admin/permissions/{account_id} -- revoke (admin + manage_permissions; audited)
  GET    /api/v1/admin/audit                    -- query the admin audit log (admin + view_audit_log)

Mutations run inside AuditStore.with_audit_log() so both successful and
failed attempts leave an audit row. The acting account is resolved from the
session address; a session without an account row is a 400 granter_not_found.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    AccountListResponse,
    AccountRow,
    AuditEntryRow,
    AuditLogResponse,
    GrantListResponse,
    GrantRequest,
    GrantResponse,
    GrantRow,
    RevokeRequest,
    RevokeResponse,
    RoleResponse,
    RoleUpdateRequest,
    RoleUpdateResponse,
)
from audit.store import AuditLogEntry, AuditStore, hash_ip
from auth.dependencies import (
    get_account_store,
    get_audit_store,
    get_grant_store,
    get_role_resolver,
    require_admin,
    require_auth,
    require_permission,
    require_superadmin,
)
from auth.errors import GranterNotFoundError
from auth.models import AdminPermission, Role
from auth.permissions import PermissionGrantStore
from auth.roles import RoleResolver
from auth.session import Session
from auth.store import AccountStore, normalize_address

# Auth policy:
# - GET    /admin/role:        requires auth (require_auth) -- answers "am I an admin?"
# - GET    /admin/users:       requires admin
# - PATCH  /admin/users:       requires superadmin
# - *      /admin/permissions: requires admin + manage_permissions
# - GET    /admin/audit:       requires admin + view_audit_log
router = APIRouter()


def _actor_account_id(store: AccountStore, session: Session) -> str:
    account_id = store.get_account_id_by_address(session.address)
    if account_id is None:
        raise GranterNotFoundError()
    return account_id


def _audit_entry(request: Request, actor_id: str, action: str, resource_type: str, resource_id: str) -> AuditLogEntry:
    return AuditLogEntry(
        account_id=actor_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        ip_hash=hash_ip(request.client.host if request.client else None),
        request_id=request.headers.get("X-Request-ID"),
    )


# ---------------------------------------------------------------------------
# Role
# ---------------------------------------------------------------------------


@router.get("/admin/role", response_model=RoleResponse)
def get_role(
    session: Session = Depends(require_auth),
    resolver: RoleResolver = Depends(get_role_resolver),
) -> RoleResponse:
    """Return the caller's role and effective permissions.

    Plain users get role=user with an empty permission list, not a 403.
    """
    perms = resolver.get_admin_permissions(session.address)
    return RoleResponse(
        role=perms.role,
        is_admin=perms.role in (Role.admin, Role.superadmin),
        is_super_admin=perms.role == Role.superadmin,
        permissions=perms.permissions,
    )


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


@router.get("/admin/users", response_model=AccountListResponse)
def list_users(
    session: Session = Depends(require_admin),
    store: AccountStore = Depends(get_account_store),
) -> AccountListResponse:
    return AccountListResponse(users=[AccountRow.from_account(a) for a in store.list_accounts()])


@router.patch("/admin/users", response_model=RoleUpdateResponse)
def update_user_role(
    request: Request,
    body: RoleUpdateRequest,
    session: Session = Depends(require_superadmin),
    store: AccountStore = Depends(get_account_store),
    resolver: RoleResolver = Depends(get_role_resolver),
    audit: AuditStore = Depends(get_audit_store),
) -> RoleUpdateResponse:
    """Set the role of the account at body.address.

    The resolver clears the target's cached role and permissions before this
    returns, so the next request from that address sees the new role.
    """
    target = normalize_address(body.address)
    entry = _audit_entry(request, _actor_account_id(store, session), "role.update", "user", target)

    def previous() -> dict | None:
        account = store.get_account_by_address(target)
        return {"role": account.role} if account is not None else None

    audit.with_audit_log(
        entry,
        lambda: resolver.update_user_role(target, body.role),
        get_previous_value=previous,
        to_new_value=lambda _: {"role": body.role.value},
    )
    return RoleUpdateResponse(address=target, role=body.role)


# ---------------------------------------------------------------------------
# Permissions
# ---------------------------------------------------------------------------


@router.get("/admin/permissions", response_model=GrantListResponse)
def list_permissions(
    account_id: str = Query(min_length=1, max_length=36, alias="accountId"),
    session: Session = Depends(require_permission(AdminPermission.MANAGE_PERMISSIONS)),
    grants: PermissionGrantStore = Depends(get_grant_store),
) -> GrantListResponse:
    return GrantListResponse(grants=[GrantRow.from_grant(g) for g in grants.get_permission_grants(account_id)])


@router.post("/admin/permissions", response_model=GrantResponse)
def grant_permission(
    request: Request,
    body: GrantRequest,
    session: Session = Depends(require_permission(AdminPermission.MANAGE_PERMISSIONS)),
    store: AccountStore = Depends(get_account_store),
    grants: PermissionGrantStore = Depends(get_grant_store),
    audit: AuditStore = Depends(get_audit_store),
) -> GrantResponse:
    """Grant body.permission to body.account_id. Re-granting refreshes the row."""
    granter_id = _actor_account_id(store, session)
    entry = _audit_entry(request, granter_id, "permission.grant", "permission", body.account_id)
    entry.metadata = {"permission": body.permission.value}
    grant = audit.with_audit_log(
        entry,
        lambda: grants.grant_permission(body.account_id, body.permission, granter_id, body.signature),
        to_new_value=lambda g: {"permission": g.permission.value, "granted_by": g.granted_by},
    )
    return GrantResponse(grant=GrantRow.from_grant(grant))


@router.delete("/admin/permissions/{account_id}", response_model=RevokeResponse)
def revoke_permission(
    request: Request,
    account_id: str,
    body: RevokeRequest,
    session: Session = Depends(require_permission(AdminPermission.MANAGE_PERMISSIONS)),
    store: AccountStore = Depends(get_account_store),
    grants: PermissionGrantStore = Depends(get_grant_store),
    audit: AuditStore = Depends(get_audit_store),
) -> RevokeResponse:
    """Revoke body.permission from account_id. Revoking an absent grant is a no-op."""
    revoker_id = _actor_account_id(store, session)
    entry = _audit_entry(request, revoker_id, "permission.revoke", "permission", account_id)
    entry.metadata = {"permission": body.permission.value}

    def previous() -> dict:
        held = any(g.permission == body.permission for g in grants.get_permission_grants(account_id))
        return {"granted": held}

    revoked = audit.with_audit_log(
        entry,
        lambda: grants.revoke_permission(account_id, body.permission, revoker_id),
        get_previous_value=previous,
        to_new_value=lambda removed: {"revoked": removed},
    )
    return RevokeResponse(revoked=revoked)


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


@router.get("/admin/audit", response_model=AuditLogResponse)
def get_audit_log(
    account_id: str | None = Query(default=None, alias="accountId", max_length=36),
    action: str | None = Query(default=None, max_length=50),
    resource_type: str | None = Query(default=None, alias="resourceType", max_length=20),
    resource_id: str | None = Query(default=None, alias="resourceId", max_length=100),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    session: Session = Depends(require_permission(AdminPermission.VIEW_AUDIT_LOG)),
    audit: AuditStore = Depends(get_audit_store),
) -> AuditLogResponse:
    entries = audit.get_audit_log(
        account_id=account_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        limit=limit,
        offset=offset,
    )
    return AuditLogResponse(entries=[AuditEntryRow.from_entry(e) for e in entries])
