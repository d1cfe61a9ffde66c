"""
auth/permissions.py -- Fine-grained admin permission grants.

PermissionGrantStore wraps the admin_permissions table with the rules the
rest of the system relies on:

  - grant_permission() upserts on (account_id, permission). Granting twice
    leaves one row carrying the latest granted_by / signature.
  - revoke_permission() deletes the row; revoking a permission that was never
    granted is a no-op.
  - Both clear the target account's cached permissions before returning.
  - has_permission() / has_any_permission() short-circuit to True for
    superadmins without reading the grant table.

Auditing is the caller's job: the HTTP layer wraps grant/revoke in
audit.store.AuditStore.with_audit_log(). This module never writes audit rows.

Layer rule: no imports from api/ or audit/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from auth.errors import AccountNotFoundError
from auth.models import AdminPermission, PermissionGrant, Role
from auth.roles import RoleResolver, perms_key
from auth.store import AccountStore

logger = logging.getLogger("baseapp.auth.permissions")


class PermissionGrantStore:
    """CRUD over permission grants with cache invalidation.

    Usage:
        grants = PermissionGrantStore(store, resolver)
        grants.grant_permission(account_id, AdminPermission.VIEW_USERS, granter_id)
        grants.has_permission("0xabc...", AdminPermission.VIEW_USERS)
    """

    def __init__(self, store: AccountStore, resolver: RoleResolver) -> None:
        self.store = store
        self.resolver = resolver

    def grant_permission(
        self,
        account_id: str,
        permission: AdminPermission | str,
        granter_account_id: str,
        signature: str | None = None,
    ) -> PermissionGrant:
        """Grant permission to account_id, attributed to granter_account_id.

        Raises AccountNotFoundError if account_id has no account row.
        """
        perm = AdminPermission(permission)
        target = self.store.get_account_by_id(account_id)
        if target is None:
            raise AccountNotFoundError()
        grant = self.store.upsert_grant(account_id, perm.value, granter_account_id, signature)
        self.resolver.cache.delete(perms_key(target.address))
        logger.info("Granted %s to account %s", perm.value, account_id)
        return grant

    def revoke_permission(
        self,
        account_id: str,
        permission: AdminPermission | str,
        revoker_account_id: str,
    ) -> bool:
        """Revoke permission from account_id. Returns False if nothing was granted."""
        perm = AdminPermission(permission)
        removed = self.store.delete_grant(account_id, perm.value)
        target = self.store.get_account_by_id(account_id)
        if target is not None:
            self.resolver.cache.delete(perms_key(target.address))
        else:
            self.resolver.cache.invalidate_prefix("perms:")
        if removed:
            logger.info("Revoked %s from account %s (by %s)", perm.value, account_id, revoker_account_id)
        return removed

    def get_permission_grants(self, account_id: str) -> list[PermissionGrant]:
        return self.store.list_grants(account_id)

    def has_permission(self, address: str, permission: AdminPermission | str) -> bool:
        """True if address holds permission. Superadmins hold everything."""
        return self.has_any_permission(address, [permission])

    def has_any_permission(self, address: str, permissions: Iterable[AdminPermission | str]) -> bool:
        wanted = [AdminPermission(p) for p in permissions]
        role = self.resolver.get_user_role(address)
        if role == Role.superadmin:
            return True
        if role != Role.admin:
            return False
        granted = set(self.resolver.get_admin_permissions(address).permissions)
        return any(p in granted for p in wanted)
