"""
auth/roles.py -- Role resolution with a short-lived cache.

RoleResolver answers "what can this address do" without a database query on
every request. Lookups go through an injected RoleCache keyed by the
lower-cased address:

    role:<address>   -> Role value
    perms:<address>  -> list of granted permission strings (admins only)

Invalidation is synchronous. update_user_role() clears both keys for the
target address before returning, so an isAdmin check that follows a demotion
can never see the old role. Grants and revokes go through
auth.permissions.PermissionGrantStore, which clears the perms: key the same
way.

Unknown addresses resolve to Role.user -- never an error.

Layer rule: no imports from api/ or audit/. cache/ is imported for the cache
type only; the instance is injected.
"""

from __future__ import annotations

import logging

from auth.errors import AccountNotFoundError
from auth.models import SUPER_ADMIN_PERMISSIONS, AdminPermission, AdminPermissions, Role
from auth.store import AccountStore, normalize_address
from cache.store import RoleCache
from core.config import get_settings

logger = logging.getLogger("baseapp.auth.roles")


def role_key(address: str) -> str:
    return f"role:{normalize_address(address)}"


def perms_key(address: str) -> str:
    return f"perms:{normalize_address(address)}"


class RoleResolver:
    """Maps addresses to roles and permissions.

    Usage:
        resolver = RoleResolver(store, RoleCache())
        resolver.is_admin("0xAbC...")
        resolver.update_user_role("0xabc...", Role.admin)
    """

    def __init__(
        self,
        store: AccountStore,
        cache: RoleCache,
        super_admin_address: str | None = None,
    ) -> None:
        self.store = store
        self.cache = cache
        configured = get_settings().initial_super_admin_address if super_admin_address is None else super_admin_address
        self.super_admin_address = normalize_address(configured) if configured else ""

    # ------------------------------------------------------------------
    # Role lookups
    # ------------------------------------------------------------------

    def get_user_role(self, address: str) -> Role:
        """Return the role for address; Role.user when no account exists."""
        key = role_key(address)
        cached = self.cache.get(key)
        if cached is not None:
            return Role(cached)

        account = self.store.get_account_by_address(address)
        if account is None:
            # Not cached: the account may be created by the next login.
            return Role.user
        try:
            role = Role(account.role)
        except ValueError:
            logger.warning("Account %s has unknown role %r; treating as user", account.address, account.role)
            role = Role.user
        self.cache.set(key, role.value)
        return role

    def is_admin(self, address: str) -> bool:
        return self.get_user_role(address) in (Role.admin, Role.superadmin)

    def is_super_admin(self, address: str) -> bool:
        return self.get_user_role(address) == Role.superadmin

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_user_role(self, address: str, role: Role | str) -> None:
        """Persist a new role and drop cached role/permissions for address.

        Raises AccountNotFoundError if no account has that address.
        """
        new_role = Role(role)
        updated = self.store.update_role(address, new_role.value)
        self.invalidate(address)
        if not updated:
            raise AccountNotFoundError()
        logger.info("Role for %s set to %s", normalize_address(address), new_role.value)

    def initialize_super_admin(self, address: str) -> bool:
        """Promote the configured bootstrap address to superadmin.

        No-op for every other address, for an address without an account row,
        and for an account that is already superadmin. Returns True only when
        a promotion actually happened, so it is safe to call on every login.
        """
        if not self.super_admin_address or normalize_address(address) != self.super_admin_address:
            return False
        account = self.store.get_account_by_address(address)
        if account is None or account.role == Role.superadmin.value:
            return False
        self.store.update_role(address, Role.superadmin.value)
        self.invalidate(address)
        logger.info("Super admin initialized: %s", normalize_address(address))
        return True

    def invalidate(self, address: str) -> None:
        self.cache.delete(role_key(address))
        self.cache.delete(perms_key(address))

    # ------------------------------------------------------------------
    # Permissions
    # ------------------------------------------------------------------

    def get_admin_permissions(self, address: str) -> AdminPermissions:
        """Resolve role and effective permissions for address.

        superadmin -> every defined permission, grant table not consulted.
        admin      -> explicitly granted permissions (cached).
        user       -> no permissions.
        """
        role = self.get_user_role(address)
        if role == Role.superadmin:
            return AdminPermissions(role=role, permissions=list(SUPER_ADMIN_PERMISSIONS))
        if role != Role.admin:
            return AdminPermissions(role=role, permissions=[])
        return AdminPermissions(role=role, permissions=self._granted_permissions(address))

    def _granted_permissions(self, address: str) -> list[AdminPermission]:
        key = perms_key(address)
        cached = self.cache.get(key)
        if cached is None:
            cached = tuple(self.store.list_permissions_for_address(address))
            self.cache.set(key, cached)
        result: list[AdminPermission] = []
        for value in cached:
            try:
                result.append(AdminPermission(value))
            except ValueError:
                # Grant rows for permissions removed from the enum are ignored.
                continue
        return result
