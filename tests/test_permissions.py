"""
tests/test_permissions.py -- Unit tests for auth.permissions.PermissionGrantStore.

Covers:
  - grant is idempotent on (account, permission); re-grant refreshes granted_by
  - revoke negates a grant; revoking an absent grant is a no-op
  - grant/revoke invalidate the cached permission list before returning
  - superadmin passes has_permission with no grant rows
  - plain users fail has_permission even with a stray grant row
  - unknown target account -> AccountNotFoundError
"""

from __future__ import annotations

import pytest

from auth.errors import AccountNotFoundError
from auth.models import AdminPermission, Role
from auth.permissions import PermissionGrantStore
from auth.roles import RoleResolver
from cache.store import RoleCache

ADMIN = "0x2222222222222222222222222222222222222222"
SUPER = "0x3333333333333333333333333333333333333333"


@pytest.fixture
def setup(store):
    resolver = RoleResolver(store, RoleCache(), super_admin_address="")
    grants = PermissionGrantStore(store, resolver)
    admin = store.upsert_account_by_address(ADMIN, 8453)
    superadmin = store.upsert_account_by_address(SUPER, 8453)
    resolver.update_user_role(ADMIN, Role.admin)
    resolver.update_user_role(SUPER, Role.superadmin)
    return grants, admin, superadmin


def test_grant_is_idempotent(setup):
    grants, admin, superadmin = setup
    grants.grant_permission(admin.id, AdminPermission.VIEW_USERS, superadmin.id)
    grants.grant_permission(admin.id, AdminPermission.VIEW_USERS, admin.id, signature="0xsig")
    rows = grants.get_permission_grants(admin.id)
    assert len(rows) == 1
    assert rows[0].granted_by == admin.id
    assert rows[0].signature == "0xsig"


def test_grant_then_revoke(setup):
    grants, admin, superadmin = setup
    grants.grant_permission(admin.id, AdminPermission.MANAGE_PERMISSIONS, superadmin.id)
    assert grants.has_permission(ADMIN, AdminPermission.MANAGE_PERMISSIONS) is True
    assert grants.revoke_permission(admin.id, AdminPermission.MANAGE_PERMISSIONS, superadmin.id) is True
    assert grants.has_permission(ADMIN, AdminPermission.MANAGE_PERMISSIONS) is False


def test_revoke_absent_grant_is_noop(setup):
    grants, admin, superadmin = setup
    assert grants.revoke_permission(admin.id, AdminPermission.VIEW_ANALYTICS, superadmin.id) is False
    assert grants.get_permission_grants(admin.id) == []


def test_grant_is_visible_despite_cached_permissions(setup):
    grants, admin, superadmin = setup
    assert grants.has_permission(ADMIN, AdminPermission.VIEW_USERS) is False  # caches empty list
    grants.grant_permission(admin.id, AdminPermission.VIEW_USERS, superadmin.id)
    assert grants.has_permission(ADMIN, AdminPermission.VIEW_USERS) is True


def test_has_any_permission(setup):
    grants, admin, superadmin = setup
    grants.grant_permission(admin.id, AdminPermission.VIEW_AUDIT_LOG, superadmin.id)
    assert grants.has_any_permission(ADMIN, [AdminPermission.MANAGE_USERS, AdminPermission.VIEW_AUDIT_LOG])
    assert not grants.has_any_permission(ADMIN, [AdminPermission.MANAGE_USERS, AdminPermission.MANAGE_ROLES])


def test_superadmin_holds_everything(setup):
    grants, _, _ = setup
    for perm in AdminPermission:
        assert grants.has_permission(SUPER, perm) is True
        assert grants.has_permission(SUPER.upper().replace("0X", "0x"), perm) is True


def test_plain_user_never_has_permission(setup, store):
    grants, _, superadmin = setup
    user = store.upsert_account_by_address("0x4444444444444444444444444444444444444444", 8453)
    grants.grant_permission(user.id, AdminPermission.VIEW_USERS, superadmin.id)
    assert grants.has_permission(user.address, AdminPermission.VIEW_USERS) is False


def test_grant_to_unknown_account_raises(setup):
    grants, _, superadmin = setup
    with pytest.raises(AccountNotFoundError):
        grants.grant_permission("no-such-account", AdminPermission.VIEW_USERS, superadmin.id)


def test_grants_listed_newest_first(setup):
    grants, admin, superadmin = setup
    grants.grant_permission(admin.id, AdminPermission.VIEW_USERS, superadmin.id)
    grants.grant_permission(admin.id, AdminPermission.VIEW_ANALYTICS, superadmin.id)
    rows = grants.get_permission_grants(admin.id)
    assert [r.permission for r in rows] == [AdminPermission.VIEW_ANALYTICS, AdminPermission.VIEW_USERS]
