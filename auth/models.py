"""
auth/models.py -- Domain dataclasses and enums for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these classes only own the domain shape.

Layer rule: no imports from api/, audit/, or cache/.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class Role(str, Enum):
    """Coarse account role. Ordered from least to most privileged."""

    user = "user"
    admin = "admin"
    superadmin = "superadmin"


class AdminPermission(str, Enum):
    """Granular admin permissions. Superadmins implicitly hold all of them.

    Projects extending the template can add app-specific values here; the
    superadmin set is always derived from the full enumeration.
    """

    # User management
    MANAGE_USERS = "manage_users"
    MANAGE_ROLES = "manage_roles"
    VIEW_USERS = "view_users"

    # NFT / Collections
    MANAGE_COLLECTIONS = "manage_collections"

    # System
    MANAGE_SETTINGS = "manage_settings"
    VIEW_AUDIT_LOG = "view_audit_log"
    MANAGE_PERMISSIONS = "manage_permissions"
    VIEW_ANALYTICS = "view_analytics"


SUPER_ADMIN_PERMISSIONS: tuple[AdminPermission, ...] = tuple(AdminPermission)

DEFAULT_ADMIN_PERMISSIONS: tuple[AdminPermission, ...] = (
    AdminPermission.VIEW_USERS,
    AdminPermission.MANAGE_COLLECTIONS,
    AdminPermission.VIEW_AUDIT_LOG,
    AdminPermission.VIEW_ANALYTICS,
)


@dataclass
class Account:
    """A wallet account. `address` is always stored lower-cased.

    role is only ever changed by RoleResolver.update_user_role() or the
    superadmin bootstrap -- a login upsert never touches it.
    """

    address: str
    id: str | None = None
    role: str = Role.user.value
    chain_id: int = 8453
    username: str | None = None
    avatar_url: str | None = None
    tos_accepted_version: str | None = None
    tos_accepted_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
    last_seen_at: str | None = None


@dataclass
class FarcasterUser:
    """Link between an account and a Farcaster fid.

    username / display_name / pfp_url come from the client and are cosmetic.
    Only the fid is backed by a verified signature.
    """

    account_id: str
    fid: int
    username: str | None = None
    display_name: str | None = None
    pfp_url: str | None = None
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class PermissionGrant:
    """One explicit (account, permission) grant. Unique on that pair."""

    account_id: str
    permission: AdminPermission
    granted_by: str
    id: str | None = None
    granted_at: str | None = None
    signature: str | None = None  # optional off-chain attestation


@dataclass
class AdminPermissions:
    """Resolved authorization view of one address."""

    role: Role
    permissions: list[AdminPermission] = field(default_factory=list)


@dataclass
class VerifiedIdentity:
    """Output of a successful SIWE / SIWF verification.

    address is taken from the verified message only, never from any other
    request field. fid is set for Farcaster sign-ins.
    """

    address: str
    chain_id: int
    fid: int | None = None
