"""
API request and response models for the Base Mini App REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py and
audit/store.py, which own the internal representation. Route handlers map
between the two.

Wire format is camelCase (chainId, accountId, isLoggedIn ...) to match the
mini app front end. Python code uses snake_case field names; the shared
alias generator converts on the way in and out.
"""

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from audit.store import ApiAuditEntry, AuditLogEntry
from auth.models import Account, AdminPermission, PermissionGrant, Role

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


class _CamelResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)


# ---------------------------------------------------------------------------
# Auth -- requests
# ---------------------------------------------------------------------------


class SignInRequest(_CamelModel):
    """Request body for POST /api/v1/auth/siwe."""

    message: str = Field(min_length=1, max_length=4096)
    signature: str = Field(min_length=1, max_length=4096)


class FarcasterSignInRequest(SignInRequest):
    """Request body for POST /api/v1/auth/farcaster.

    username / display_name / pfp_url are cosmetic profile data supplied by
    the client. They are stored as-is and never used for identity.
    """

    username: Optional[str] = Field(default=None, max_length=100)
    display_name: Optional[str] = Field(default=None, max_length=200)
    pfp_url: Optional[str] = Field(default=None, max_length=2048)


# ---------------------------------------------------------------------------
# Auth -- responses
# ---------------------------------------------------------------------------


class ChallengeResponse(_CamelResponse):
    """Response for GET /api/v1/auth/siwe and GET /api/v1/auth/farcaster."""

    nonce: str
    message: Optional[str] = None


class UserSummary(_CamelResponse):
    id: str
    address: str
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    created_at: str
    fid: Optional[int] = None
    farcaster_username: Optional[str] = None

    @classmethod
    def from_account(cls, account: Account, **extra: Any) -> "UserSummary":
        return cls(
            id=account.id,
            address=account.address,
            username=account.username,
            avatar_url=account.avatar_url,
            created_at=account.created_at,
            **extra,
        )


class SignInResponse(_CamelResponse):
    success: bool = True
    user: UserSummary


class SessionResponse(_CamelResponse):
    """Response for GET /api/v1/auth/session. Only is_logged_in is always set."""

    is_logged_in: bool
    address: Optional[str] = None
    chain_id: Optional[int] = None
    fid: Optional[int] = None
    auth_method: Optional[str] = None
    tos_accepted_version: Optional[str] = None
    user: Optional[UserSummary] = None


class SuccessResponse(_CamelResponse):
    success: bool = True


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class RoleResponse(_CamelResponse):
    """Response for GET /api/v1/admin/role."""

    role: Role
    is_admin: bool
    is_super_admin: bool
    permissions: list[AdminPermission]


class AccountRow(_CamelResponse):
    """One row in GET /api/v1/admin/users."""

    id: str
    address: str
    role: str
    chain_id: int
    username: Optional[str] = None
    created_at: str
    last_seen_at: str

    @classmethod
    def from_account(cls, account: Account) -> "AccountRow":
        return cls(
            id=account.id,
            address=account.address,
            role=account.role,
            chain_id=account.chain_id,
            username=account.username,
            created_at=account.created_at,
            last_seen_at=account.last_seen_at,
        )


class AccountListResponse(_CamelResponse):
    users: list[AccountRow]


class RoleUpdateRequest(_CamelModel):
    """Request body for PATCH /api/v1/admin/users."""

    address: str = Field(min_length=1, max_length=42)
    role: Role


class RoleUpdateResponse(_CamelResponse):
    success: bool = True
    address: str
    role: Role


class GrantRequest(_CamelModel):
    """Request body for POST /api/v1/admin/permissions."""

    account_id: str = Field(min_length=1, max_length=36)
    permission: AdminPermission
    signature: Optional[str] = Field(default=None, max_length=4096)


class RevokeRequest(_CamelModel):
    """Request body for DELETE /api/v1/admin/permissions/{account_id}."""

    permission: AdminPermission


class GrantRow(_CamelResponse):
    id: str
    account_id: str
    permission: AdminPermission
    granted_by: str
    granted_at: str
    signature: Optional[str] = None

    @classmethod
    def from_grant(cls, grant: PermissionGrant) -> "GrantRow":
        return cls(
            id=grant.id,
            account_id=grant.account_id,
            permission=grant.permission,
            granted_by=grant.granted_by,
            granted_at=grant.granted_at,
            signature=grant.signature,
        )


class GrantListResponse(_CamelResponse):
    grants: list[GrantRow]


class GrantResponse(_CamelResponse):
    success: bool = True
    grant: GrantRow


class RevokeResponse(_CamelResponse):
    success: bool = True
    revoked: bool


class AuditEntryRow(_CamelResponse):
    id: str
    account_id: str
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    previous_value: Optional[dict] = None
    new_value: Optional[dict] = None
    metadata: dict = Field(default_factory=dict)
    success: bool
    error_message: Optional[str] = None
    request_id: Optional[str] = None
    created_at: str

    @classmethod
    def from_entry(cls, entry: AuditLogEntry) -> "AuditEntryRow":
        return cls(
            id=entry.id,
            account_id=entry.account_id,
            action=entry.action,
            resource_type=entry.resource_type,
            resource_id=entry.resource_id,
            previous_value=entry.previous_value,
            new_value=entry.new_value,
            metadata=entry.metadata,
            success=entry.success,
            error_message=entry.error_message,
            request_id=entry.request_id,
            created_at=entry.created_at,
        )


class AuditLogResponse(_CamelResponse):
    entries: list[AuditEntryRow]


# ---------------------------------------------------------------------------
# User
# ---------------------------------------------------------------------------


class ProfileUpdateRequest(_CamelModel):
    """Request body for PATCH /api/v1/user. Omitted fields are left unchanged."""

    username: Optional[str] = Field(default=None, max_length=50)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)


class AcceptTosRequest(_CamelModel):
    version: str = Field(min_length=1, max_length=20)


class AcceptTosResponse(_CamelResponse):
    success: bool = True
    version: str
    accepted_at: Optional[str] = None


class ProfileResponse(_CamelResponse):
    id: str
    address: str
    username: Optional[str] = None
    avatar_url: Optional[str] = None
    tos_accepted_version: Optional[str] = None
    tos_accepted_at: Optional[str] = None
    created_at: str

    @classmethod
    def from_account(cls, account: Account) -> "ProfileResponse":
        return cls(
            id=account.id,
            address=account.address,
            username=account.username,
            avatar_url=account.avatar_url,
            tos_accepted_version=account.tos_accepted_version,
            tos_accepted_at=account.tos_accepted_at,
            created_at=account.created_at,
        )


class UserResponse(_CamelResponse):
    user: ProfileResponse


class ApiRequestRow(_CamelResponse):
    id: str
    endpoint: str
    method: str
    response_status: int
    response_time_ms: Optional[int] = None
    created_at: str

    @classmethod
    def from_entry(cls, entry: ApiAuditEntry) -> "ApiRequestRow":
        return cls(
            id=entry.id,
            endpoint=entry.endpoint,
            method=entry.method,
            response_status=entry.response_status,
            response_time_ms=entry.response_time_ms,
            created_at=entry.created_at,
        )


class UserAuditLogResponse(_CamelResponse):
    entries: list[ApiRequestRow]
    total: int
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Errors / health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/v1/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
    database: str = "ok"
