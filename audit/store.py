"""
audit/store.py -- Append-only admin and API audit logs.

Two sinks share one database:

  admin_audit_log  who changed which role / permission / setting, with the
                   value before and after and whether the change succeeded.
  api_audit_log    one row per API request: endpoint, method, status,
                   latency, and a SHA-256 hash of the client IP (never the IP).

Rows are written once and never updated or deleted by application code.

Failure policy: log_admin_audit() and log_api_request() catch SQLAlchemyError,
log it, and return None. An audit outage must not turn a successful grant into
a 500. with_audit_log() re-raises the wrapped operation's own exception after
recording the failed attempt.

Layer rule: no imports from api/ or cache/. auth/ is imported for the shared
engine helpers only.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from sqlalchemy import JSON, Boolean, Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from auth.store import _new_id, _now_iso, create_db_engine
from core.config import get_settings

logger = logging.getLogger("baseapp.audit")

T = TypeVar("T")

ADMIN_ACTIONS = (
    "permission.grant",
    "permission.revoke",
    "role.update",
    "user.ban",
    "user.unban",
    "setting.update",
    "collection.create",
    "collection.update",
    "collection.delete",
)

RESOURCE_TYPES = ("user", "permission", "setting", "collection")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_admin_audit_log = Table(
    "admin_audit_log",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("action", String(50), nullable=False, index=True),
    Column("resource_type", String(20), nullable=False),
    Column("resource_id", String(100)),
    Column("previous_value", JSON),
    Column("new_value", JSON),
    Column("metadata", JSON),
    Column("success", Boolean, nullable=False),
    Column("error_message", Text),
    Column("ip_hash", String(64)),
    Column("request_id", String(64)),
    Column("created_at", String(32), nullable=False, index=True),
)

_api_audit_log = Table(
    "api_audit_log",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("endpoint", String(200), nullable=False),
    Column("method", String(10), nullable=False),
    Column("account_id", String(36), index=True),
    Column("response_status", Integer, nullable=False),
    Column("response_time_ms", Integer),
    Column("ip_hash", String(64)),
    Column("created_at", String(32), nullable=False),
)


# ---------------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------------


@dataclass
class AuditLogEntry:
    """One admin_audit_log row. action and resource_type are closed vocabularies."""

    account_id: str
    action: str
    resource_type: str
    resource_id: str | None = None
    previous_value: dict | None = None
    new_value: dict | None = None
    metadata: dict = field(default_factory=dict)
    success: bool = True
    error_message: str | None = None
    ip_hash: str | None = None
    request_id: str | None = None
    id: str | None = None
    created_at: str | None = None

    def __post_init__(self) -> None:
        if self.action not in ADMIN_ACTIONS:
            raise ValueError(f"Unknown audit action: {self.action!r}")
        if self.resource_type not in RESOURCE_TYPES:
            raise ValueError(f"Unknown audit resource type: {self.resource_type!r}")


@dataclass
class ApiAuditEntry:
    endpoint: str
    method: str
    response_status: int
    account_id: str | None = None
    response_time_ms: int | None = None
    ip_hash: str | None = None
    id: str | None = None
    created_at: str | None = None


def hash_ip(ip: str | None) -> str:
    """SHA-256 hex digest of the client IP; 'unknown' when the IP is absent."""
    return hashlib.sha256((ip or "unknown").encode()).hexdigest()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class AuditStore:
    """Writes and queries the audit tables.

    Usage:
        audit = AuditStore()
        audit.log_admin_audit(AuditLogEntry(account_id=..., action="role.update",
                                            resource_type="user", resource_id=address))
        audit.get_audit_log(action="role.update", limit=20)
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_db_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Admin audit log
    # ------------------------------------------------------------------

    def log_admin_audit(self, entry: AuditLogEntry) -> str | None:
        """Append entry. Returns the new row id, or None if the write failed."""
        entry_id = _new_id()
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _admin_audit_log.insert().values(
                        id=entry_id,
                        account_id=entry.account_id,
                        action=entry.action,
                        resource_type=entry.resource_type,
                        resource_id=entry.resource_id,
                        previous_value=entry.previous_value,
                        new_value=entry.new_value,
                        metadata=entry.metadata or {},
                        success=entry.success,
                        error_message=entry.error_message,
                        ip_hash=entry.ip_hash,
                        request_id=entry.request_id,
                        created_at=_now_iso(),
                    )
                )
        except SQLAlchemyError:
            logger.exception("Failed to write admin audit entry action=%s", entry.action)
            return None
        return entry_id

    def with_audit_log(
        self,
        entry: AuditLogEntry,
        operation: Callable[[], T],
        get_previous_value: Callable[[], dict | None] | None = None,
        to_new_value: Callable[[T], dict | None] | None = None,
    ) -> T:
        """Run operation and record it in the admin audit log.

        get_previous_value is called before the operation; to_new_value maps
        the operation's result to the recorded new_value. If the operation
        raises, a success=False entry carrying the error message is written
        and the exception propagates unchanged.
        """
        previous = get_previous_value() if get_previous_value else None
        try:
            result = operation()
        except Exception as exc:
            entry.previous_value = previous
            entry.success = False
            entry.error_message = str(exc) or type(exc).__name__
            self.log_admin_audit(entry)
            raise
        entry.previous_value = previous
        entry.new_value = to_new_value(result) if to_new_value else None
        entry.success = True
        self.log_admin_audit(entry)
        return result

    def get_audit_log(
        self,
        account_id: str | None = None,
        action: str | None = None,
        resource_type: str | None = None,
        resource_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLogEntry]:
        """Return entries matching every given filter, newest first."""
        stmt = select(_admin_audit_log)
        if account_id:
            stmt = stmt.where(_admin_audit_log.c.account_id == account_id)
        if action:
            stmt = stmt.where(_admin_audit_log.c.action == action)
        if resource_type:
            stmt = stmt.where(_admin_audit_log.c.resource_type == resource_type)
        if resource_id:
            stmt = stmt.where(_admin_audit_log.c.resource_id == resource_id)
        stmt = stmt.order_by(_admin_audit_log.c.created_at.desc()).limit(limit).offset(offset)
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [_row_to_entry(r) for r in rows]

    def get_audit_entry(self, entry_id: str) -> AuditLogEntry | None:
        with self.engine.connect() as conn:
            row = conn.execute(select(_admin_audit_log).where(_admin_audit_log.c.id == entry_id)).fetchone()
        return _row_to_entry(row) if row is not None else None

    # ------------------------------------------------------------------
    # API request log
    # ------------------------------------------------------------------

    def log_api_request(
        self,
        endpoint: str,
        method: str,
        response_status: int,
        account_id: str | None = None,
        response_time_ms: int | None = None,
        ip: str | None = None,
    ) -> None:
        """Record one API request. Failures are logged and swallowed."""
        try:
            with self.engine.begin() as conn:
                conn.execute(
                    _api_audit_log.insert().values(
                        id=_new_id(),
                        endpoint=endpoint,
                        method=method,
                        account_id=account_id,
                        response_status=response_status,
                        response_time_ms=response_time_ms,
                        ip_hash=hash_ip(ip),
                        created_at=_now_iso(),
                    )
                )
        except SQLAlchemyError:
            logger.exception("Failed to write API audit entry %s %s", method, endpoint)

    def list_api_requests(self, account_id: str, limit: int = 50, offset: int = 0) -> tuple[list[ApiAuditEntry], int]:
        """Return (page of entries newest first, total count) for account_id."""
        where = _api_audit_log.c.account_id == account_id
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_api_audit_log).where(where)).scalar() or 0
            rows = conn.execute(
                select(_api_audit_log)
                .where(where)
                .order_by(_api_audit_log.c.created_at.desc())
                .limit(limit)
                .offset(offset)
            ).fetchall()
        return [_row_to_api_entry(r) for r in rows], int(total)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_entry(row: Any) -> AuditLogEntry:
    return AuditLogEntry(
        id=row.id,
        account_id=row.account_id,
        action=row.action,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        previous_value=row.previous_value,
        new_value=row.new_value,
        metadata=row._mapping["metadata"] or {},
        success=bool(row.success),
        error_message=row.error_message,
        ip_hash=row.ip_hash,
        request_id=row.request_id,
        created_at=row.created_at,
    )


def _row_to_api_entry(row: Any) -> ApiAuditEntry:
    return ApiAuditEntry(
        id=row.id,
        endpoint=row.endpoint,
        method=row.method,
        account_id=row.account_id,
        response_status=row.response_status,
        response_time_ms=row.response_time_ms,
        ip_hash=row.ip_hash,
        created_at=row.created_at,
    )
