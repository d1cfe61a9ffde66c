"""
auth/store.py -- SQLAlchemy Core persistence layer for accounts and grants.

Pattern: Repository + Data Mapper. AccountStore is the repository;
_row_to_account / _row_to_grant / _row_to_farcaster_user are the mappers.
Route, resolver, and dependency code never touches SQL directly.

Identity rules:
  accounts.address is the identity key. Every method lower-cases the address
  before it reaches SQL, so '0xABC...' and '0xabc...' always address the same
  row. The UNIQUE constraint on address is enforced by the database.

  admin_permissions is unique on (account_id, permission). Grants use the
  dialect's INSERT ... ON CONFLICT DO UPDATE so a repeated grant refreshes
  granted_by / signature instead of duplicating the row.

Security:
  All queries use bound parameters. No f-strings in SQL.

DB path: auth/baseapp.db by default (see core.config.Settings.database_url).

Layer rule: no imports from api/, audit/, or cache/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.engine import Engine

from auth.models import Account, AdminPermission, FarcasterUser, PermissionGrant, Role
from core.config import get_settings

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_accounts = Table(
    "accounts",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("address", String(42), nullable=False, unique=True),  # lower-cased
    Column("role", String(20), nullable=False, server_default=Role.user.value),
    Column("chain_id", Integer, nullable=False, server_default="8453"),
    Column("username", String(50)),
    Column("avatar_url", Text),
    Column("tos_accepted_version", String(20)),
    Column("tos_accepted_at", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
    Column("last_seen_at", String(32), nullable=False),
)

_farcaster_users = Table(
    "farcaster_users",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("fid", Integer, nullable=False, unique=True),
    Column("username", String(100)),  # cosmetic, client supplied
    Column("display_name", String(200)),  # cosmetic, client supplied
    Column("pfp_url", Text),  # cosmetic, client supplied
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_admin_permissions = Table(
    "admin_permissions",
    _metadata,
    Column("id", String(36), primary_key=True),
    Column("account_id", String(36), nullable=False, index=True),
    Column("permission", String(50), nullable=False),
    Column("granted_by", String(36), nullable=False),
    Column("granted_at", String(32), nullable=False),
    Column("signature", Text),
    UniqueConstraint("account_id", "permission", name="uq_admin_permissions_account_permission"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers are not blocked during writes.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _new_id() -> str:
    return str(uuid.uuid4())


def normalize_address(address: str) -> str:
    """Canonical identity form of a wallet address: stripped and lower-cased."""
    return address.strip().lower()


def create_db_engine(db_url: str) -> Engine:
    """Build an Engine with the SQLite tweaks every store in this project needs."""
    connect_args: dict = {}
    if db_url.startswith("sqlite"):
        connect_args["check_same_thread"] = False
    engine = create_engine(db_url, connect_args=connect_args)
    if db_url.startswith("sqlite") and "mode=memory" not in db_url and ":memory:" not in db_url:
        event.listen(engine, "connect", _set_wal_mode)
    return engine


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class AccountStore:
    """Repository for Account, FarcasterUser and PermissionGrant rows.

    Usage:
        store = AccountStore()
        account = store.upsert_account_by_address("0xAbC...", chain_id=8453)
        store.update_role(account.address, "admin")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = create_db_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    def _insert(self, table: Table):
        """Dialect-specific INSERT that supports ON CONFLICT DO UPDATE."""
        if self.engine.dialect.name == "postgresql":
            return postgresql.insert(table)
        return sqlite.insert(table)

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        with self.engine.connect() as conn:
            return conn.execute(text("SELECT 1")).scalar() == 1

    # ------------------------------------------------------------------
    # Accounts
    # ------------------------------------------------------------------

    def upsert_account_by_address(self, address: str, chain_id: int) -> Account:
        """Create the account for address, or stamp chain_id/last_seen_at on it.

        Called on every successful sign-in. Never touches role -- role changes
        only go through update_role().
        """
        addr = normalize_address(address)
        now = _now_iso()
        stmt = self._insert(_accounts).values(
            id=_new_id(),
            address=addr,
            role=Role.user.value,
            chain_id=chain_id,
            created_at=now,
            updated_at=now,
            last_seen_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_accounts.c.address],
            set_={"chain_id": chain_id, "last_seen_at": now, "updated_at": now},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
            row = conn.execute(_accounts.select().where(_accounts.c.address == addr)).fetchone()
        return _row_to_account(row)

    def get_account_by_address(self, address: str) -> Account | None:
        """Case-insensitive lookup by wallet address. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(
                _accounts.select().where(_accounts.c.address == normalize_address(address))
            ).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_by_id(self, account_id: str) -> Account | None:
        with self.engine.connect() as conn:
            row = conn.execute(_accounts.select().where(_accounts.c.id == account_id)).fetchone()
        return _row_to_account(row) if row is not None else None

    def get_account_id_by_address(self, address: str) -> str | None:
        with self.engine.connect() as conn:
            return conn.execute(
                _accounts.select()
                .with_only_columns(_accounts.c.id)
                .where(_accounts.c.address == normalize_address(address))
            ).scalar()

    def list_accounts(self) -> list[Account]:
        """Return all accounts, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_accounts.select().order_by(_accounts.c.created_at.desc())).fetchall()
        return [_row_to_account(r) for r in rows]

    def update_role(self, address: str, role: str) -> bool:
        """Set the role on an account. Returns False if no account has that address."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _accounts.update()
                .where(_accounts.c.address == normalize_address(address))
                .values(role=role, updated_at=_now_iso())
            )
        return result.rowcount > 0

    def update_profile(self, address: str, **fields) -> Account | None:
        """Update cosmetic profile fields (username, avatar_url).

        Fields passed as None are left unchanged. Returns the updated account,
        or None if the address has no account.
        """
        values = {k: v for k, v in fields.items() if k in ("username", "avatar_url") and v is not None}
        addr = normalize_address(address)
        with self.engine.begin() as conn:
            if values:
                values["updated_at"] = _now_iso()
                conn.execute(_accounts.update().where(_accounts.c.address == addr).values(**values))
            row = conn.execute(_accounts.select().where(_accounts.c.address == addr)).fetchone()
        return _row_to_account(row) if row is not None else None

    def update_tos_acceptance(self, address: str, version: str) -> Account | None:
        """Stamp the accepted terms-of-service version and time on the account."""
        addr = normalize_address(address)
        now = _now_iso()
        with self.engine.begin() as conn:
            conn.execute(
                _accounts.update()
                .where(_accounts.c.address == addr)
                .values(tos_accepted_version=version, tos_accepted_at=now, updated_at=now)
            )
            row = conn.execute(_accounts.select().where(_accounts.c.address == addr)).fetchone()
        return _row_to_account(row) if row is not None else None

    # ------------------------------------------------------------------
    # Farcaster profile links
    # ------------------------------------------------------------------

    def upsert_farcaster_user(
        self,
        account_id: str,
        fid: int,
        username: str | None = None,
        display_name: str | None = None,
        pfp_url: str | None = None,
    ) -> FarcasterUser:
        """Link a verified fid to an account and refresh its cosmetic profile."""
        now = _now_iso()
        stmt = self._insert(_farcaster_users).values(
            id=_new_id(),
            account_id=account_id,
            fid=fid,
            username=username,
            display_name=display_name,
            pfp_url=pfp_url,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_farcaster_users.c.fid],
            set_={
                "account_id": account_id,
                "username": username,
                "display_name": display_name,
                "pfp_url": pfp_url,
                "updated_at": now,
            },
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
            row = conn.execute(_farcaster_users.select().where(_farcaster_users.c.fid == fid)).fetchone()
        return _row_to_farcaster_user(row)

    def get_farcaster_user(self, account_id: str) -> FarcasterUser | None:
        """Return the most recently refreshed fid link for account_id.

        One address can be an auth address for several fids, so an account may
        carry more than one link.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _farcaster_users.select()
                .where(_farcaster_users.c.account_id == account_id)
                .order_by(_farcaster_users.c.updated_at.desc())
                .limit(1)
            ).fetchone()
        return _row_to_farcaster_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Permission grants
    # ------------------------------------------------------------------

    def upsert_grant(
        self,
        account_id: str,
        permission: str,
        granted_by: str,
        signature: str | None = None,
    ) -> PermissionGrant:
        """Insert or refresh the (account_id, permission) grant and return it."""
        now = _now_iso()
        stmt = self._insert(_admin_permissions).values(
            id=_new_id(),
            account_id=account_id,
            permission=permission,
            granted_by=granted_by,
            granted_at=now,
            signature=signature,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[_admin_permissions.c.account_id, _admin_permissions.c.permission],
            set_={"granted_by": granted_by, "granted_at": now, "signature": signature},
        )
        with self.engine.begin() as conn:
            conn.execute(stmt)
            row = conn.execute(
                _admin_permissions.select().where(
                    (_admin_permissions.c.account_id == account_id) & (_admin_permissions.c.permission == permission)
                )
            ).fetchone()
        return _row_to_grant(row)

    def delete_grant(self, account_id: str, permission: str) -> bool:
        """Delete a grant. Returns False when there was nothing to delete."""
        with self.engine.begin() as conn:
            result = conn.execute(
                _admin_permissions.delete().where(
                    (_admin_permissions.c.account_id == account_id) & (_admin_permissions.c.permission == permission)
                )
            )
        return result.rowcount > 0

    def list_grants(self, account_id: str) -> list[PermissionGrant]:
        """Return every grant held by account_id, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _admin_permissions.select()
                .where(_admin_permissions.c.account_id == account_id)
                .order_by(_admin_permissions.c.granted_at.desc())
            ).fetchall()
        return [_row_to_grant(r) for r in rows]

    def list_permissions_for_address(self, address: str) -> list[str]:
        """Return the raw permission strings granted to the account at address."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _admin_permissions.select()
                .with_only_columns(_admin_permissions.c.permission)
                .select_from(
                    _admin_permissions.join(_accounts, _accounts.c.id == _admin_permissions.c.account_id)
                )
                .where(_accounts.c.address == normalize_address(address))
            ).fetchall()
        return [r.permission for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_account(row) -> Account:
    return Account(
        id=row.id,
        address=row.address,
        role=row.role,
        chain_id=row.chain_id,
        username=row.username,
        avatar_url=row.avatar_url,
        tos_accepted_version=row.tos_accepted_version,
        tos_accepted_at=row.tos_accepted_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_seen_at=row.last_seen_at,
    )


def _row_to_farcaster_user(row) -> FarcasterUser:
    return FarcasterUser(
        id=row.id,
        account_id=row.account_id,
        fid=row.fid,
        username=row.username,
        display_name=row.display_name,
        pfp_url=row.pfp_url,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_grant(row) -> PermissionGrant:
    return PermissionGrant(
        id=row.id,
        account_id=row.account_id,
        permission=AdminPermission(row.permission),
        granted_by=row.granted_by,
        granted_at=row.granted_at,
        signature=row.signature,
    )
