"""
tests/test_cli.py -- The baseapp-admin command line (main.py).

Commands run through run() against an isolated AccountStore, the same way
main() would after parsing argv.
"""

from __future__ import annotations

import pytest
from conftest import SUPER_ADMIN

from auth.errors import AccountNotFoundError, GranterNotFoundError
from auth.models import DEFAULT_ADMIN_PERMISSIONS
from main import _build_parser, run

ADMIN = "0x" + "a1" * 20
BOSS = "0x" + "b2" * 20


def _run(store, *argv: str) -> int:
    return run(_build_parser().parse_args(list(argv)), store)


@pytest.fixture
def accounts(store):
    store.upsert_account_by_address(ADMIN, 8453)
    store.upsert_account_by_address(BOSS, 8453)
    return store


def test_role_of_unknown_address_is_user(store, capsys):
    assert _run(store, "role", "0x" + "00" * 20) == 0
    assert capsys.readouterr().out.strip() == "user"


def test_set_role_and_perms(accounts, capsys):
    _run(accounts, "set-role", ADMIN, "superadmin")
    capsys.readouterr()
    _run(accounts, "perms", ADMIN)
    out = capsys.readouterr().out
    assert "role: superadmin" in out
    assert "manage_permissions" in out


def test_set_role_unknown_account(store):
    with pytest.raises(AccountNotFoundError):
        _run(store, "set-role", "0x" + "cd" * 20, "admin")


def test_promote_grants_defaults(accounts):
    _run(accounts, "promote", ADMIN, "--by", BOSS)
    assert accounts.get_account_by_address(ADMIN).role == "admin"
    granted = set(accounts.list_permissions_for_address(ADMIN))
    assert granted == {p.value for p in DEFAULT_ADMIN_PERMISSIONS}


def test_grant_requires_known_granter(accounts):
    with pytest.raises(GranterNotFoundError):
        _run(accounts, "grant", ADMIN, "view_users", "--by", "0x" + "ef" * 20)


def test_grant_then_revoke(accounts, capsys):
    _run(accounts, "grant", ADMIN, "manage_settings", "--by", BOSS)
    assert "manage_settings" in accounts.list_permissions_for_address(ADMIN)
    _run(accounts, "revoke", ADMIN, "manage_settings", "--by", BOSS)
    assert "manage_settings" not in accounts.list_permissions_for_address(ADMIN)
    _run(accounts, "revoke", ADMIN, "manage_settings", "--by", BOSS)
    assert capsys.readouterr().out.strip().endswith("Nothing to revoke.")


def test_init_superadmin_only_for_configured_address(store):
    store.upsert_account_by_address(SUPER_ADMIN.address, 8453)
    _run(store, "init-superadmin", ADMIN)
    _run(store, "init-superadmin", SUPER_ADMIN.address)
    assert store.get_account_by_address(SUPER_ADMIN.address).role == "superadmin"


def test_unknown_permission_rejected_by_parser():
    with pytest.raises(SystemExit):
        _build_parser().parse_args(["grant", ADMIN, "launch_missiles", "--by", BOSS])
