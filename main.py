#!/usr/bin/env python3
"""
Base App admin CLI -- role and permission management from a shell.

Operates directly on the configured database (DATABASE_URL), using the same
RoleResolver and PermissionGrantStore as the HTTP API. Useful for bootstrapping
the first superadmin and for recovering access when no admin can sign in.

Usage:
  python main.py role 0xabc...
  python main.py set-role 0xabc... admin
  python main.py perms 0xabc...
  python main.py grant 0xabc... view_users --by 0xsuper...
  python main.py revoke 0xabc... view_users --by 0xsuper...
  python main.py promote 0xabc... --by 0xsuper...
  python main.py init-superadmin 0xabc...

Environment variables:
  DATABASE_URL                 Database to operate on (default: auth/baseapp.db)
  INITIAL_SUPER_ADMIN_ADDRESS  Address init-superadmin is allowed to promote
"""

from __future__ import annotations

import argparse
import sys

from auth.errors import AccountNotFoundError, AuthError, GranterNotFoundError
from auth.models import DEFAULT_ADMIN_PERMISSIONS, AdminPermission, Role
from auth.permissions import PermissionGrantStore
from auth.roles import RoleResolver
from auth.store import AccountStore
from cache.store import RoleCache


def _account_id(store: AccountStore, address: str) -> str:
    account_id = store.get_account_id_by_address(address)
    if account_id is None:
        raise GranterNotFoundError(f"No account for {address}. The address must sign in once first.")
    return account_id


def _target_id(store: AccountStore, address: str) -> str:
    account_id = store.get_account_id_by_address(address)
    if account_id is None:
        raise AccountNotFoundError(f"No account for {address}. The address must sign in once first.")
    return account_id


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="baseapp-admin",
        description="Manage Base App admin roles and permissions.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-superadmin 0xabc...
  python main.py promote 0xdef... --by 0xabc...
  python main.py grant 0xdef... manage_permissions --by 0xabc...
  DATABASE_URL=sqlite:///prod.db python main.py perms 0xdef...
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True, metavar="COMMAND")

    p = sub.add_parser("role", help="Print the role of an address")
    p.add_argument("address")

    p = sub.add_parser("set-role", help="Set the role of an existing account")
    p.add_argument("address")
    p.add_argument("role", choices=[r.value for r in Role])

    p = sub.add_parser("perms", help="Print effective permissions of an address")
    p.add_argument("address")

    permission_choices = [perm.value for perm in AdminPermission]
    for name, help_text in (("grant", "Grant a permission"), ("revoke", "Revoke a permission")):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("address")
        p.add_argument("permission", choices=permission_choices, metavar="PERMISSION")
        p.add_argument("--by", required=True, metavar="ADDRESS", help="Address of the acting admin")

    p = sub.add_parser("promote", help="Make an account admin with the default permission set")
    p.add_argument("address")
    p.add_argument("--by", required=True, metavar="ADDRESS", help="Address of the acting admin")

    p = sub.add_parser("init-superadmin", help="Promote INITIAL_SUPER_ADMIN_ADDRESS if it has an account")
    p.add_argument("address")

    return parser


def run(args: argparse.Namespace, store: AccountStore) -> int:
    """Execute one parsed command against store. Returns the process exit code."""
    resolver = RoleResolver(store, RoleCache())
    grants = PermissionGrantStore(store, resolver)

    if args.command == "role":
        print(resolver.get_user_role(args.address).value)
    elif args.command == "set-role":
        resolver.update_user_role(args.address, args.role)
        print(f"{args.address.lower()} -> {args.role}")
    elif args.command == "perms":
        perms = resolver.get_admin_permissions(args.address)
        print(f"role: {perms.role.value}")
        for perm in perms.permissions:
            print(f"  {perm.value}")
    elif args.command == "grant":
        grants.grant_permission(_target_id(store, args.address), args.permission, _account_id(store, args.by))
        print(f"Granted {args.permission} to {args.address.lower()}")
    elif args.command == "revoke":
        removed = grants.revoke_permission(_target_id(store, args.address), args.permission, _account_id(store, args.by))
        print(f"Revoked {args.permission} from {args.address.lower()}" if removed else "Nothing to revoke.")
    elif args.command == "promote":
        granter = _account_id(store, args.by)
        target = _target_id(store, args.address)
        if not resolver.is_super_admin(args.address):
            resolver.update_user_role(args.address, Role.admin)
        for perm in DEFAULT_ADMIN_PERMISSIONS:
            grants.grant_permission(target, perm, granter)
        print(f"{args.address.lower()} is now admin with {len(DEFAULT_ADMIN_PERMISSIONS)} default permission(s)")
    elif args.command == "init-superadmin":
        promoted = resolver.initialize_super_admin(args.address)
        print("Promoted to superadmin." if promoted else "No change (not the configured address, no account, or already superadmin).")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    store = AccountStore()
    try:
        return run(args, store)
    except AuthError as exc:
        print(f"  [!] {exc.message}", file=sys.stderr)
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
