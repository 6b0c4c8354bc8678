#!/usr/bin/env python3
"""
Inkpost -- account administration from the command line.

Bootstraps the first ADMIN (the web UI has no setup wizard) and recovers
from lockouts without touching the database by hand. The same self-action
and last-admin rules as the admin API apply, except that the CLI has no
signed-in actor, so only the last-admin check can refuse a change.

Usage:
  python main.py create-user --email ada@example.com --username ada --role ADMIN
  python main.py set-role ada EDITOR
  python main.py set-status ada SUSPENDED
  python main.py list-users
  python main.py list-users --role ADMIN --status ACTIVE

Environment variables:
  AUTH_DATABASE_URL   SQLAlchemy URL of the identity database.
                      Defaults to the bundled SQLite file under auth/.
"""

import argparse
import getpass
import os
from typing import Optional

# Settings validation refuses to start without SECRET_KEY outside DEBUG. The
# CLI never signs tokens, so a throwaway key is acceptable here.
os.environ.setdefault("DEBUG", "true")

from auth.models import Identity, Role, Status
from auth.policy import classify_role_change, classify_status_change, enforce_last_admin
from auth.store import IdentityStore
from auth.tokens import hash_password, password_policy_error
from core.config import get_settings
from core.errors import Conflict, LastAdminRequired


def _open_store() -> IdentityStore:
    url = get_settings().auth_database_url
    return IdentityStore(url) if url else IdentityStore()


def _find(store: IdentityStore, who: str) -> Optional[Identity]:
    """Look an identity up by username, then email, then id."""
    return store.get_by_username(who) or store.get_by_email(who.lower()) or store.get_by_id(who)


def _read_password(args: argparse.Namespace) -> Optional[str]:
    if args.password:
        return args.password
    first = getpass.getpass("Password: ")
    if first != getpass.getpass("Repeat password: "):
        print("  [!] Passwords do not match.")
        return None
    return first


def cmd_create_user(store: IdentityStore, args: argparse.Namespace) -> int:
    password = _read_password(args)
    if password is None:
        return 1
    problem = password_policy_error(password)
    if problem:
        print(f"  [!] {problem}")
        return 1

    identity = Identity(
        email=args.email.strip().lower(),
        username=args.username,
        name=args.name,
        role=Role(args.role),
        status=Status.ACTIVE,
        hashed_password=hash_password(password),
    )
    try:
        identity_id = store.create_identity(identity)
    except Conflict as exc:
        print(f"  [!] {exc.message}")
        return 1
    print(f"  Created {identity.role.value} '{identity.username}' ({identity_id}).")
    return 0


def cmd_set_role(store: IdentityStore, args: argparse.Namespace) -> int:
    target = _find(store, args.user)
    if target is None:
        print(f"  [!] No account matches '{args.user}'.")
        return 1
    new_role = Role(args.role)
    try:
        enforce_last_admin(store, target, classify_role_change(target.role, new_role))
    except LastAdminRequired as exc:
        print(f"  [!] {exc.message}")
        return 1
    store.update_identity(target.id, role=new_role)
    print(f"  '{target.username}': {target.role.value} -> {new_role.value}")
    print("  Existing sessions keep their old role until the next sign-in.")
    return 0


def cmd_set_status(store: IdentityStore, args: argparse.Namespace) -> int:
    target = _find(store, args.user)
    if target is None:
        print(f"  [!] No account matches '{args.user}'.")
        return 1
    new_status = Status(args.status)
    try:
        enforce_last_admin(store, target, classify_status_change(target.status, new_status))
    except LastAdminRequired as exc:
        print(f"  [!] {exc.message}")
        return 1
    store.update_identity(target.id, status=new_status)
    print(f"  '{target.username}': {target.status.value} -> {new_status.value}")
    return 0


def cmd_list_users(store: IdentityStore, args: argparse.Namespace) -> int:
    role = Role(args.role) if args.role else None
    status = Status(args.status) if args.status else None
    identities, total = store.list_identities(page=1, limit=args.limit, search=args.search, role=role, status=status)
    if not identities:
        print("  No accounts found.")
        return 0
    print(f"  {'USERNAME':<24} {'EMAIL':<32} {'ROLE':<7} {'STATUS':<10} LAST LOGIN")
    print("  " + "─" * 90)
    for identity in identities:
        print(
            f"  {identity.username:<24} {identity.email:<32} {identity.role.value:<7} "
            f"{identity.status.value:<10} {identity.last_login or 'never'}"
        )
    if total > len(identities):
        print(f"\n  Showing {len(identities)} of {total}. Use --limit or --search to narrow down.")
    return 0


_COMMANDS = {
    "create-user": cmd_create_user,
    "set-role": cmd_set_role,
    "set-status": cmd_set_status,
    "list-users": cmd_list_users,
}


def build_parser() -> argparse.ArgumentParser:
    roles = [r.value for r in Role]
    statuses = [s.value for s in Status]

    parser = argparse.ArgumentParser(
        prog="inkpost",
        description="Inkpost account administration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user --email ada@example.com --username ada --role ADMIN
  python main.py set-role ada EDITOR
  python main.py set-status grace BANNED
  python main.py list-users --search example.com
        """,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-user", help="Create a password account")
    create.add_argument("--email", required=True)
    create.add_argument("--username", required=True)
    create.add_argument("--name", default=None)
    create.add_argument("--role", choices=roles, default=Role.USER.value)
    create.add_argument(
        "--password",
        default=None,
        help="Password (prompted when omitted; prefer the prompt, argv is visible to other users)",
    )

    set_role = sub.add_parser("set-role", help="Change an account's role")
    set_role.add_argument("user", help="Username, email or id")
    set_role.add_argument("role", choices=roles)

    set_status = sub.add_parser("set-status", help="Activate, suspend or ban an account")
    set_status.add_argument("user", help="Username, email or id")
    set_status.add_argument("status", choices=statuses)

    list_users = sub.add_parser("list-users", help="List accounts")
    list_users.add_argument("--search", default=None)
    list_users.add_argument("--role", choices=roles, default=None)
    list_users.add_argument("--status", choices=statuses, default=None)
    list_users.add_argument("--limit", type=int, default=50)

    return parser


def main(argv: Optional[list[str]] = None, store: Optional[IdentityStore] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 0

    owns_store = store is None
    store = store or _open_store()
    try:
        return _COMMANDS[args.command](store, args)
    finally:
        if owns_store:
            store.close()


if __name__ == "__main__":
    raise SystemExit(main())
