#!/usr/bin/env python3
"""
MediaVault admin CLI -- bootstrap and inspect accounts without the HTTP API.

Usage:
  python main.py create-admin --name "Ops" --email ops@example.com
  python main.py list-users
  python main.py list-users --role admin --inactive
  python main.py hash-password

Passwords are read with getpass, never from argv, so they stay out of shell
history. The database is the one named by DATABASE_URL (see core/config.py).
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.models import Principal, Role
from auth.passwords import hash_password
from auth.store import PrincipalStore
from core.config import get_settings


def _read_password(min_length: int) -> Optional[str]:
    """Prompt twice; return None (after printing why) if the entries are unusable."""
    password = getpass.getpass("  Password: ")
    confirm = getpass.getpass("  Confirm password: ")
    if password != confirm:
        print("  [!] Passwords do not match.")
        return None
    if len(password) < min_length:
        print(f"  [!] Password must be at least {min_length} characters long.")
        return None
    return password


def _create_admin(store: PrincipalStore, args: argparse.Namespace) -> int:
    settings = get_settings()
    password = _read_password(settings.password_min_length)
    if password is None:
        return 1

    existing = store.get_by_email(args.email)
    if existing is not None:
        if not args.promote:
            print(f"  [!] '{args.email}' already exists. Use --promote to make it an admin.")
            return 1
        store.update(existing.id, role=Role.admin.value, active=True, credential_hash=hash_password(password))
        print(f"  Promoted user {existing.id} ({existing.email}) to admin.")
        return 0

    try:
        principal_id = store.create(
            Principal(
                name=args.name,
                email=args.email.strip().lower(),
                role=Role.admin.value,
                credential_hash=hash_password(password),
                email_verified=True,
            )
        )
    except IntegrityError:
        print(f"  [!] '{args.email}' already exists.")
        return 1
    print(f"  Created admin {principal_id} ({args.email}).")
    return 0


def _list_users(store: PrincipalStore, args: argparse.Namespace) -> int:
    active: Optional[bool] = None
    if args.active:
        active = True
    elif args.inactive:
        active = False

    principals = store.list_principals(role=args.role, active=active)
    if not principals:
        print("  No users found.")
        return 0

    print(f"\n  {'ID':>5}  {'ROLE':<6} {'ACTIVE':<7} {'VERIFIED':<9} EMAIL")
    print("  " + "─" * 60)
    for p in principals:
        print(f"  {p.id:>5}  {p.role:<6} {'yes' if p.active else 'no':<7} {'yes' if p.email_verified else 'no':<9} {p.email}")
    print()
    return 0


def _hash_password(args: argparse.Namespace) -> int:
    password = _read_password(get_settings().password_min_length)
    if password is None:
        return 1
    print(hash_password(password))
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(
        description="MediaVault administration",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    create = sub.add_parser("create-admin", help="Create an admin account (or promote an existing one)")
    create.add_argument("--name", required=True, help="Display name")
    create.add_argument("--email", required=True, help="Login email")
    create.add_argument(
        "--promote",
        action="store_true",
        help="If the email already exists, promote that account to admin and reset its password",
    )

    users = sub.add_parser("list-users", help="List accounts")
    users.add_argument("--role", choices=[r.value for r in Role], default=None, help="Only this role")
    state = users.add_mutually_exclusive_group()
    state.add_argument("--active", action="store_true", help="Only active accounts")
    state.add_argument("--inactive", action="store_true", help="Only deactivated accounts")

    sub.add_parser("hash-password", help="Print a bcrypt hash for a password read from the terminal")

    args = parser.parse_args()

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "hash-password":
        return _hash_password(args)

    store = PrincipalStore(get_settings().database_url)
    try:
        if args.command == "create-admin":
            return _create_admin(store, args)
        return _list_users(store, args)
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
