#!/usr/bin/env python3
"""
Gallery admin setup -- create an administrator account from the command line.

Run once during initial setup, or later to regain admin access.

Usage:
  python setup_admin.py
  python setup_admin.py --username alice --display-name "Alice"
  python setup_admin.py --username alice --yes            # no confirmation prompt
  python setup_admin.py --hash-only                       # just print a bcrypt hash

The password is always read with getpass unless GALLERY_ADMIN_PASSWORD is
set (for unattended provisioning). DATABASE_URL and the other settings come
from the environment / .env, exactly as for the server.
"""

from __future__ import annotations

import argparse
import os
import sys
from getpass import getpass
from typing import Optional

from auth.models import Role
from auth.passwords import hash_password
from auth.store import UserStore, validate_password, validate_username
from core.config import get_settings
from core.database import create_db_engine
from core.errors import ValidationError

SETUP_ACTOR = "setup-script"


def _read_password(env_password: Optional[str]) -> str:
    if env_password:
        return env_password
    while True:
        password = getpass("Password (at least 8 characters): ")
        try:
            validate_password(password)
        except ValidationError as exc:
            print(f"  [!] {exc.message}")
            continue
        if getpass("Confirm password: ") != password:
            print("  [!] Passwords do not match.")
            continue
        return password


def _read_username(store: UserStore, given: Optional[str]) -> str:
    while True:
        username = given if given is not None else input("Username (3-30 chars: letters, digits, . _ -): ").strip()
        try:
            validate_username(username)
        except ValidationError as exc:
            if given is not None:
                raise
            print(f"  [!] {exc.message}")
            continue
        if store.get_by_username(username) is not None:
            if given is not None:
                raise ValidationError("Username is already taken.")
            print("  [!] That username is already taken.")
            continue
        return username


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="setup_admin",
        description="Create a gallery administrator account.",
    )
    parser.add_argument("--username", help="Admin username (prompted if omitted)")
    parser.add_argument("--display-name", help="Display name (defaults to the username)")
    parser.add_argument("--database-url", help="Override DATABASE_URL")
    parser.add_argument("--yes", action="store_true", help="Do not ask for confirmation when admins already exist")
    parser.add_argument("--hash-only", action="store_true", help="Print a bcrypt hash for a password and exit")
    args = parser.parse_args(argv)

    env_password = os.environ.get("GALLERY_ADMIN_PASSWORD") or None

    if args.hash_only:
        print(hash_password(_read_password(env_password)))
        return 0

    settings = get_settings()
    store = UserStore(create_db_engine(args.database_url or settings.database_url))
    try:
        print("\nGallery -- Admin Setup")
        print("─" * 40)
        admins = store.count_active_by_role(Role.admin)
        if admins > 0:
            print(f"  {admins} active administrator(s) already exist.")
            if not args.yes:
                answer = input("Create another administrator? (yes/no): ").strip().lower()
                if answer not in ("y", "yes"):
                    print("Setup cancelled.")
                    return 1

        try:
            username = _read_username(store, args.username)
            password = _read_password(env_password)
            display_name = args.display_name
            if display_name is None and args.username is None:
                display_name = input(f'Display name (Enter for "{username}"): ').strip() or None
            user = store.create_user(username, password, Role.admin, display_name, created_by=SETUP_ACTOR)
        except ValidationError as exc:
            print(f"  [!] Could not create administrator: {exc.message}", file=sys.stderr)
            return 1

        print("\nAdministrator created.")
        print(f"  Username:     {user.username}")
        print(f"  Display name: {user.display_name}")
        print("  Role:         admin")
        print(f"  Created at:   {user.created_at}")
        print("\nStart the server with: uvicorn asgi:app\n")
        return 0
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
