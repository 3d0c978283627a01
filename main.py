#!/usr/bin/env python3
"""
Gatehouse -- Management API for a remote-access gateway.

Usage:
  python main.py create-admin alice
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080

Environment variables:
  SECRET_KEY    Signing key for session tokens (>= 32 chars). Required unless DEBUG=true.
  DATABASE_URL  SQLAlchemy URL of the identity database (default: SQLite under storage/).
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.tokens import hash_password
from core.permissions import ObjectPermissionType, PermissionCategory, SystemPermissionType
from storage.models import UserRecord
from storage.store import GatehouseStore


def create_admin(store: GatehouseStore, username: str, password: str) -> int:
    """Create `username` with every system permission. Returns the new row id.

    Bypasses the directories' authorization checks: this is how the first
    administrator comes to exist. Raises ValueError if the username is taken.
    """
    if store.get_user(username) is not None:
        raise ValueError(f'User "{username}" already exists.')
    user_id = store.create_user(UserRecord(username=username, password_hash=hash_password(password)))
    store.add_system_permissions(user_id, list(SystemPermissionType))
    store.add_object_permissions(
        user_id,
        PermissionCategory.USER,
        [(t, username) for t in ObjectPermissionType],
    )
    return user_id


def _read_password(password: Optional[str]) -> str:
    if password:
        return password
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        sys.exit(1)
    if not first:
        print("  [!] Password must not be empty.")
        sys.exit(1)
    return first


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="gatehouse",
        description="Management API for a remote-access gateway.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin alice
  python main.py serve --port 8080
  DEBUG=true python main.py serve --reload
        """,
    )
    sub = parser.add_subparsers(dest="command")

    admin = sub.add_parser("create-admin", help="Create a user holding every system permission")
    admin.add_argument("username", help="Username of the new administrator")
    admin.add_argument(
        "--password",
        metavar="PASSWORD",
        help="Password for the new administrator (prompted for if omitted)",
    )

    serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    serve.add_argument("--host", default="127.0.0.1", help="Bind address (default: 127.0.0.1)")
    serve.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    serve.add_argument("--reload", action="store_true", help="Restart on code changes (development only)")

    args = parser.parse_args()

    if args.command == "create-admin":
        password = _read_password(args.password)
        store = GatehouseStore()
        try:
            create_admin(store, args.username, password)
        except ValueError as e:
            print(f"  [!] {e}")
            sys.exit(1)
        finally:
            store.close()
        print(f'  Administrator "{args.username}" created.')

    elif args.command == "serve":
        import uvicorn

        uvicorn.run("api.main:app", host=args.host, port=args.port, reload=args.reload)

    else:
        parser.print_help()


if __name__ == "__main__":
    main()
