#!/usr/bin/env python3
"""
SignGate -- operator CLI.

Usage:
  python main.py create-user user@mail.com
  python main.py create-user user@mail.com --password secret123
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080 --reload

Environment variables:
  DATABASE_URL            Principal store (default: SQLite file under auth/).
  SIGNIN_MAX_ATTEMPTS     Sign-in attempts per email+IP per window (default: 5).
  SIGNIN_WINDOW_SECONDS   Attempt window length in seconds (default: 60).
  RATE_LIMIT_STORAGE_URI  Counter storage, "memory://" or "redis://host:6379".

There is no public registration endpoint. Accounts are provisioned here.
"""

import argparse
import getpass
import sys
from typing import Optional

from sqlalchemy.exc import IntegrityError

from auth.errors import Unavailable
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from core.config import get_settings

_MIN_PASSWORD_LENGTH = 8


def _read_password(given: Optional[str]) -> Optional[str]:
    """Return the password from --password, or prompt twice for it."""
    if given is not None:
        return given
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Repeat password: ")
    if first != second:
        print("  [!] Passwords do not match.")
        return None
    return first


def create_user(email: str, password: Optional[str]) -> int:
    """Provision one account. Returns a process exit code."""
    password = _read_password(password)
    if password is None:
        return 1
    if len(password) < _MIN_PASSWORD_LENGTH:
        print(f"  [!] Password must be at least {_MIN_PASSWORD_LENGTH} characters.")
        return 1

    settings = get_settings()
    try:
        store = UserStore(settings.database_url, timeout=settings.database_timeout)
    except Unavailable as e:
        print(f"  [!] Could not open the user store: {e}")
        return 2
    try:
        user_id = store.create_user(User(email=email, hashed_password=hash_password(password)))
    except IntegrityError:
        print(f"  [!] A user with email '{email.lower()}' already exists.")
        return 1
    except Unavailable as e:
        print(f"  [!] Could not write to the user store: {e}")
        return 2
    finally:
        store.close()

    print(f"  Created user {email.lower()} (id={user_id}).")
    return 0


def serve(host: str, port: int, reload: bool) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=host, port=port, reload=reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="signgate",
        description="Sign-in API with throttled attempts and opaque API tokens.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_create = sub.add_parser("create-user", help="Provision an account that can sign in")
    p_create.add_argument("email", help="Email address (stored lower-cased)")
    p_create.add_argument(
        "--password",
        default=None,
        help="Password (prompted for when omitted; avoid on shared machines -- it lands in shell history)",
    )

    p_serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true", help="Reload on code changes (development only)")

    args = parser.parse_args()

    if args.command == "create-user":
        sys.exit(create_user(args.email, args.password))
    elif args.command == "serve":
        sys.exit(serve(args.host, args.port, args.reload))
    else:
        parser.print_help()


if __name__ == "__main__":
    main()
