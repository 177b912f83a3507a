#!/usr/bin/env python3
"""
Authkeep -- maintenance CLI for the credential store.

Usage:
  python main.py create-admin admin@example.com
  python main.py purge-tokens

The API server is started separately (uvicorn api.main:app).

Environment variables (or .env):
  DATABASE_URL  SQLAlchemy URL of the credential database.
  SECRET_KEY    Required unless DEBUG=true. Not used by these commands, but
                settings are validated the same way as for the API.
"""

import argparse
import getpass
import logging
import sys
from typing import Optional

from email_validator import EmailNotValidError, validate_email

from auth.errors import AuthError, WeakPasswordError
from auth.models import Role
from auth.service import build_auth_service
from auth.store import CredentialDatabase
from core.config import get_settings

logger = logging.getLogger("authkeep.cli")


def _prompt_password() -> Optional[str]:
    """Read the new password twice without echo. None if the two differ."""
    first = getpass.getpass("  Password: ")
    second = getpass.getpass("  Confirm password: ")
    if first != second:
        return None
    return first


def create_admin(email: str) -> int:
    """Create a verified admin account. Returns the process exit code."""
    try:
        validate_email(email.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        print(f"  [!] Invalid email address: {exc}")
        return 1

    password = _prompt_password()
    if password is None:
        print("  [!] Passwords do not match.")
        return 1

    settings = get_settings()
    database = CredentialDatabase(settings.database_url)
    try:
        service = build_auth_service(database, settings)
        profile = service.register(email, password, role=Role.ADMIN, verified=True)
    except WeakPasswordError as exc:
        print("  [!] Password rejected:")
        for reason in exc.reasons:
            print(f"      - {reason}")
        return 1
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        database.close()

    print(f"  Admin {profile.email} created (id {profile.id}).")
    return 0


def purge_tokens() -> int:
    """Delete expired refresh tokens once. Returns the process exit code."""
    settings = get_settings()
    database = CredentialDatabase(settings.database_url)
    try:
        removed = build_auth_service(database, settings).purge_expired_tokens()
    except AuthError as exc:
        print(f"  [!] {exc.message}")
        return 1
    finally:
        database.close()

    print(f"  {removed} expired refresh token(s) removed.")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="authkeep",
        description="Authkeep credential store maintenance.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-admin admin@example.com
  DATABASE_URL=sqlite:////var/lib/authkeep.db python main.py purge-tokens
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Log at DEBUG level.")
    commands = parser.add_subparsers(dest="command", required=True)

    admin = commands.add_parser("create-admin", help="Create a verified admin account (password is prompted).")
    admin.add_argument("email", help="Email address of the new admin.")

    commands.add_parser("purge-tokens", help="Delete expired refresh tokens.")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if args.command == "create-admin":
        return create_admin(args.email)
    return purge_tokens()


if __name__ == "__main__":
    sys.exit(main())
