#!/usr/bin/env python3
"""
Credential Guard -- operator CLI for the authentication policy core.

Usage:
  python main.py create-user bob --forename Bob --surname Smith
  python main.py set-password bob
  python main.py reset-request bob
  python main.py reset-confirm <reset-hash>
  python main.py login bob
  python main.py status bob
  python main.py disable bob
  python main.py enable bob

Passwords are prompted for (no echo) unless --password is given.

Environment variables (see core/config.py):
  DATABASE_URL   SQLAlchemy URL of the auth database (default: SQLite file)
  LOG_LEVEL      Logging level (default: INFO)
  AUTH_*         Authentication policy, e.g. AUTH_IDENTITY_COLUMN_NAME=email
"""

from __future__ import annotations

import argparse
import getpass
import logging
from typing import Optional

from auth.errors import AuthError, ValidationFailed
from auth.service import AuthenticationService
from auth.store import AuthStore
from core.config import Settings, get_settings

logger = logging.getLogger("credguard.cli")


def _read_password(args: argparse.Namespace, prompt: str = "Password: ") -> str:
    if args.password is not None:
        return args.password
    first = getpass.getpass(prompt)
    second = getpass.getpass("Again: ")
    if first != second:
        raise ValidationFailed({"password": "The passwords do not match"})
    return first


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="credguard",
        description="Manage accounts and check authentication policy.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py create-user bob --forename Bob
  AUTH_DISABLE_ACCOUNT_AFTER_FAILED_LOGIN_ATTEMPTS=true \\
  AUTH_NUMBER_OF_FAILED_LOGIN_ATTEMPTS_THRESHOLD=3 \\
  AUTH_TOTAL_MINUTES_TO_DISABLE_USER_ACCOUNT=15 python main.py status bob
        """,
    )
    sub = parser.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create-user", help="Create an enabled user")
    create.add_argument("identity", help="Value of the configured identity column")
    create.add_argument("--username", default=None, help="Username, when the identity column is email")
    create.add_argument("--email", default=None, help="Email, when the identity column is username")
    create.add_argument("--forename", default="")
    create.add_argument("--surname", default="")
    create.add_argument("--password", default=None)

    set_pw = sub.add_parser("set-password", help="Change a user's password")
    set_pw.add_argument("identity")
    set_pw.add_argument("--password", default=None)

    reset_req = sub.add_parser("reset-request", help="Issue a password reset hash")
    reset_req.add_argument("identity")

    reset_conf = sub.add_parser("reset-confirm", help="Redeem a password reset hash")
    reset_conf.add_argument("reset_hash")
    reset_conf.add_argument("--password", default=None)

    login = sub.add_parser("login", help="Attempt a login and print the persistent token")
    login.add_argument("identity")
    login.add_argument("--password", default=None)

    status = sub.add_parser("status", help="Show lockout/expiry state for an account")
    status.add_argument("identity")

    for name, help_text in (("enable", "Enable an account"), ("disable", "Disable an account")):
        toggle = sub.add_parser(name, help=help_text)
        toggle.add_argument("identity")

    return parser


def _run(args: argparse.Namespace, service: AuthenticationService) -> None:
    column = service.settings.identity_column_name

    if args.command == "create-user":
        fields = {"username": args.username or "", "email": args.email or ""}
        fields[column] = args.identity
        user = service.create_user(
            password=_read_password(args),
            forename=args.forename,
            surname=args.surname,
            **fields,
        )
        print(f"Created user {user.id} ({args.identity}).")

    elif args.command == "set-password":
        user = service.credentials.find_by_identity(args.identity)
        service.change_password(user.id, _read_password(args, "New password: "))
        print("Password changed.")

    elif args.command == "reset-request":
        print(service.request_password_reset(args.identity))

    elif args.command == "reset-confirm":
        service.confirm_password_reset(args.reset_hash, _read_password(args, "New password: "))
        print("Password reset.")

    elif args.command == "login":
        password = args.password if args.password is not None else getpass.getpass("Password: ")
        user, token = service.login(args.identity, password)
        print(f"Logged in as user {user.id}.")
        print(token)

    elif args.command == "status":
        status = service.account_status(args.identity)
        rows = [
            ("Identity", status.identity),
            ("Enabled", status.enabled),
            ("Locked out", status.locked_out),
            ("Password expired", status.password_expired),
            ("Failed attempts", status.failed_attempts_since_last_success),
            ("Reset pending", status.has_pending_reset),
        ]
        for label, value in rows:
            if isinstance(value, bool):
                value = "yes" if value else "no"
            print(f"{label + ':':<18}{value}")

    elif args.command in ("enable", "disable"):
        user = service.credentials.find_by_identity(args.identity)
        service.set_enabled(user.id, args.command == "enable")
        print(f"User {user.id} {args.command}d.")


def main(argv: Optional[list[str]] = None, settings: Optional[Settings] = None) -> int:
    args = _build_parser().parse_args(argv)
    settings = settings or get_settings()

    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    store = AuthStore(settings.database_url, identity_column=settings.auth.identity_column_name)
    try:
        _run(args, AuthenticationService(store, settings.auth))
    except ValidationFailed as exc:
        for field_name, message in exc.errors.items():
            print(f"  [!] {field_name}: {message}")
        return 1
    except AuthError as exc:
        print(f"  [!] {exc}")
        return 1
    finally:
        store.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
