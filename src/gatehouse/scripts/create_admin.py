# src/gatehouse/scripts/create_admin.py
"""Provision or reset the operator account used by the admin console."""

from __future__ import annotations

import argparse
import getpass
import sys
import time

from sqlalchemy.exc import SQLAlchemyError

from gatehouse.core.security import hash_password
from gatehouse.db.repository import StateRepository
from gatehouse.db.session import SessionLocal, create_tables
from gatehouse.models import AdminAccount
from gatehouse.services.accounts import (
    PASSWORD_MIN_LENGTH,
    USERNAME_MAX_LENGTH,
    USERNAME_MIN_LENGTH,
    valid_password,
    valid_username,
)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Create or reset the Gatehouse operator account")
    parser.add_argument("username", help="Operator username")
    parser.add_argument(
        "--password",
        default=None,
        help="Password to set (prompted for when omitted)",
    )
    parser.add_argument(
        "--print-hash",
        action="store_true",
        help="Print the bcrypt hash for ADMIN_PASSWORD_HASH instead of writing the database.",
    )
    return parser


def prompt_password() -> str:
    password = getpass.getpass("Password: ")
    if password != getpass.getpass("Repeat password: "):
        raise ValueError("passwords do not match")
    return password


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    if not valid_username(args.username):
        print(
            f"[create_admin] ERROR: username must be {USERNAME_MIN_LENGTH}-"
            f"{USERNAME_MAX_LENGTH} characters",
            file=sys.stderr,
        )
        return 2

    try:
        password = args.password if args.password is not None else prompt_password()
    except ValueError as exc:
        print(f"[create_admin] ERROR: {exc}", file=sys.stderr)
        return 2
    if not valid_password(password):
        print(
            f"[create_admin] ERROR: password must be at least {PASSWORD_MIN_LENGTH} characters",
            file=sys.stderr,
        )
        return 2

    password_hash = hash_password(password)
    if args.print_hash:
        print(password_hash)
        return 0

    try:
        create_tables()
        StateRepository(SessionLocal).save_admin(
            AdminAccount(username=args.username, password_hash=password_hash, updated_at=time.time())
        )
    except SQLAlchemyError as exc:
        print(f"[create_admin] ERROR: {exc}", file=sys.stderr)
        return 1

    print(f"[create_admin] stored credentials for {args.username}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
