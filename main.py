"""
VitalSync Auth Command-Line Entry Point.

Bootstraps the dependency graph via constructor injection, initialises
the local SQLite schema, restores the persisted session, runs one
session command, and prints the resulting session snapshot as JSON.
Every subsystem is wired here; there are no module-level globals.

Usage::

    python main.py register --name Ann --email ann@example.com
    python main.py login --email ann@example.com
    python main.py status
    python main.py refresh
    python main.py profile --name "Ann B."
    python main.py reset-request --email ann@example.com
    python main.py logout

Passwords are prompted for when not given on the command line.
"""

from __future__ import annotations

import argparse
import asyncio
import atexit
import getpass
import sys
from pathlib import Path
from typing import Optional, Sequence

from vitalsync_auth.config import get_config
from vitalsync_auth.database import DatabaseManager
from vitalsync_auth.logger import StructuredLogger, get_logger
from vitalsync_auth.models.auth_models import (
    AuthResult,
    LoginCredentials,
    PasswordChange,
    PasswordResetRequest,
    ProfileUpdate,
    RegisterData,
)
from vitalsync_auth.schema import initialize_schema
from vitalsync_auth.services import ServiceContainer, create_services


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vitalsync-auth",
        description="Drive the persisted VitalSync session from the shell.",
    )
    parser.add_argument(
        "--db", default=None,
        help="SQLite database path (defaults to SESSION_DB_PATH).",
    )
    commands = parser.add_subparsers(dest="command", required=True)

    register = commands.add_parser("register", help="Create an account and sign in.")
    register.add_argument("--name", required=True)
    register.add_argument("--email", required=True)
    register.add_argument("--password")

    login = commands.add_parser("login", help="Sign in.")
    login.add_argument("--email", required=True)
    login.add_argument("--password")

    commands.add_parser("logout", help="Sign out and clear the persisted session.")
    commands.add_parser("status", help="Show the restored session.")
    commands.add_parser("refresh", help="Mint a new access token.")

    profile = commands.add_parser("profile", help="Update the signed-in profile.")
    profile.add_argument("--name")
    profile.add_argument("--avatar")

    password = commands.add_parser("password", help="Change the signed-in password.")
    password.add_argument("--current")
    password.add_argument("--new")

    reset = commands.add_parser("reset-request", help="Request a password reset.")
    reset.add_argument("--email", required=True)

    return parser


def _prompt(value: Optional[str], label: str) -> str:
    return value if value is not None else getpass.getpass(f"{label}: ")


async def _run_command(args: argparse.Namespace, services: ServiceContainer) -> Optional[AuthResult]:
    session = services["session"]

    if args.command == "register":
        password = _prompt(args.password, "Password")
        return await session.register(
            RegisterData(
                name=args.name,
                email=args.email,
                password=password,
                confirm_password=_prompt(None, "Confirm password"),
            ),
        )
    if args.command == "login":
        return await session.login(
            LoginCredentials(email=args.email, password=_prompt(args.password, "Password")),
        )
    if args.command == "logout":
        await session.logout()
        return None
    if args.command == "refresh":
        return await session.refresh_token()
    if args.command == "profile":
        return await session.update_profile(ProfileUpdate(name=args.name, avatar=args.avatar))
    if args.command == "password":
        new_password = _prompt(args.new, "New password")
        return await session.change_password(
            PasswordChange(
                current_password=_prompt(args.current, "Current password"),
                new_password=new_password,
                confirm_password=_prompt(None, "Confirm new password"),
            ),
        )
    if args.command == "reset-request":
        return await services["password_reset_service"].request_password_reset(
            PasswordResetRequest(email=args.email),
        )
    return None


async def _amain(args: argparse.Namespace, services: ServiceContainer, seed: bool) -> int:
    session = services["session"]
    async with session:
        if seed:
            await services["credential_store"].seed_demo_accounts()
        await session.initialize()
        result = await _run_command(args, services)

        if result is not None:
            print(result.model_dump_json(by_alias=True, indent=2, exclude={"account"}))
        print(session.snapshot().model_dump_json(by_alias=True, indent=2))
    return 0 if result is None or result.success else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Application entry point: wire dependencies and run one command."""
    args = _build_parser().parse_args(argv)
    logger: StructuredLogger = get_logger("main")

    # ------------------------------------------------------------------
    # 1. Configuration (from .env / environment variables)
    # ------------------------------------------------------------------
    config = get_config()

    # ------------------------------------------------------------------
    # 2. Database Manager
    # ------------------------------------------------------------------
    db = DatabaseManager(
        sqlite_path=Path(args.db or config.SESSION_DB_PATH),
        logger=get_logger("database"),
    )
    # DatabaseManager.close() is idempotent.
    atexit.register(db.close)

    # ------------------------------------------------------------------
    # 3. SQLite Schema Initialization (idempotent)
    # ------------------------------------------------------------------
    initialize_schema(db.sqlite, get_logger("schema"))

    # ------------------------------------------------------------------
    # 4. Service Container (single composition root)
    # ------------------------------------------------------------------
    services = create_services(config, db)

    try:
        return asyncio.run(_amain(args, services, config.SEED_DEMO_ACCOUNTS))
    finally:
        db.close()
        logger.info("VitalSync auth CLI finished.", extra={"event": "SHUTDOWN"})


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        sys.exit(130)
