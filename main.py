#!/usr/bin/env python3
"""
Todo Auth -- operator commands for the credential store.

Usage:
  python main.py init-db
  python main.py purge-expired
  python main.py check-config

Environment variables (or .env):
  DATABASE_URL   SQLAlchemy async URL (default: sqlite+aiosqlite:///./todo_auth.db)
  JWT_SECRET     Required unless DEBUG=true. At least 32 characters.

The HTTP service itself runs with:  uvicorn asgi:app
"""

import argparse
import asyncio
import logging
import sys
from datetime import datetime, timezone

from pydantic import ValidationError

from auth.errors import InternalError
from auth.mailer import build_mailer
from auth.store import CredentialStore
from core.config import Settings, get_settings


async def _init_db(settings: Settings) -> None:
    store = CredentialStore(settings.database_url, pool_size=settings.db_pool_size)
    try:
        await store.create_schema()
    finally:
        await store.close()
    print("  Schema ready.")


async def _purge_expired(settings: Settings) -> None:
    store = CredentialStore(settings.database_url, pool_size=settings.db_pool_size)
    try:
        refresh, resets = await store.purge_expired(datetime.now(timezone.utc))
    finally:
        await store.close()
    print(f"  Purged {refresh} refresh token(s), {resets} reset token(s).")


def _check_config(settings: Settings) -> None:
    """Print the effective non-secret settings and fail if mail is unusable."""
    print(f"  database_url:             {settings.database_url}")
    print(f"  access_token_ttl_minutes: {settings.access_token_ttl_minutes}")
    print(f"  refresh_token_ttl_days:   {settings.refresh_token_ttl_days}")
    print(f"  password_reset_ttl_min:   {settings.password_reset_ttl_minutes}")
    print(f"  password_reset_url_base:  {settings.password_reset_url_base}")
    print(f"  mailer:                   {type(build_mailer(settings)).__name__}")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="todo-auth",
        description="Operator commands for the Todo auth credential store.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py init-db
  DATABASE_URL=sqlite+aiosqlite:///./prod.db python main.py purge-expired
  DEBUG=true python main.py check-config
        """,
    )
    parser.add_argument(
        "command",
        choices=["init-db", "purge-expired", "check-config"],
        help="init-db: create tables; purge-expired: delete expired token rows; "
        "check-config: validate settings and print them (secrets omitted)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)-5s %(name)s %(message)s")

    try:
        settings = get_settings()
    except ValidationError as e:
        print(f"  [!] Invalid configuration:\n{e}")
        sys.exit(2)

    try:
        if args.command == "init-db":
            asyncio.run(_init_db(settings))
        elif args.command == "purge-expired":
            asyncio.run(_purge_expired(settings))
        else:
            _check_config(settings)
    except ValueError as e:
        print(f"  [!] {e}")
        sys.exit(2)
    except InternalError:
        print("  [!] Database operation failed; see the log above.")
        sys.exit(1)


if __name__ == "__main__":
    main()
