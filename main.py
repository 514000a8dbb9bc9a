#!/usr/bin/env python3
"""
HuntGate -- identity and challenge back end for the scavenger-hunt game.

Usage:
  python main.py serve
  python main.py serve --host 0.0.0.0 --port 8080
  python main.py create-admin
  python main.py create-admin --username ops@hunt.example --nickname ops
  python main.py history alice@hunt.example
  python main.py schedule

Environment variables (see core/config.py for the full list):
  SECRET_KEY     Token signing key, at least 32 characters. Required unless DEBUG=true.
  DATABASE_URL   SQLAlchemy URL of the store (default: sqlite huntgate.db beside this file).
"""

import argparse
import getpass
import sys
from typing import Optional

from auth.gate import ADMIN_ROLE
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from challenges.registry import ChallengeRegistry
from challenges.store import ChallengeStore
from core.config import Settings, get_settings
from core.database import create_store_engine


def _fmt(value) -> str:
    return value.isoformat() if value is not None else "-"


def create_admin(settings: Settings, username: Optional[str], nickname: Optional[str]) -> int:
    """Seed an admin account. Prompts for a password when a username is given."""
    username = username or settings.default_admin_username
    nickname = nickname or settings.default_admin_nickname
    if username == settings.default_admin_username:
        password = settings.default_admin_password
    else:
        password = getpass.getpass(f"Password for {username}: ")
        if len(password) < 8:
            print("  [!] Password must be at least 8 characters.")
            return 1

    store = UserStore(create_store_engine(settings.database_url))
    created = store.ensure_user(
        User(username=username, nickname=nickname, roles=[ADMIN_ROLE], password_hash=hash_password(password))
    )
    if created:
        print(f"  Admin {username.lower()} created.")
    else:
        print(f"  {username.lower()} already has an active account; nothing changed.")
    return 0


def print_history(settings: Settings, username: str) -> int:
    store = UserStore(create_store_engine(settings.database_url))
    versions = store.history(username)
    if not versions:
        print(f"  [!] No versions recorded for {username.lower()}.")
        return 1

    print(f"\n{username.lower()} -- {len(versions)} version(s)")
    print("─" * 72)
    for user in versions:
        state = "active" if user.is_active else "closed"
        print(f"  #{user.row_id:<5} {_fmt(user.valid_from)}  ->  {_fmt(user.valid_until)}  [{state}]")
        print(f"         nickname={user.nickname}  roles={','.join(user.roles)}  id={user.entity_id}")
    print()
    return 0


def print_schedule(settings: Settings) -> int:
    """Rebuild the registry from storage and print it, soonest first."""
    registry = ChallengeRegistry(ChallengeStore(create_store_engine(settings.database_url)))
    registry.load_all()
    entries = sorted(registry.list_all(), key=lambda e: e.start_time)
    if not entries:
        print("  No active challenges.")
        return 0
    print(f"\nChallenge schedule -- {len(entries)} entr{'y' if len(entries) == 1 else 'ies'}")
    print("─" * 72)
    for entry in entries:
        print(f"  {_fmt(entry.start_time)}  {entry.challenge_id}")
    print()
    return 0


def serve(host: str, port: int, reload: bool) -> int:
    import uvicorn

    uvicorn.run("asgi:app", host=host, port=port, reload=reload)
    return 0


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="huntgate",
        description="Identity and challenge back end for the scavenger-hunt game.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    sub = parser.add_subparsers(dest="command", metavar="COMMAND")

    p_serve = sub.add_parser("serve", help="Run the HTTP API with uvicorn")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)
    p_serve.add_argument("--reload", action="store_true", help="Restart on code changes (development)")

    p_admin = sub.add_parser("create-admin", help="Seed an admin account (default: the configured one)")
    p_admin.add_argument("--username", metavar="EMAIL", help="Admin username (e-mail)")
    p_admin.add_argument("--nickname", help="Display name for the admin")

    p_history = sub.add_parser("history", help="Print every stored version of a user")
    p_history.add_argument("username", metavar="EMAIL")

    sub.add_parser("schedule", help="Print active challenge start times from storage")

    args = parser.parse_args()
    if args.command is None:
        parser.print_help()
        return

    if args.command == "serve":
        sys.exit(serve(args.host, args.port, args.reload))

    settings = get_settings()
    if args.command == "create-admin":
        code = create_admin(settings, args.username, args.nickname)
    elif args.command == "history":
        code = print_history(settings, args.username)
    else:
        code = print_schedule(settings)
    sys.exit(code)


if __name__ == "__main__":
    main()
