# src/libdesk/scripts/tokens.py
"""Mint an access token for local testing of authenticated quotas.

The token is signed with JWT_SECRET, so the server must share it; without
JWT_SECRET each process generates its own secret and the token is useless.
"""
from __future__ import annotations

import argparse
import sys
from datetime import timedelta

from libdesk.core.security import create_access_token
from libdesk.core.settings import settings
from libdesk.services.identity import Role


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Mint a bearer token")
    parser.add_argument("--user-id", required=True, help="Account id placed in the token")
    parser.add_argument(
        "--role",
        default=Role.USER.value,
        choices=[role.value for role in Role],
    )
    parser.add_argument("--username", default=None)
    parser.add_argument(
        "--minutes",
        type=int,
        default=None,
        help="Lifetime in minutes (defaults to ACCESS_TOKEN_EXPIRE_MINUTES)",
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    if not settings.jwt_secret:
        print("[tokens] ERROR: JWT_SECRET is not set", file=sys.stderr)
        return 1
    token = create_access_token(
        args.user_id,
        role=args.role,
        username=args.username,
        config=settings,
        expires_delta=timedelta(minutes=args.minutes) if args.minutes else None,
    )
    print(token)
    return 0


if __name__ == "__main__":
    sys.exit(main())
