# src/libdesk/scripts/quota.py
"""Inspect or clear a rate-limit bucket from the command line.

Usage:
    python -m libdesk.scripts.quota show ip_203.0.113.9
    python -m libdesk.scripts.quota reset user_42
"""
from __future__ import annotations

import argparse
import sys
from datetime import UTC, datetime

from libdesk.core.settings import settings
from libdesk.db.session import SessionLocal
from libdesk.db.time import epoch_ms
from libdesk.services.quota_store import QuotaStore, QuotaStoreError, build_quota_store

LOG_PREFIX = "[quota]"


def show(store: QuotaStore, key: str) -> int:
    """Print the counter for `key`; returns a process exit code."""
    record = store.get(key)
    if record is None:
        print(f"{LOG_PREFIX} {key}: no hits recorded")
        return 0
    reset_at = datetime.fromtimestamp(record.reset_at_ms / 1000, tz=UTC)
    print(f"{LOG_PREFIX} {key}: {record.hit_count} hits, window ends {reset_at.isoformat()}")
    return 0


def reset(store: QuotaStore, key: str) -> int:
    """Zero the counter for `key` and start a fresh window."""
    store.reset(key, epoch_ms(), settings.rate_limit_window_ms)
    print(f"{LOG_PREFIX} reset {key}")
    return 0


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Inspect or clear rate-limit buckets")
    parser.add_argument("command", choices=("show", "reset"))
    parser.add_argument("key", help="Bucket key, e.g. ip_203.0.113.9 or user_42")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None, store: QuotaStore | None = None) -> int:
    args = parse_args(argv)
    # Unwrapped so storage failures reach the operator.
    store = store or build_quota_store(settings, SessionLocal, fallback=False)
    try:
        if args.command == "show":
            return show(store, args.key)
        return reset(store, args.key)
    except QuotaStoreError as exc:
        print(f"{LOG_PREFIX} ERROR: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
