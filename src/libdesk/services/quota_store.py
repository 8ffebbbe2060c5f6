"""Persistent hit counters keyed by identity bucket.

Every backend performs the window check and increment as one atomic step per
key, so concurrent requests from one identity cannot both read a stale count.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Any, Protocol

import redis
from redis.exceptions import RedisError
from sqlalchemy import case, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from libdesk.core.settings import Settings
from libdesk.db.time import epoch_ms
from libdesk.models import RateLimit

logger = logging.getLogger(__name__)

_INSERT_RETRIES = 3


class QuotaStoreError(RuntimeError):
    """Raised when a quota backend cannot complete an operation."""


@dataclass(frozen=True)
class QuotaRecord:
    """Counter state for one bucket."""

    key: str
    hit_count: int
    reset_at_ms: int


class QuotaStore(Protocol):
    """Interface shared by all counter backends."""

    def hit(self, key: str, now_ms: int, window_ms: int) -> QuotaRecord: ...

    def get(self, key: str) -> QuotaRecord | None: ...

    def reset(self, key: str, now_ms: int, window_ms: int) -> None: ...


class SqlQuotaStore:
    """Counters in the shared `rate_limits` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def hit(self, key: str, now_ms: int, window_ms: int) -> QuotaRecord:
        """Count one hit, restarting the window if it has elapsed."""
        expired = RateLimit.reset_time <= now_ms
        statement = (
            update(RateLimit)
            .where(RateLimit.key_id == key)
            .values(
                hit_count=case((expired, 1), else_=RateLimit.hit_count + 1),
                reset_time=case((expired, now_ms + window_ms), else_=RateLimit.reset_time),
            )
            .execution_options(synchronize_session=False)
        )
        try:
            for _ in range(_INSERT_RETRIES):
                with self._session_factory() as session:
                    result = session.execute(statement)
                    if result.rowcount == 0:
                        session.add(
                            RateLimit(key_id=key, hit_count=1, reset_time=now_ms + window_ms)
                        )
                    try:
                        session.flush()
                    except IntegrityError:
                        # A concurrent request created the row first; count as an update.
                        session.rollback()
                        continue
                    row = session.execute(
                        select(RateLimit.hit_count, RateLimit.reset_time).where(
                            RateLimit.key_id == key
                        )
                    ).one()
                    session.commit()
                    return QuotaRecord(key=key, hit_count=row.hit_count, reset_at_ms=row.reset_time)
        except SQLAlchemyError as err:
            raise QuotaStoreError(f"Failed to record hit for {key!r}: {err}") from err
        raise QuotaStoreError(f"Failed to record hit for {key!r}: insert kept conflicting")

    def get(self, key: str) -> QuotaRecord | None:
        try:
            with self._session_factory() as session:
                row = session.get(RateLimit, key)
                if row is None:
                    return None
                return QuotaRecord(key=key, hit_count=row.hit_count, reset_at_ms=row.reset_time)
        except SQLAlchemyError as err:
            raise QuotaStoreError(f"Failed to read quota for {key!r}: {err}") from err

    def reset(self, key: str, now_ms: int, window_ms: int) -> None:
        """Zero the counter and start a fresh window."""
        try:
            with self._session_factory() as session:
                row = session.get(RateLimit, key)
                if row is None:
                    session.add(RateLimit(key_id=key, hit_count=0, reset_time=now_ms + window_ms))
                else:
                    row.hit_count = 0
                    row.reset_time = now_ms + window_ms
                session.commit()
        except IntegrityError:
            # Row appeared concurrently; a second pass updates it.
            self.reset(key, now_ms, window_ms)
        except SQLAlchemyError as err:
            raise QuotaStoreError(f"Failed to reset quota for {key!r}: {err}") from err


# KEYS[1] = bucket, ARGV[1] = window in ms. Returns {count, remaining ttl ms}.
_HIT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
local ttl = redis.call('PTTL', KEYS[1])
if count == 1 or ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisQuotaStore:
    """Counters in Redis; the window is the key's TTL."""

    def __init__(self, client: Any, prefix: str = "ratelimit:") -> None:
        self._redis = client
        self._prefix = prefix
        self._hit_script = client.register_script(_HIT_SCRIPT)

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def hit(self, key: str, now_ms: int, window_ms: int) -> QuotaRecord:
        try:
            count, ttl = self._hit_script(keys=[self._key(key)], args=[int(window_ms)])
        except RedisError as err:
            raise QuotaStoreError(f"Failed to record hit for {key!r}: {err}") from err
        return QuotaRecord(key=key, hit_count=int(count), reset_at_ms=now_ms + int(ttl))

    def get(self, key: str) -> QuotaRecord | None:
        try:
            pipe = self._redis.pipeline()
            pipe.get(self._key(key))
            pipe.pttl(self._key(key))
            raw_count, ttl = pipe.execute()
        except RedisError as err:
            raise QuotaStoreError(f"Failed to read quota for {key!r}: {err}") from err
        if raw_count is None:
            return None
        # The absolute reset time is not stored; report it relative to the TTL.
        return QuotaRecord(
            key=key,
            hit_count=int(raw_count),
            reset_at_ms=epoch_ms() + max(int(ttl), 0),
        )

    def reset(self, key: str, now_ms: int, window_ms: int) -> None:
        try:
            self._redis.set(self._key(key), 0, px=int(window_ms))
        except RedisError as err:
            raise QuotaStoreError(f"Failed to reset quota for {key!r}: {err}") from err


class MemoryQuotaStore:
    """Process-local counters; used for tests and as a degraded fallback."""

    def __init__(self) -> None:
        self._records: dict[str, QuotaRecord] = {}
        self._lock = threading.Lock()

    def hit(self, key: str, now_ms: int, window_ms: int) -> QuotaRecord:
        with self._lock:
            current = self._records.get(key)
            if current is None or now_ms >= current.reset_at_ms:
                record = QuotaRecord(key=key, hit_count=1, reset_at_ms=now_ms + window_ms)
            else:
                record = QuotaRecord(
                    key=key,
                    hit_count=current.hit_count + 1,
                    reset_at_ms=current.reset_at_ms,
                )
            self._records[key] = record
            return record

    def get(self, key: str) -> QuotaRecord | None:
        with self._lock:
            return self._records.get(key)

    def reset(self, key: str, now_ms: int, window_ms: int) -> None:
        with self._lock:
            self._records[key] = QuotaRecord(key=key, hit_count=0, reset_at_ms=now_ms + window_ms)


class FallbackQuotaStore:
    """Use the shared store, degrading to process-local counting on failure."""

    def __init__(self, primary: QuotaStore, fallback: QuotaStore | None = None) -> None:
        self.primary = primary
        self.fallback = fallback or MemoryQuotaStore()

    def hit(self, key: str, now_ms: int, window_ms: int) -> QuotaRecord:
        try:
            return self.primary.hit(key, now_ms, window_ms)
        except QuotaStoreError as err:
            logger.warning("Quota store unavailable, counting locally: %s", err)
            return self.fallback.hit(key, now_ms, window_ms)

    def get(self, key: str) -> QuotaRecord | None:
        try:
            return self.primary.get(key)
        except QuotaStoreError as err:
            logger.warning("Quota store unavailable, reading local counter: %s", err)
            return self.fallback.get(key)

    def reset(self, key: str, now_ms: int, window_ms: int) -> None:
        # Clear the local counter too so a caller throttled while degraded is unblocked.
        self.fallback.reset(key, now_ms, window_ms)
        try:
            self.primary.reset(key, now_ms, window_ms)
        except QuotaStoreError as err:
            logger.warning("Quota store unavailable, reset applied locally only: %s", err)


def build_quota_store(
    config: Settings,
    session_factory: sessionmaker[Session],
    fallback: bool = True,
) -> QuotaStore:
    """Return the configured counter backend.

    Shared backends are wrapped with a process-local fallback unless
    `fallback` is False, in which case storage errors reach the caller.
    """
    if config.quota_backend == "memory":
        return MemoryQuotaStore()
    primary: QuotaStore
    if config.quota_backend == "redis":
        client = redis.from_url(config.redis_url)  # type: ignore[no-untyped-call]
        primary = RedisQuotaStore(client)
    else:
        primary = SqlQuotaStore(session_factory)
    return FallbackQuotaStore(primary) if fallback else primary
