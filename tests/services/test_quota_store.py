"""Tests for the counter backends."""

import threading
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from libdesk.core.settings import Settings
from libdesk.db.session import Base
from libdesk.services.admission import AdmissionController, QuotaPolicy
from libdesk.services.identity import Identity
from libdesk.services.quota_store import (
    FallbackQuotaStore,
    MemoryQuotaStore,
    QuotaRecord,
    QuotaStoreError,
    RedisQuotaStore,
    SqlQuotaStore,
    build_quota_store,
)

WINDOW_MS = 900_000
NOW = 1_700_000_000_000


@pytest.fixture(params=["sql", "memory"])
def store(request: pytest.FixtureRequest, session_factory: sessionmaker[Session]):
    if request.param == "sql":
        return SqlQuotaStore(session_factory)
    return MemoryQuotaStore()


class TestWindowSemantics:
    def test_counts_hits_within_window(self, store) -> None:
        for expected in range(1, 6):
            record = store.hit("ip_1.2.3.4", NOW + expected, WINDOW_MS)
            assert record.hit_count == expected
            assert record.reset_at_ms == NOW + 1 + WINDOW_MS

    def test_window_elapse_restarts_at_one(self, store) -> None:
        store.hit("user_1", NOW, WINDOW_MS)
        store.hit("user_1", NOW + 10, WINDOW_MS)
        record = store.hit("user_1", NOW + WINDOW_MS, WINDOW_MS)
        assert record.hit_count == 1
        assert record.reset_at_ms == NOW + 2 * WINDOW_MS

    def test_keys_are_independent(self, store) -> None:
        store.hit("ip_a", NOW, WINDOW_MS)
        store.hit("ip_a", NOW, WINDOW_MS)
        assert store.hit("ip_b", NOW, WINDOW_MS).hit_count == 1

    def test_get_unknown_key(self, store) -> None:
        assert store.get("ip_nobody") is None

    def test_reset_is_idempotent(self, store) -> None:
        for _ in range(3):
            store.hit("ip_x", NOW, WINDOW_MS)
        store.reset("ip_x", NOW + 100, WINDOW_MS)
        once = store.get("ip_x")
        store.reset("ip_x", NOW + 100, WINDOW_MS)
        twice = store.get("ip_x")

        assert once == twice == QuotaRecord("ip_x", 0, NOW + 100 + WINDOW_MS)
        assert store.hit("ip_x", NOW + 200, WINDOW_MS).hit_count == 1

    def test_reset_unknown_key_creates_empty_bucket(self, store) -> None:
        store.reset("user_9", NOW, WINDOW_MS)
        assert store.get("user_9") == QuotaRecord("user_9", 0, NOW + WINDOW_MS)


class TestSqlQuotaStoreErrors:
    def test_errors_are_wrapped(self) -> None:
        bare_engine = create_engine(
            "sqlite://",
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
        store = SqlQuotaStore(sessionmaker(bind=bare_engine))
        with pytest.raises(QuotaStoreError):
            store.hit("ip_x", NOW, WINDOW_MS)
        with pytest.raises(QuotaStoreError):
            store.get("ip_x")
        with pytest.raises(QuotaStoreError):
            store.reset("ip_x", NOW, WINDOW_MS)


class TestRedisQuotaStore:
    @pytest.fixture()
    def client(self) -> MagicMock:
        client = MagicMock()
        client.register_script.return_value = MagicMock(return_value=[3, 120_000])
        return client

    def test_hit_uses_script(self, client: MagicMock) -> None:
        store = RedisQuotaStore(client)
        record = store.hit("ip_1", NOW, WINDOW_MS)

        assert record == QuotaRecord("ip_1", 3, NOW + 120_000)
        script = client.register_script.return_value
        script.assert_called_once_with(keys=["ratelimit:ip_1"], args=[WINDOW_MS])

    def test_reset_sets_zero_with_window_ttl(self, client: MagicMock) -> None:
        RedisQuotaStore(client).reset("user_5", NOW, WINDOW_MS)
        client.set.assert_called_once_with("ratelimit:user_5", 0, px=WINDOW_MS)

    def test_get_reads_count(self, client: MagicMock) -> None:
        client.pipeline.return_value.execute.return_value = [b"4", 60_000]
        record = RedisQuotaStore(client).get("ip_1")
        assert record is not None
        assert record.hit_count == 4

    def test_get_missing(self, client: MagicMock) -> None:
        client.pipeline.return_value.execute.return_value = [None, -2]
        assert RedisQuotaStore(client).get("ip_1") is None

    def test_connection_errors_are_wrapped(self, client: MagicMock) -> None:
        client.register_script.return_value.side_effect = RedisConnectionError("down")
        client.set.side_effect = RedisConnectionError("down")
        store = RedisQuotaStore(client)
        with pytest.raises(QuotaStoreError):
            store.hit("ip_1", NOW, WINDOW_MS)
        with pytest.raises(QuotaStoreError):
            store.reset("ip_1", NOW, WINDOW_MS)


class _BrokenStore:
    def hit(self, key: str, now_ms: int, window_ms: int) -> QuotaRecord:
        raise QuotaStoreError("offline")

    def get(self, key: str) -> QuotaRecord | None:
        raise QuotaStoreError("offline")

    def reset(self, key: str, now_ms: int, window_ms: int) -> None:
        raise QuotaStoreError("offline")


class TestFallbackQuotaStore:
    def test_primary_used_when_healthy(self) -> None:
        primary = MemoryQuotaStore()
        store = FallbackQuotaStore(primary)
        store.hit("ip_1", NOW, WINDOW_MS)
        assert primary.get("ip_1") is not None
        assert store.fallback.get("ip_1") is None

    def test_degrades_to_local_counting(self) -> None:
        store = FallbackQuotaStore(_BrokenStore())
        store.hit("ip_1", NOW, WINDOW_MS)
        assert store.hit("ip_1", NOW, WINDOW_MS).hit_count == 2
        assert store.get("ip_1") == QuotaRecord("ip_1", 2, NOW + WINDOW_MS)

    def test_reset_clears_local_counter_when_primary_down(self) -> None:
        store = FallbackQuotaStore(_BrokenStore())
        store.hit("ip_1", NOW, WINDOW_MS)
        store.reset("ip_1", NOW, WINDOW_MS)
        assert store.get("ip_1") == QuotaRecord("ip_1", 0, NOW + WINDOW_MS)


class TestBuildQuotaStore:
    def test_memory_backend(self, session_factory: sessionmaker[Session]) -> None:
        config = Settings(quota_backend="memory")
        assert isinstance(build_quota_store(config, session_factory), MemoryQuotaStore)

    def test_database_backend_has_fallback(self, session_factory: sessionmaker[Session]) -> None:
        config = Settings(quota_backend="database")
        store = build_quota_store(config, session_factory)
        assert isinstance(store, FallbackQuotaStore)
        assert isinstance(store.primary, SqlQuotaStore)

    def test_database_backend_without_fallback(
        self, session_factory: sessionmaker[Session]
    ) -> None:
        config = Settings(quota_backend="database")
        store = build_quota_store(config, session_factory, fallback=False)
        assert isinstance(store, SqlQuotaStore)


THREADS = 16


def _run_together(target: Callable[[], Any], count: int = THREADS) -> list[Any]:
    """Start `count` threads that call `target` at the same moment."""
    barrier = threading.Barrier(count)
    results: list[Any] = []
    errors: list[Exception] = []

    def worker() -> None:
        barrier.wait()
        try:
            results.append(target())
        except Exception as err:  # noqa: BLE001
            errors.append(err)

    threads = [threading.Thread(target=worker) for _ in range(count)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=60)
    assert not errors, errors
    return results


@pytest.fixture(params=["sql-file", "memory"])
def shared_store(request: pytest.FixtureRequest, tmp_path: Path) -> Iterator[Any]:
    if request.param == "memory":
        yield MemoryQuotaStore()
        return
    engine = create_engine(
        f"sqlite:///{tmp_path / 'quota.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_size=THREADS,
    )
    Base.metadata.create_all(bind=engine)
    yield SqlQuotaStore(sessionmaker(bind=engine))
    engine.dispose()


class TestConcurrentHits:
    def test_every_hit_gets_a_distinct_count(self, shared_store) -> None:
        records = _run_together(lambda: shared_store.hit("ip_9.9.9.9", NOW, WINDOW_MS))

        assert sorted(record.hit_count for record in records) == list(range(1, THREADS + 1))
        assert shared_store.get("ip_9.9.9.9").hit_count == THREADS

    def test_exactly_limit_callers_are_admitted(self, shared_store) -> None:
        limit = 5
        controller = AdmissionController(
            shared_store,
            QuotaPolicy(guest=limit, user=10, admin=10, super_admin=10),
            clock=lambda: NOW,
        )
        guest = Identity.guest("203.0.113.5")

        decisions = _run_together(lambda: controller.admit(guest))

        assert sum(decision.allowed for decision in decisions) == limit
        assert sorted(decision.hit_count for decision in decisions) == list(
            range(1, THREADS + 1)
        )
