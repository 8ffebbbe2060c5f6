# tests/conftest.py
from __future__ import annotations

import threading
from collections.abc import Callable, Generator, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from libdesk.core.security import create_access_token
from libdesk.core.settings import Settings
from libdesk.db.session import Base
from libdesk.main import create_app
from libdesk.services.key_manager import generate_private_key, private_key_to_b64
from libdesk.services.quota_store import QuotaStore
from libdesk.services.settings_store import SettingStoreError

TEST_DB_URL = "sqlite://"
TEST_JWT_SECRET = "test-jwt-secret"
TEST_KEY_SIZE = 1024


class MemorySettingStore:
    """In-memory `SettingStore` that can be switched into a failing state."""

    def __init__(self, values: dict[str, str] | None = None) -> None:
        self.values: dict[str, str] = dict(values or {})
        self.fail = False
        self.writes: list[str] = []
        self._lock = threading.Lock()

    def _check(self) -> None:
        if self.fail:
            raise SettingStoreError("store offline")

    def get(self, key: str) -> str | None:
        self._check()
        with self._lock:
            return self.values.get(key)

    def set(self, key: str, value: str) -> None:
        self._check()
        with self._lock:
            self.values[key] = value
            self.writes.append(key)

    def setdefault(self, key: str, value: str) -> str:
        self._check()
        with self._lock:
            if self.values.get(key):
                return self.values[key]
            self.values[key] = value
            self.writes.append(key)
            return value

    def items(self) -> dict[str, str | None]:
        self._check()
        with self._lock:
            return dict(self.values)


@pytest.fixture(scope="session")
def engine() -> Generator[Engine, None, None]:
    engine = create_engine(
        TEST_DB_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def session_factory(engine: Engine) -> Iterator[sessionmaker[Session]]:
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False, expire_on_commit=False)
    try:
        yield factory
    finally:
        # Ensure each test sees a clean database even if commits occurred.
        with engine.begin() as cleanup_conn:
            for table in reversed(Base.metadata.sorted_tables):
                cleanup_conn.execute(table.delete())


@pytest.fixture(scope="session")
def rsa_private_key_b64() -> str:
    """One small key for the whole run; generation dominates test time otherwise."""
    return private_key_to_b64(generate_private_key(TEST_KEY_SIZE))


@pytest.fixture()
def setting_store() -> MemorySettingStore:
    return MemorySettingStore()


@pytest.fixture()
def test_settings(rsa_private_key_b64: str) -> Settings:
    return Settings(
        jwt_secret=TEST_JWT_SECRET,
        rsa_private_key=rsa_private_key_b64,
        rsa_key_size=TEST_KEY_SIZE,
        quota_backend="database",
        auto_create_tables=False,
        captcha_max_number=1000,
        trust_proxy=True,
    )


@pytest.fixture()
def quota_store() -> QuotaStore | None:
    """Override in a test module to swap the counter backend."""
    return None


@pytest.fixture()
def app(
    test_settings: Settings,
    session_factory: sessionmaker[Session],
    quota_store: QuotaStore | None,
) -> FastAPI:
    return create_app(test_settings, session_factory, quota_store=quota_store)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


def _bearer(test_settings: Settings, user_id: int | str, role: str = "user") -> dict[str, str]:
    token = create_access_token(user_id, role=role, config=test_settings)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def auth_headers(test_settings: Settings) -> Callable[..., dict[str, str]]:
    """Build Authorization headers for an arbitrary user id and role."""
    return lambda user_id, role="user": _bearer(test_settings, user_id, role)


@pytest.fixture()
def user_headers(test_settings: Settings) -> dict[str, str]:
    """Authorization headers for a regular user with id 42."""
    return _bearer(test_settings, 42)


@pytest.fixture()
def super_admin_headers(test_settings: Settings) -> dict[str, str]:
    return _bearer(test_settings, 1, role="super_admin")
