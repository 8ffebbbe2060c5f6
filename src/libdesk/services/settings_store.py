"""Persistent key/value settings and a typed view over them.

Settings arrive from storage as loosely typed text ("true", "1", "", ...).
`TypedSettings` normalizes them at the boundary so the rest of the code only
ever deals with real booleans, integers and strings.
"""

from __future__ import annotations

import logging
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from libdesk.models import SystemSetting

logger = logging.getLogger(__name__)

_TRUE_VALUES = frozenset({"true", "1", "yes", "on"})
_FALSE_VALUES = frozenset({"false", "0", "no", "off", ""})


class SettingStoreError(RuntimeError):
    """Raised when the settings backend cannot be read or written."""


class SettingStore(Protocol):
    """Minimal interface the core needs from the settings table."""

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def setdefault(self, key: str, value: str) -> str: ...

    def items(self) -> dict[str, str | None]: ...


class SqlSettingStore:
    """`SettingStore` backed by the `system_settings` table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def get(self, key: str) -> str | None:
        """Return the stored value for `key`, or None when absent."""
        try:
            with self._session_factory() as session:
                return session.scalar(
                    select(SystemSetting.setting_value).where(SystemSetting.setting_key == key)
                )
        except SQLAlchemyError as err:
            raise SettingStoreError(f"Failed to read setting {key!r}: {err}") from err

    def set(self, key: str, value: str) -> None:
        """Insert or overwrite `key`."""
        try:
            with self._session_factory() as session:
                row = session.scalar(select(SystemSetting).where(SystemSetting.setting_key == key))
                if row is None:
                    session.add(SystemSetting(setting_key=key, setting_value=value))
                else:
                    row.setting_value = value
                session.commit()
        except SQLAlchemyError as err:
            raise SettingStoreError(f"Failed to write setting {key!r}: {err}") from err

    def setdefault(self, key: str, value: str) -> str:
        """Store `value` only if `key` has no value yet; return the winning value.

        Two writers racing on an empty key both end up with whichever value
        reached the table first.
        """
        try:
            with self._session_factory() as session:
                row = session.scalar(select(SystemSetting).where(SystemSetting.setting_key == key))
                if row is not None and row.setting_value:
                    return row.setting_value
                if row is None:
                    session.add(SystemSetting(setting_key=key, setting_value=value))
                else:
                    row.setting_value = value
                try:
                    session.commit()
                except IntegrityError:
                    session.rollback()
                    existing = session.scalar(
                        select(SystemSetting.setting_value).where(
                            SystemSetting.setting_key == key
                        )
                    )
                    if existing:
                        return existing
                    raise
                return value
        except SQLAlchemyError as err:
            raise SettingStoreError(f"Failed to write setting {key!r}: {err}") from err

    def items(self) -> dict[str, str | None]:
        """Return every stored setting."""
        try:
            with self._session_factory() as session:
                rows = session.execute(
                    select(SystemSetting.setting_key, SystemSetting.setting_value)
                ).all()
        except SQLAlchemyError as err:
            raise SettingStoreError(f"Failed to list settings: {err}") from err
        return {key: value for key, value in rows}


def parse_bool(raw: object, default: bool = False) -> bool:
    """Normalize a stored boolean-ish value."""
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    text = str(raw).strip().lower()
    if text in _TRUE_VALUES:
        return True
    if text in _FALSE_VALUES:
        return False
    return default


def parse_int(raw: object, default: int = 0) -> int:
    """Normalize a stored integer-ish value."""
    if raw is None or isinstance(raw, bool):
        return default
    try:
        return int(str(raw).strip())
    except ValueError:
        return default


class TypedSettings:
    """Typed accessors over a `SettingStore`."""

    def __init__(self, store: SettingStore) -> None:
        self._store = store

    def get_str(self, key: str, default: str = "") -> str:
        value = self._store.get(key)
        return default if value is None or value == "" else value

    def get_bool(self, key: str, default: bool = False) -> bool:
        return parse_bool(self._store.get(key), default)

    def get_int(self, key: str, default: int = 0) -> int:
        return parse_int(self._store.get(key), default)
