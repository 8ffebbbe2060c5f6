"""One-shot initialization primitive.

`OneShot` runs an initializer at most once per instance, however many threads
race to trigger it. Late callers block until the in-flight run finishes and
then observe its value. A run that raises leaves the primitive unset, so the
next caller retries.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Generic, TypeVar

T = TypeVar("T")


class OneShot(Generic[T]):
    """Mutex-guarded do-once with a completion signal."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._done = threading.Event()
        self._value: T | None = None

    @property
    def is_set(self) -> bool:
        """Return True once an initializer has completed successfully."""
        return self._done.is_set()

    def get(self) -> T | None:
        """Return the stored value, or None if nothing completed yet."""
        return self._value if self._done.is_set() else None

    def run(self, initializer: Callable[[], T]) -> T:
        """Return the stored value, running `initializer` if none exists yet."""
        if self._done.is_set():
            return self._value  # type: ignore[return-value]
        with self._lock:
            # Another caller may have finished while we waited for the lock.
            if self._done.is_set():
                return self._value  # type: ignore[return-value]
            value = initializer()
            self._value = value
            self._done.set()
            return value
