"""Identity-aware request admission (rate limiting).

Each identity bucket moves through a fixed window: the first hit after the
window ends restarts it at a count of one, every other hit increments the
count. A hit whose resulting count exceeds the caller's quota is rejected;
rejected hits still count, so hammering a throttled endpoint keeps the caller
throttled until the window ends or a CAPTCHA is solved.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Callable, Iterable
from dataclasses import dataclass

from libdesk.core.settings import Settings
from libdesk.db.time import epoch_ms
from libdesk.services.identity import Identity, Role
from libdesk.services.quota_store import QuotaStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class QuotaPolicy:
    """Per-tier request quotas within one fixed window."""

    window_seconds: int = 15 * 60
    guest: int = 100
    user: int = 1000
    admin: int = 5000
    super_admin: int = 10000

    def __post_init__(self) -> None:
        if self.window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        tiers = (self.guest, self.user, self.admin, self.super_admin)
        if any(limit < 0 for limit in tiers):
            raise ValueError("quotas must be non-negative")
        if list(tiers) != sorted(tiers):
            raise ValueError("quotas must not decrease from guest to super_admin")

    @classmethod
    def from_settings(cls, config: Settings) -> QuotaPolicy:
        return cls(
            window_seconds=config.rate_limit_window_seconds,
            guest=config.rate_limit_guest,
            user=config.rate_limit_user,
            admin=config.rate_limit_admin,
            super_admin=config.rate_limit_super_admin,
        )

    @property
    def window_ms(self) -> int:
        return self.window_seconds * 1000

    def limit_for(self, identity: Identity | None) -> int:
        """Return the quota for a caller; None and guests share the base quota."""
        if identity is None or not identity.is_authenticated:
            return self.guest
        if identity.role is Role.SUPER_ADMIN:
            return self.super_admin
        if identity.role is Role.ADMIN:
            return self.admin
        return self.user


@dataclass(frozen=True)
class AdmissionDecision:
    """Outcome of one admission check, with the data for RateLimit headers."""

    allowed: bool
    key: str
    hit_count: int
    limit: int
    reset_at_ms: int
    window_seconds: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.hit_count)

    def reset_after_seconds(self, now_ms: int) -> int:
        return max(0, math.ceil((self.reset_at_ms - now_ms) / 1000))

    def headers(self, now_ms: int) -> dict[str, str]:
        """Standard `RateLimit-*` response headers."""
        return {
            "RateLimit-Policy": f"{self.limit};w={self.window_seconds}",
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(self.reset_after_seconds(now_ms)),
        }


def _normalize_path(path: str) -> str:
    return path.rstrip("/") or "/"


class AdmissionController:
    """Fixed-window admission keyed by identity bucket."""

    def __init__(
        self,
        store: QuotaStore,
        policy: QuotaPolicy | None = None,
        bypass_paths: Iterable[str] = (),
        path_prefix: str = "/api",
        clock: Callable[[], int] = epoch_ms,
    ) -> None:
        self.store = store
        self.policy = policy or QuotaPolicy()
        self._bypass = frozenset(_normalize_path(path) for path in bypass_paths)
        self._prefix = _normalize_path(path_prefix)
        self._clock = clock

    def now_ms(self) -> int:
        return self._clock()

    def applies_to(self, path: str) -> bool:
        """Return True if requests to `path` are subject to admission."""
        normalized = _normalize_path(path)
        if self._prefix != "/" and not (
            normalized == self._prefix or normalized.startswith(self._prefix + "/")
        ):
            return False
        return not self.is_bypassed(normalized)

    def is_bypassed(self, path: str) -> bool:
        """Paths that lift a throttle must stay reachable while throttled."""
        return _normalize_path(path) in self._bypass

    def admit(self, identity: Identity) -> AdmissionDecision:
        """Record one hit for `identity` and decide whether to admit it."""
        limit = self.policy.limit_for(identity)
        record = self.store.hit(identity.bucket_key, self.now_ms(), self.policy.window_ms)
        allowed = record.hit_count <= limit
        if not allowed:
            logger.debug(
                "Throttling %s: %d hits against a quota of %d",
                record.key,
                record.hit_count,
                limit,
            )
        return AdmissionDecision(
            allowed=allowed,
            key=record.key,
            hit_count=record.hit_count,
            limit=limit,
            reset_at_ms=record.reset_at_ms,
            window_seconds=self.policy.window_seconds,
        )

    def reset_key(self, key: str) -> None:
        """Clear the counter for one bucket and start a fresh window."""
        self.store.reset(key, self.now_ms(), self.policy.window_ms)
        logger.info("Rate limit reset for key: %s", key)
