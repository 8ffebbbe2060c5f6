"""Proof-of-work CAPTCHA used to lift a rate limit.

Challenges are stateless after issuance: the server signs the published
digest with a persisted HMAC key and embeds the expiry in the salt, so
verification needs only the key and the wall clock.
"""
from __future__ import annotations

import base64
import binascii
import hmac
import json
import logging
import secrets
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import asdict, dataclass
from typing import Any
from urllib.parse import parse_qs

from libdesk.core import pow as core_pow
from libdesk.core.once import OneShot
from libdesk.services.identity import Identity
from libdesk.services.settings_store import SettingStore, SettingStoreError

logger = logging.getLogger(__name__)

HMAC_SETTING_KEY = "altcha_hmac_key"
HMAC_KEY_BYTES = 32
SALT_BYTES = 12
DEFAULT_EXPIRES_SECONDS = 60 * 60
DEFAULT_MAX_NUMBER = 100_000
_REQUIRED_FIELDS = ("algorithm", "challenge", "number", "salt", "signature")


@dataclass(frozen=True)
class Challenge:
    """Challenge envelope sent to clients."""

    algorithm: str
    challenge: str
    maxnumber: int
    salt: str
    signature: str
    expires: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class VerificationResult:
    """Outcome of verifying a submitted solution; truthy when valid."""

    valid: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.valid


def _expires_from_salt(salt: str) -> int | None:
    _, _, query = salt.partition("?")
    values = parse_qs(query).get("expires")
    if not values:
        return None
    try:
        return int(values[0])
    except ValueError:
        return None


def decode_payload(payload: str | Mapping[str, Any]) -> dict[str, Any] | None:
    """Decode a client payload (base64 JSON or an already parsed mapping)."""
    if isinstance(payload, Mapping):
        return dict(payload)
    try:
        decoded = json.loads(base64.b64decode(payload, validate=True).decode("utf-8"))
    except (binascii.Error, ValueError, UnicodeDecodeError):
        return None
    return decoded if isinstance(decoded, dict) else None


def client_reset_keys(ip_address: str, identity: Identity | None) -> set[str]:
    """Return every bucket a caller may be counted under.

    A caller may have been throttled before or after signing in, so both the
    IP bucket and the user bucket have to be cleared to unblock them.
    """
    keys = {Identity.guest(ip_address).bucket_key}
    if identity is not None and identity.is_authenticated:
        keys.add(identity.bucket_key)
    return keys


class ChallengeService:
    """Issues and verifies signed, time-bounded proof-of-work challenges."""

    def __init__(
        self,
        store: SettingStore,
        algorithm: str = "SHA-256",
        max_number: int = DEFAULT_MAX_NUMBER,
        expires_seconds: int = DEFAULT_EXPIRES_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not core_pow.is_supported(algorithm):
            raise ValueError(f"Unsupported hash algorithm: {algorithm}")
        self._store = store
        self.algorithm = algorithm
        self.max_number = max_number
        self.expires_seconds = expires_seconds
        self._clock = clock
        self._secret: OneShot[str] = OneShot()
        self._fallback_lock = threading.Lock()
        self._fallback_secret: str | None = None

    def hmac_key(self) -> str:
        """Return the shared HMAC key, creating and persisting it on first use.

        If the store is unreachable a process-local key is used for now and the
        store is tried again on the next call.
        """
        try:
            return self._secret.run(self._load_or_create_secret)
        except SettingStoreError as err:
            logger.warning("HMAC key store unavailable, using a temporary key: %s", err)
            with self._fallback_lock:
                if self._fallback_secret is None:
                    self._fallback_secret = secrets.token_hex(HMAC_KEY_BYTES)
                return self._fallback_secret

    def _load_or_create_secret(self) -> str:
        existing = self._store.get(HMAC_SETTING_KEY)
        if existing:
            return existing
        winner = self._store.setdefault(HMAC_SETTING_KEY, secrets.token_hex(HMAC_KEY_BYTES))
        logger.info("Generated new CAPTCHA HMAC key")
        return winner

    def issue_challenge(self) -> Challenge:
        """Create a signed challenge that expires after `expires_seconds`."""
        expires = int(self._clock()) + int(self.expires_seconds)
        salt = f"{secrets.token_hex(SALT_BYTES)}?expires={expires}"
        number = secrets.randbelow(self.max_number + 1)
        digest = core_pow.challenge_for(self.algorithm, salt, number)
        return Challenge(
            algorithm=self.algorithm,
            challenge=digest,
            maxnumber=self.max_number,
            salt=salt,
            signature=core_pow.sign_hex(self.algorithm, self.hmac_key(), digest),
            expires=expires,
        )

    def verify(self, payload: str | Mapping[str, Any] | None) -> VerificationResult:
        """Check a submitted solution against the HMAC key and expiry."""
        if not payload:
            return VerificationResult(False, "missing payload")
        solution = decode_payload(payload)
        if solution is None:
            return VerificationResult(False, "malformed payload")
        if any(field not in solution for field in _REQUIRED_FIELDS):
            return VerificationResult(False, "incomplete payload")

        algorithm = solution["algorithm"]
        salt = solution["salt"]
        challenge = solution["challenge"]
        signature = solution["signature"]
        if algorithm != self.algorithm:
            return VerificationResult(False, "unexpected algorithm")
        if not all(isinstance(value, str) for value in (salt, challenge, signature)):
            return VerificationResult(False, "malformed payload")

        number = solution["number"]
        if isinstance(number, bool) or not isinstance(number, int) or number < 0:
            return VerificationResult(False, "malformed payload")

        expires = _expires_from_salt(salt)
        if expires is None:
            return VerificationResult(False, "challenge carries no expiry")
        if self._clock() >= expires:
            return VerificationResult(False, "challenge expired")

        expected_challenge = core_pow.challenge_for(algorithm, salt, number)
        if not hmac.compare_digest(expected_challenge.encode(), challenge.encode("utf-8")):
            return VerificationResult(False, "wrong solution")

        expected_signature = core_pow.sign_hex(algorithm, self.hmac_key(), challenge)
        if not hmac.compare_digest(expected_signature.encode(), signature.encode("utf-8")):
            return VerificationResult(False, "bad signature")
        return VerificationResult(True)
