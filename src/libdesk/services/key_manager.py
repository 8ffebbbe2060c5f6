"""RSA key lifecycle for protecting sensitive payloads in transit.

Clients fetch the public key, encrypt credentials with RSA-OAEP and post the
base64 ciphertext; handlers decrypt it with `KeyManager.decrypt`.

Key material is resolved in this order:

1. the `rsa_private_key` setting (base64 PEM), shared by every process;
2. the `RSA_PRIVATE_KEY` environment value (base64 PEM);
3. a freshly generated key, which is then persisted to the settings store.

If the store is unreachable the manager serves a temporary in-memory key and
keeps trying on later `initialize` calls. Payloads encrypted under a
temporary key cannot be decrypted once the persisted key takes over.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa

from libdesk.core.once import OneShot
from libdesk.services.settings_store import SettingStore, SettingStoreError

logger = logging.getLogger(__name__)

RSA_SETTING_KEY = "rsa_private_key"
DEFAULT_KEY_SIZE = 2048
PUBLIC_EXPONENT = 65537


class KeyMaterialError(RuntimeError):
    """Raised when stored or configured key material cannot be parsed."""


class KeySource(str, Enum):
    """Where the active private key came from."""

    STORE = "store"
    ENVIRONMENT = "environment"
    GENERATED = "generated"
    EPHEMERAL = "ephemeral"


@dataclass(frozen=True)
class DecryptionResult:
    """Outcome of a decryption attempt."""

    plaintext: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.plaintext is not None


def _oaep() -> padding.OAEP:
    # WebCrypto and node-rsa clients encrypt with RSA-OAEP over SHA-1.
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA1()),
        algorithm=hashes.SHA1(),
        label=None,
    )


def generate_private_key(key_size: int = DEFAULT_KEY_SIZE) -> rsa.RSAPrivateKey:
    """Generate a new RSA private key."""
    return rsa.generate_private_key(public_exponent=PUBLIC_EXPONENT, key_size=key_size)


def private_key_to_b64(private_key: rsa.RSAPrivateKey) -> str:
    """Serialize a private key as base64-encoded PKCS#1 PEM."""
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.TraditionalOpenSSL,
        encryption_algorithm=serialization.NoEncryption(),
    )
    return base64.b64encode(pem).decode("ascii")


def private_key_from_b64(value: str) -> rsa.RSAPrivateKey:
    """Load a private key from base64-encoded PEM.

    Raises:
        KeyMaterialError: If the value is not a base64 PEM RSA private key.
    """
    try:
        pem = base64.b64decode(value.strip(), validate=True)
        key = serialization.load_pem_private_key(pem, password=None)
    except (binascii.Error, ValueError, TypeError) as err:
        raise KeyMaterialError(f"Invalid RSA private key material: {err}") from err
    if not isinstance(key, rsa.RSAPrivateKey):
        raise KeyMaterialError("Key material is not an RSA private key")
    return key


class KeyManager:
    """Owns the process-wide RSA key pair."""

    def __init__(self, env_private_key: str | None = None, key_size: int = DEFAULT_KEY_SIZE) -> None:
        self._env_private_key = env_private_key
        self._key_size = key_size
        self._once: OneShot[KeySource] = OneShot()
        self._key_lock = threading.Lock()
        self._key: rsa.RSAPrivateKey | None = None
        self._source: KeySource | None = None

    @property
    def initialized(self) -> bool:
        """Return True once the key was resolved through the full load chain."""
        return self._once.is_set

    @property
    def source(self) -> KeySource | None:
        """Return where the active key came from, if any key is active."""
        return self._source

    def initialize(self, store: SettingStore) -> KeySource:
        """Resolve the key through the load chain, at most once per process.

        Safe to call concurrently: a single caller runs the chain while the
        others wait for it. If the store cannot be read, a temporary key is
        installed and the next call tries again.
        """
        try:
            return self._once.run(lambda: self._load_chain(store))
        except (SettingStoreError, KeyMaterialError) as err:
            logger.warning("Failed to initialize RSA key: %s", err)
            source = self._ensure_fallback_key()
            logger.warning("Using temporary RSA key (not persisted)")
            return source

    def _load_chain(self, store: SettingStore) -> KeySource:
        stored = store.get(RSA_SETTING_KEY)
        if stored:
            # A corrupt stored key is surfaced rather than silently replaced.
            key = private_key_from_b64(stored)
            self._install(key, KeySource.STORE)
            logger.info("RSA key loaded from database")
            return KeySource.STORE

        env_key = self._load_env_key()
        if env_key is not None:
            self._install(env_key, KeySource.ENVIRONMENT)
            logger.info("RSA key loaded from environment variable")
            return KeySource.ENVIRONMENT

        key = generate_private_key(self._key_size)
        encoded = private_key_to_b64(key)
        try:
            winner = store.setdefault(RSA_SETTING_KEY, encoded)
        except SettingStoreError as err:
            logger.error("Generated RSA key could not be persisted: %s", err)
            self._install(key, KeySource.EPHEMERAL)
            return KeySource.EPHEMERAL

        if winner != encoded:
            # Another process persisted its key first; converge on it.
            self._install(private_key_from_b64(winner), KeySource.STORE)
            logger.info("RSA key loaded from database after concurrent generation")
            return KeySource.STORE

        self._install(key, KeySource.GENERATED)
        logger.info("New RSA key generated and saved to database")
        return KeySource.GENERATED

    def _load_env_key(self) -> rsa.RSAPrivateKey | None:
        if not self._env_private_key:
            return None
        try:
            return private_key_from_b64(self._env_private_key)
        except KeyMaterialError as err:
            logger.error("Failed to load RSA key from env: %s", err)
            return None

    def _install(self, key: rsa.RSAPrivateKey, source: KeySource) -> None:
        with self._key_lock:
            self._key = key
            self._source = source

    def _ensure_fallback_key(self) -> KeySource:
        """Install a just-in-time key unless one is already active."""
        with self._key_lock:
            if self._key is not None and self._source is not None:
                return self._source
            env_key = self._load_env_key()
            if env_key is not None:
                self._key, self._source = env_key, KeySource.ENVIRONMENT
                logger.info("RSA key loaded from environment variable (fallback)")
            else:
                self._key = generate_private_key(self._key_size)
                self._source = KeySource.EPHEMERAL
                logger.warning("RSA key generated dynamically. Set RSA_PRIVATE_KEY for production.")
            return self._source

    def _active_key(self) -> rsa.RSAPrivateKey:
        if self._key is None:
            self._ensure_fallback_key()
        assert self._key is not None
        return self._key

    def get_public_key(self) -> str:
        """Return the public key as SubjectPublicKeyInfo PEM."""
        pem = self._active_key().public_key().public_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PublicFormat.SubjectPublicKeyInfo,
        )
        return pem.decode("ascii")

    def decrypt(self, ciphertext_b64: str | None) -> DecryptionResult:
        """Decrypt a base64 RSA-OAEP ciphertext into UTF-8 text.

        Never raises; malformed input or a wrong key yields a failed result.
        """
        if not ciphertext_b64:
            return DecryptionResult(error="empty ciphertext")
        try:
            ciphertext = base64.b64decode(ciphertext_b64, validate=True)
            plaintext = self._active_key().decrypt(ciphertext, _oaep())
            return DecryptionResult(plaintext=plaintext.decode("utf-8"))
        except (binascii.Error, ValueError, UnicodeDecodeError) as err:
            logger.error("Decryption failed: %s", err)
            return DecryptionResult(error=str(err) or err.__class__.__name__)

    def decrypt_json(self, ciphertext_b64: str | None) -> tuple[DecryptionResult, Any]:
        """Decrypt a ciphertext holding a JSON document.

        Returns the decryption result and the parsed document (None on failure).
        """
        result = self.decrypt(ciphertext_b64)
        if not result.ok:
            return result, None
        try:
            return result, json.loads(result.plaintext or "")
        except json.JSONDecodeError as err:
            logger.error("Decrypted payload is not valid JSON: %s", err)
            return DecryptionResult(error="invalid JSON payload"), None
