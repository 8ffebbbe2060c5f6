"""Proof-of-work hashing primitives.

Challenges follow the ALTCHA scheme: the server picks a secret number `n`,
publishes `H(salt + str(n))` and signs it; the client finds `n` by brute
force. The helpers here are shared by the issuing service and the client
solver.
"""
from __future__ import annotations

import hashlib
import hmac
from typing import Literal

from blake3 import blake3

Algorithm = Literal["SHA-1", "SHA-256", "SHA-512", "BLAKE3"]
SUPPORTED_ALGORITHMS: tuple[Algorithm, ...] = ("SHA-1", "SHA-256", "SHA-512", "BLAKE3")
BLAKE3_KEY_BYTES = 32

_HASHLIB_NAMES = {
    "SHA-1": "sha1",
    "SHA-256": "sha256",
    "SHA-512": "sha512",
}


def is_supported(algorithm: str) -> bool:
    """Return True if `algorithm` names a supported challenge hash."""
    return algorithm in SUPPORTED_ALGORITHMS


def hash_hex(algorithm: str, data: str) -> str:
    """Return the hex digest of `data` under the named algorithm.

    Raises:
        ValueError: If the algorithm is not supported.
    """
    payload = data.encode("utf-8")
    if algorithm == "BLAKE3":
        return blake3(payload).hexdigest()
    name = _HASHLIB_NAMES.get(algorithm)
    if name is None:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")
    return hashlib.new(name, payload).hexdigest()


def sign_hex(algorithm: str, key: str, data: str) -> str:
    """Return a hex MAC of `data` keyed with `key`.

    SHA variants use HMAC; BLAKE3 uses its native keyed mode with a 32-byte key
    derived from `key`.
    """
    payload = data.encode("utf-8")
    if algorithm == "BLAKE3":
        derived = hashlib.sha256(key.encode("utf-8")).digest()
        return blake3(payload, key=derived).hexdigest()
    name = _HASHLIB_NAMES.get(algorithm)
    if name is None:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")
    return hmac.new(key.encode("utf-8"), payload, name).hexdigest()


def challenge_for(algorithm: str, salt: str, number: int) -> str:
    """Return the published challenge digest for a salt and secret number."""
    return hash_hex(algorithm, f"{salt}{number}")
