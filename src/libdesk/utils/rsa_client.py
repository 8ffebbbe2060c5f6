"""Encrypt credentials the way browser clients do before posting them."""

from __future__ import annotations

import base64
import json
from typing import Any

from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa


def encrypt_for_public_key(public_key_pem: str, plaintext: str) -> str:
    """Encrypt `plaintext` with RSA-OAEP (SHA-1) and return base64 ciphertext.

    Raises:
        ValueError: If the PEM does not hold an RSA public key.
    """
    public_key = serialization.load_pem_public_key(public_key_pem.encode("ascii"))
    if not isinstance(public_key, rsa.RSAPublicKey):
        raise ValueError("Public key is not an RSA key")
    ciphertext = public_key.encrypt(
        plaintext.encode("utf-8"),
        padding.OAEP(
            mgf=padding.MGF1(algorithm=hashes.SHA1()),
            algorithm=hashes.SHA1(),
            label=None,
        ),
    )
    return base64.b64encode(ciphertext).decode("ascii")


def encrypt_json(public_key_pem: str, document: Any) -> str:
    """Serialize `document` to JSON and encrypt it."""
    return encrypt_for_public_key(public_key_pem, json.dumps(document))
