"""JWT helpers shared by the identification middleware and tooling."""

from __future__ import annotations

import logging
import secrets
import threading
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import jwt

from libdesk.core.settings import Settings, settings

logger = logging.getLogger(__name__)

_SECRET_LOCK = threading.Lock()


def resolve_jwt_secret(config: Settings | None = None) -> str:
    """Return the configured JWT signing secret.

    When `JWT_SECRET` is not set a random secret is generated once per
    settings instance. Tokens signed with it stop validating after a restart.
    """
    config = config or settings
    if config.jwt_secret:
        return config.jwt_secret
    with _SECRET_LOCK:
        generated = config._generated_jwt_secret
        if generated is None:
            generated = secrets.token_hex(64)
            config._generated_jwt_secret = generated
            logger.warning(
                "JWT_SECRET not set in environment. Using randomly generated secret "
                "(will change on restart)."
            )
    return generated


def create_access_token(
    user_id: int | str,
    role: str = "user",
    username: str | None = None,
    *,
    secret: str | None = None,
    config: Settings | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    """Create a JWT access token carrying the caller's id and role."""
    config = config or settings
    expire = datetime.now(UTC) + (
        expires_delta or timedelta(minutes=config.access_token_expire_minutes)
    )
    to_encode: dict[str, Any] = {
        "sub": str(user_id),
        "id": user_id,
        "role": role,
        "exp": expire,
    }
    if username is not None:
        to_encode["username"] = username
    encoded_jwt: str = jwt.encode(
        to_encode,
        secret or resolve_jwt_secret(config),
        algorithm=config.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str, secret: str, algorithm: str) -> dict[str, Any]:
    """Decode and verify a JWT, raising `jose.JWTError` on any failure."""
    return jwt.decode(token, secret, algorithms=[algorithm])
