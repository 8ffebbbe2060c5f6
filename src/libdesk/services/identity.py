"""Best-effort caller identification for admission control.

`SoftIdentifier` is not an authentication gate: a missing, malformed, expired
or forged bearer token simply leaves the caller anonymous.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Literal

from jose import JWTError

from libdesk.core.security import decode_access_token

logger = logging.getLogger(__name__)

GUEST_PREFIX = "ip_"
USER_PREFIX = "user_"


class Role(str, Enum):
    """Account roles, ordered from least to most privileged."""

    USER = "user"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"

    @classmethod
    def parse(cls, raw: object) -> Role:
        """Map a role claim to a `Role`; unknown values are regular users."""
        try:
            return cls(str(raw))
        except ValueError:
            return cls.USER


@dataclass(frozen=True)
class Identity:
    """Transient identity of a caller, derived once per request."""

    kind: Literal["guest", "authenticated"]
    key: str
    role: Role | None = None
    username: str | None = None

    @classmethod
    def guest(cls, ip_address: str) -> Identity:
        return cls(kind="guest", key=ip_address)

    @classmethod
    def authenticated(cls, user_id: str, role: Role, username: str | None = None) -> Identity:
        return cls(kind="authenticated", key=user_id, role=role, username=username)

    @property
    def is_authenticated(self) -> bool:
        return self.kind == "authenticated"

    @property
    def bucket_key(self) -> str:
        """Quota bucket name; guest and user namespaces never overlap."""
        prefix = USER_PREFIX if self.is_authenticated else GUEST_PREFIX
        return f"{prefix}{self.key}"


def parse_bearer(authorization: str | None) -> str | None:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer":
        return None
    token = token.strip()
    return token or None


class SoftIdentifier:
    """Decode bearer tokens into identities without ever failing the request."""

    def __init__(self, secret: str, algorithm: str = "HS256") -> None:
        self._secret = secret
        self._algorithm = algorithm

    def identify(self, authorization: str | None) -> Identity | None:
        """Return the authenticated identity, or None to proceed as a guest."""
        token = parse_bearer(authorization)
        if token is None:
            return None
        try:
            claims = decode_access_token(token, self._secret, self._algorithm)
        except JWTError as err:
            logger.debug("Ignoring unusable bearer token: %s", err)
            return None

        user_id = claims.get("id", claims.get("sub"))
        if user_id is None or str(user_id) == "":
            return None
        username = claims.get("username")
        return Identity.authenticated(
            str(user_id),
            Role.parse(claims.get("role")),
            username=str(username) if username is not None else None,
        )
