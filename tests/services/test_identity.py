"""Tests for best-effort caller identification."""

from datetime import timedelta

import pytest

from libdesk.core.security import create_access_token
from libdesk.services.identity import Identity, Role, SoftIdentifier, parse_bearer

SECRET = "identity-secret"


@pytest.fixture()
def identifier() -> SoftIdentifier:
    return SoftIdentifier(SECRET, "HS256")


def _token(user_id: int | str = 42, role: str = "user", **kwargs) -> str:
    return create_access_token(user_id, role=role, secret=SECRET, **kwargs)


class TestParseBearer:
    @pytest.mark.parametrize(
        ("header", "expected"),
        [
            ("Bearer abc", "abc"),
            ("bearer   abc  ", "abc"),
            ("Basic abc", None),
            ("Bearer", None),
            ("", None),
            (None, None),
        ],
    )
    def test_parse(self, header, expected) -> None:
        assert parse_bearer(header) == expected


class TestSoftIdentifier:
    def test_valid_token(self, identifier: SoftIdentifier) -> None:
        identity = identifier.identify(f"Bearer {_token(42, 'admin', username='ada')}")
        assert identity == Identity.authenticated("42", Role.ADMIN, username="ada")
        assert identity is not None and identity.bucket_key == "user_42"

    def test_missing_header_is_anonymous(self, identifier: SoftIdentifier) -> None:
        assert identifier.identify(None) is None

    def test_tampered_signature_is_anonymous(self, identifier: SoftIdentifier) -> None:
        header, payload, _ = _token(42, "super_admin").split(".")
        forged_signature = create_access_token(
            42, role="super_admin", secret="someone-else"
        ).split(".")[2]
        assert identifier.identify(f"Bearer {header}.{payload}.{forged_signature}") is None

    def test_expired_token_is_anonymous(self, identifier: SoftIdentifier) -> None:
        token = _token(expires_delta=timedelta(seconds=-30))
        assert identifier.identify(f"Bearer {token}") is None

    def test_garbage_token_is_anonymous(self, identifier: SoftIdentifier) -> None:
        assert identifier.identify("Bearer not.a.jwt") is None

    def test_unknown_role_is_regular_user(self, identifier: SoftIdentifier) -> None:
        identity = identifier.identify(f"Bearer {_token(7, 'librarian')}")
        assert identity is not None
        assert identity.role is Role.USER


class TestIdentity:
    def test_bucket_namespaces_do_not_overlap(self) -> None:
        assert Identity.guest("42").bucket_key == "ip_42"
        assert Identity.authenticated("42", Role.USER).bucket_key == "user_42"

    def test_guest_is_not_authenticated(self) -> None:
        guest = Identity.guest("203.0.113.9")
        assert not guest.is_authenticated
        assert guest.role is None
