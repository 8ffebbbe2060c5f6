"""Tests for the status and settings endpoints."""

import asyncio
from collections.abc import Callable
from unittest.mock import patch

import pytest
from fastapi import FastAPI, status
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session, sessionmaker

from libdesk.services.settings_store import SqlSettingStore
from libdesk.utils.rsa_client import encrypt_for_public_key, encrypt_json


class TestStatus:
    def test_configured_with_public_key(self, client: TestClient) -> None:
        r = client.get("/api/status")
        assert r.status_code == status.HTTP_200_OK
        data = r.json()
        assert data["configured"] is True
        assert data["publicKey"].startswith("-----BEGIN PUBLIC KEY-----")

    def test_public_key_decrypts_client_ciphertext(
        self, app: FastAPI, client: TestClient
    ) -> None:
        public_key = client.get("/api/status").json()["publicKey"]
        key_manager = app.state.services.key_manager

        result = key_manager.decrypt(encrypt_for_public_key(public_key, "correct horse"))
        assert result.plaintext == "correct horse"
        _, document = key_manager.decrypt_json(encrypt_json(public_key, {"password": "pw"}))
        assert document == {"password": "pw"}

    def test_public_key_stable_across_requests(self, client: TestClient) -> None:
        first = client.get("/api/status").json()["publicKey"]
        second = client.get("/api/status").json()["publicKey"]
        assert first == second

    @pytest.mark.parametrize("path", ["/api/status", "/api/settings/public"])
    def test_public_key_is_read_off_the_event_loop(
        self, app: FastAPI, client: TestClient, path: str
    ) -> None:
        key_manager = app.state.services.key_manager
        real_get_public_key = key_manager.get_public_key
        loop_running: list[bool] = []

        def recording_get_public_key() -> str:
            try:
                asyncio.get_running_loop()
            except RuntimeError:
                loop_running.append(False)
            else:
                loop_running.append(True)
            return real_get_public_key()

        with patch.object(key_manager, "get_public_key", recording_get_public_key):
            assert client.get(path).status_code == status.HTTP_200_OK
        assert loop_running == [False]


@pytest.fixture()
def stored_settings(session_factory: sessionmaker[Session]) -> SqlSettingStore:
    store = SqlSettingStore(session_factory)
    store.set("recaptcha_enabled", "1")
    store.set("knowledge_base_enabled", "false")
    store.set("university_name", "Riverside University")
    store.set("smtp_pass", "hunter2")
    store.set("recaptcha_secret_key", "")
    return store


class TestPublicSettings:
    def test_flags_are_normalized(self, client: TestClient, stored_settings) -> None:
        r = client.get("/api/settings/public")
        assert r.status_code == status.HTTP_200_OK
        data = r.json()
        assert data["recaptcha_enabled"] is True
        assert data["knowledge_base_enabled"] is False
        assert data["show_github_link"] is True
        assert data["email_verification_enabled"] is False
        assert data["recaptcha_provider"] == "turnstile"
        assert data["university_name"] == "Riverside University"
        assert data["publicKey"].startswith("-----BEGIN PUBLIC KEY-----")
        assert "smtp_pass" not in data


class TestAdminSettings:
    def test_requires_identity(self, client: TestClient) -> None:
        assert client.get("/api/settings").status_code == status.HTTP_401_UNAUTHORIZED

    def test_requires_super_admin(
        self, client: TestClient, auth_headers: Callable[..., dict[str, str]]
    ) -> None:
        r = client.get("/api/settings", headers=auth_headers(3, "admin"))
        assert r.status_code == status.HTTP_403_FORBIDDEN

    def test_secrets_are_masked(
        self, client: TestClient, super_admin_headers: dict[str, str], stored_settings
    ) -> None:
        r = client.get("/api/settings", headers=super_admin_headers)
        assert r.status_code == status.HTTP_200_OK
        data = r.json()
        assert data["smtp_pass"] == "********"
        # Empty secrets stay empty so the admin can tell they are unset.
        assert data["recaptcha_secret_key"] == ""
        assert data["university_name"] == "Riverside University"
