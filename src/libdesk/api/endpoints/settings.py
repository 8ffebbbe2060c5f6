"""Settings endpoints: public feature flags and the super-admin view."""

from __future__ import annotations

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from libdesk.api.dependencies import KeyManagerDep, SettingStoreDep, SuperAdminDep
from libdesk.schemas.status import PublicSettingsOut
from libdesk.services.challenge import HMAC_SETTING_KEY
from libdesk.services.key_manager import RSA_SETTING_KEY, KeyManager
from libdesk.services.settings_store import TypedSettings

router = APIRouter(prefix="/settings", tags=["settings"])

MASK = "********"
SENSITIVE_KEYS = frozenset(
    {
        "smtp_pass",
        "recaptcha_secret_key",
        "gemini_api_key",
        "bigmodel_api_key",
        HMAC_SETTING_KEY,
        RSA_SETTING_KEY,
    }
)


def mask_settings(values: dict[str, str | None]) -> dict[str, str | None]:
    """Replace secret values with a fixed placeholder."""
    return {
        key: (MASK if key in SENSITIVE_KEYS and value else value)
        for key, value in values.items()
    }


def _public_settings(store: TypedSettings, key_manager: KeyManager) -> PublicSettingsOut:
    return PublicSettingsOut(
        recaptcha_enabled=store.get_bool("recaptcha_enabled"),
        recaptcha_site_key=store.get_str("recaptcha_site_key"),
        recaptcha_provider=store.get_str("recaptcha_provider", "turnstile"),
        email_verification_enabled=store.get_bool("email_verification_enabled"),
        email_notifications_feature_enabled=store.get_bool("email_notifications_feature_enabled"),
        student_info_enabled=store.get_bool("student_info_enabled"),
        ai_qa_enabled=store.get_bool("ai_qa_enabled"),
        knowledge_base_enabled=store.get_bool("knowledge_base_enabled", default=True),
        show_github_link=store.get_bool("show_github_link", default=True),
        university_name=store.get_str("university_name", "xx University"),
        public_key=key_manager.get_public_key(),
    )


@router.get("/public", response_model=PublicSettingsOut)
async def get_public_settings(
    store: SettingStoreDep,
    key_manager: KeyManagerDep,
) -> PublicSettingsOut:
    """Return frontend feature flags, normalized to real booleans."""
    return await run_in_threadpool(_public_settings, TypedSettings(store), key_manager)


@router.get("")
async def list_settings(_: SuperAdminDep, store: SettingStoreDep) -> dict[str, str | None]:
    """Return every stored setting with secrets masked (super admin only)."""
    values = await run_in_threadpool(store.items)
    return mask_settings(values)
