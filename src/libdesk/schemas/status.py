"""Schemas for status and public configuration endpoints."""
from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field


class StatusOut(BaseModel):
    """Setup state and the key clients use to encrypt credentials."""

    model_config = ConfigDict(populate_by_name=True)

    configured: bool
    public_key: str = Field(alias="publicKey")


class PublicSettingsOut(BaseModel):
    """Feature flags the frontend needs before a user signs in."""

    model_config = ConfigDict(populate_by_name=True)

    recaptcha_enabled: bool
    recaptcha_site_key: str
    recaptcha_provider: str
    email_verification_enabled: bool
    email_notifications_feature_enabled: bool
    student_info_enabled: bool
    ai_qa_enabled: bool
    knowledge_base_enabled: bool
    show_github_link: bool
    university_name: str
    public_key: str = Field(alias="publicKey")
