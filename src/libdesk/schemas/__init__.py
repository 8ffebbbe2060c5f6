# src/libdesk/schemas/__init__.py
"""Pydantic schemas for the admission-control API."""

from .captcha import ChallengeOut, VerifyLimitRequest, VerifyLimitResponse
from .status import PublicSettingsOut, StatusOut

__all__ = [
    "ChallengeOut",
    "VerifyLimitRequest",
    "VerifyLimitResponse",
    "PublicSettingsOut",
    "StatusOut",
]
