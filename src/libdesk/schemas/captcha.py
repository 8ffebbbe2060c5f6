"""Schemas related to proof-of-work CAPTCHA challenges."""
from __future__ import annotations

from typing import Any

from pydantic import BaseModel


class ChallengeOut(BaseModel):
    """API response payload for issuing a proof-of-work challenge."""

    algorithm: str
    challenge: str
    maxnumber: int
    salt: str
    signature: str
    expires: int


class VerifyLimitRequest(BaseModel):
    """Solved challenge submitted to lift a rate limit.

    `payload` is either the base64-encoded JSON solution or the solution
    object itself.
    """

    payload: str | dict[str, Any] | None = None


class VerifyLimitResponse(BaseModel):
    success: bool
    message: str
