"""Proof-of-work CAPTCHA endpoints used to lift a rate limit.

Both routes are exempt from admission control; a throttled client must be
able to reach them.
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool

from libdesk.api.dependencies import (
    AdmissionDep,
    ChallengeServiceDep,
    ClientIpDep,
    OptionalUserDep,
)
from libdesk.schemas.captcha import ChallengeOut, VerifyLimitRequest, VerifyLimitResponse
from libdesk.services.challenge import client_reset_keys
from libdesk.services.settings_store import SettingStoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/captcha", tags=["captcha"])


@router.get("/challenge", response_model=ChallengeOut)
async def get_challenge(challenges: ChallengeServiceDep) -> ChallengeOut | JSONResponse:
    """Issue a signed proof-of-work challenge that expires in an hour."""
    try:
        challenge = await run_in_threadpool(challenges.issue_challenge)
    except SettingStoreError as err:
        logger.error("Error generating CAPTCHA challenge: %s", err)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Failed to generate challenge"},
        )
    return ChallengeOut(**challenge.to_dict())


@router.post("/verify-limit", response_model=VerifyLimitResponse)
async def verify_limit(
    challenges: ChallengeServiceDep,
    admission: AdmissionDep,
    ip_address: ClientIpDep,
    user: OptionalUserDep,
    body: VerifyLimitRequest | None = None,
) -> VerifyLimitResponse | JSONResponse:
    """Verify a solved challenge and reset the caller's rate-limit buckets."""
    payload = body.payload if body is not None else None
    if not payload:
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Missing CAPTCHA payload"},
        )

    result = await run_in_threadpool(challenges.verify, payload)
    if not result:
        logger.info("Rejected CAPTCHA solution from %s: %s", ip_address, result.reason)
        return JSONResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            content={"error": "Invalid CAPTCHA"},
        )

    for key in sorted(client_reset_keys(ip_address, user)):
        await run_in_threadpool(admission.reset_key, key)

    return VerifyLimitResponse(success=True, message="Verification successful. Limit reset.")
