"""Status endpoint advertising setup state and the encryption key."""

from __future__ import annotations

from fastapi import APIRouter
from starlette.concurrency import run_in_threadpool

from libdesk.api.dependencies import ServicesDep
from libdesk.schemas.status import StatusOut

router = APIRouter(tags=["system"])


@router.get("/status", response_model=StatusOut)
async def get_status(services: ServicesDep) -> StatusOut:
    """Return whether the service finished setup, plus the RSA public key.

    Never fails on key problems: an uninitialized manager serves a
    just-in-time key instead.
    """
    public_key = await run_in_threadpool(services.key_manager.get_public_key)
    return StatusOut(configured=services.configured, public_key=public_key)
