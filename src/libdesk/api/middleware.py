"""Admission middleware: soft identification followed by rate limiting."""

from __future__ import annotations

import logging

from fastapi import status
from fastapi.responses import JSONResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from libdesk.api.dependencies import AppServices, client_ip
from libdesk.services.identity import Identity

logger = logging.getLogger(__name__)

THROTTLED_MESSAGE = (
    "Too many requests from this client. Try again later, or complete the "
    "human verification to lift the limit."
)


class AdmissionMiddleware(BaseHTTPMiddleware):
    """Identify the caller, then admit or throttle the request.

    Identification never fails the request; an unusable token simply leaves
    the caller a guest. Paths that lift a throttle are identified but never
    counted.
    """

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        services: AppServices | None = getattr(request.app.state, "services", None)
        if services is None:
            return await call_next(request)

        user = services.identifier.identify(request.headers.get("authorization"))
        ip_address = client_ip(request, services.settings.trust_proxy)
        identity = user or Identity.guest(ip_address)
        request.state.user = user
        request.state.identity = identity
        request.state.client_ip = ip_address

        admission = services.admission
        if not admission.applies_to(request.url.path):
            return await call_next(request)

        decision = await run_in_threadpool(admission.admit, identity)
        headers = decision.headers(admission.now_ms())
        if not decision.allowed:
            logger.info("Rejected request from %s to %s", decision.key, request.url.path)
            return JSONResponse(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                content={
                    "error": "Too many requests",
                    "message": THROTTLED_MESSAGE,
                    "requiresVerification": True,
                },
                headers=headers,
            )

        response = await call_next(request)
        response.headers.update(headers)
        return response
