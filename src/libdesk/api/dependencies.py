"""Shared API dependencies: service lookup and caller identity."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, HTTPException, Request, status

from libdesk.core.settings import Settings
from libdesk.services.admission import AdmissionController
from libdesk.services.challenge import ChallengeService
from libdesk.services.identity import Identity, Role, SoftIdentifier
from libdesk.services.key_manager import KeyManager
from libdesk.services.settings_store import SettingStore


@dataclass
class AppServices:
    """Process-wide collaborators, built once per application."""

    settings: Settings
    setting_store: SettingStore
    key_manager: KeyManager
    identifier: SoftIdentifier
    admission: AdmissionController
    challenges: ChallengeService
    configured: bool = False


def get_services(request: Request) -> AppServices:
    """Return the services container attached to the running application."""
    services: AppServices = request.app.state.services
    return services


def get_key_manager(services: Annotated[AppServices, Depends(get_services)]) -> KeyManager:
    return services.key_manager


def get_admission(
    services: Annotated[AppServices, Depends(get_services)],
) -> AdmissionController:
    return services.admission


def get_challenge_service(
    services: Annotated[AppServices, Depends(get_services)],
) -> ChallengeService:
    return services.challenges


def get_setting_store(services: Annotated[AppServices, Depends(get_services)]) -> SettingStore:
    return services.setting_store


def client_ip(request: Request, trust_proxy: bool = True) -> str:
    """Return the caller's address, honouring X-Forwarded-For behind a proxy."""
    if trust_proxy:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            first = forwarded.split(",")[0].strip()
            if first:
                return first
    return request.client.host if request.client else "unknown"


def get_client_ip(
    request: Request,
    services: Annotated[AppServices, Depends(get_services)],
) -> str:
    return client_ip(request, services.settings.trust_proxy)


def get_optional_user(request: Request) -> Identity | None:
    """Identity attached by the admission middleware, if the token was valid."""
    return getattr(request.state, "user", None)


def get_current_user(
    user: Annotated[Identity | None, Depends(get_optional_user)],
) -> Identity:
    """Require a signed-in caller.

    Raises:
        HTTPException: 401 when no valid bearer token was presented.
    """
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
        )
    return user


def require_super_admin(
    user: Annotated[Identity, Depends(get_current_user)],
) -> Identity:
    """Require the super_admin role.

    Raises:
        HTTPException: 403 for any other role.
    """
    if user.role is not Role.SUPER_ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Super admin privileges required",
        )
    return user


ServicesDep = Annotated[AppServices, Depends(get_services)]
KeyManagerDep = Annotated[KeyManager, Depends(get_key_manager)]
AdmissionDep = Annotated[AdmissionController, Depends(get_admission)]
ChallengeServiceDep = Annotated[ChallengeService, Depends(get_challenge_service)]
SettingStoreDep = Annotated[SettingStore, Depends(get_setting_store)]
ClientIpDep = Annotated[str, Depends(get_client_ip)]
OptionalUserDep = Annotated[Identity | None, Depends(get_optional_user)]
SuperAdminDep = Annotated[Identity, Depends(require_super_admin)]
