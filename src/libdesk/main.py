# src/libdesk/main.py
"""Main entry point for the Library Feedback Desk API."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from starlette.concurrency import run_in_threadpool

from libdesk.api import captcha_router, settings_router, system_router
from libdesk.api.dependencies import AppServices
from libdesk.api.middleware import AdmissionMiddleware
from libdesk.core.once import OneShot
from libdesk.core.security import resolve_jwt_secret
from libdesk.core.settings import Settings, settings
from libdesk.db.session import SessionLocal, create_tables
from libdesk.services.admission import AdmissionController, QuotaPolicy
from libdesk.services.challenge import ChallengeService
from libdesk.services.identity import SoftIdentifier
from libdesk.services.key_manager import KeyManager
from libdesk.services.quota_store import QuotaStore, build_quota_store
from libdesk.services.settings_store import SqlSettingStore

logger = logging.getLogger(__name__)


def build_services(
    config: Settings,
    session_factory: sessionmaker[Session],
    quota_store: QuotaStore | None = None,
) -> AppServices:
    """Wire the admission-control collaborators for one application."""
    setting_store = SqlSettingStore(session_factory)
    admission = AdmissionController(
        quota_store or build_quota_store(config, session_factory),
        QuotaPolicy.from_settings(config),
        bypass_paths=config.rate_limit_bypass_paths,
        path_prefix=config.rate_limit_path_prefix,
    )
    return AppServices(
        settings=config,
        setting_store=setting_store,
        key_manager=KeyManager(config.rsa_private_key, key_size=config.rsa_key_size),
        identifier=SoftIdentifier(resolve_jwt_secret(config), config.jwt_algorithm),
        admission=admission,
        challenges=ChallengeService(
            setting_store,
            algorithm=config.captcha_algorithm,
            max_number=config.captcha_max_number,
            expires_seconds=config.captcha_expires_seconds,
        ),
    )


def initialize_services(services: AppServices, session_factory: sessionmaker[Session]) -> None:
    """Create tables if configured and load the RSA key.

    Failures are logged and leave `configured` unset; the service keeps
    serving with fallback key material.
    """
    if services.settings.auto_create_tables:
        bind = session_factory.kw.get("bind")
        try:
            create_tables(bind)
        except SQLAlchemyError as err:
            logger.error("Schema check failed: %s", err)
            return
    source = services.key_manager.initialize(services.setting_store)
    logger.info("RSA key source: %s", source.value)
    services.configured = services.key_manager.initialized


def create_app(
    config: Settings | None = None,
    session_factory: sessionmaker[Session] | None = None,
    quota_store: QuotaStore | None = None,
) -> FastAPI:
    """Build the FastAPI application and its services."""
    config = config or settings
    session_factory = session_factory or SessionLocal
    logging.getLogger("libdesk").setLevel(config.log_level.upper())

    app = FastAPI(
        title=f"{config.app_name} API",
        description="Admission control and credential bootstrap for the feedback desk",
        version=config.app_version,
    )
    app.state.services = build_services(config, session_factory, quota_store)
    startup_once: OneShot[bool] = OneShot()

    # Middleware added last runs first: admission sees requests after CORS/GZip.
    app.add_middleware(AdmissionMiddleware)
    app.add_middleware(GZipMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=config.cors_allow_credentials,
        allow_methods=config.cors_allow_methods,
        allow_headers=config.cors_allow_headers,
    )

    app.include_router(system_router, prefix="/api")
    app.include_router(captcha_router, prefix="/api")
    app.include_router(settings_router, prefix="/api")

    def _initialize() -> bool:
        initialize_services(app.state.services, session_factory)
        return True

    @app.on_event("startup")
    async def on_startup() -> None:
        await run_in_threadpool(startup_once.run, _initialize)

    @app.get("/health")
    async def health_check() -> dict[str, str]:
        """Health check endpoint to verify the service is running."""
        return {"status": "ok"}

    @app.get("/")
    async def root() -> dict[str, str]:
        """Root endpoint with basic information about the API."""
        return {
            "name": config.app_name,
            "version": config.app_version,
            "docs": "/docs",
            "redoc": "/redoc",
        }

    return app


app = create_app()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run("libdesk.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
