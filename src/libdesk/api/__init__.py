# src/libdesk/api/__init__.py
"""HTTP layer for the admission-control service."""

from .endpoints import captcha_router, settings_router, system_router

__all__ = [
    "captcha_router",
    "settings_router",
    "system_router",
]
