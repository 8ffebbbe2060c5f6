# src/libdesk/api/endpoints/__init__.py
"""API endpoint modules."""

from .captcha import router as captcha_router
from .settings import router as settings_router
from .system import router as system_router

__all__ = [
    "captcha_router",
    "settings_router",
    "system_router",
]
