# src/libdesk/models/__init__.py
"""SQLAlchemy models for the admission-control layer."""

from .rate_limit import RateLimit
from .system_setting import SystemSetting

__all__ = ["RateLimit", "SystemSetting"]
