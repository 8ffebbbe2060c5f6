# src/libdesk/services/__init__.py
"""Admission-control and credential services."""

from .admission import AdmissionController, AdmissionDecision, QuotaPolicy
from .challenge import ChallengeService, VerificationResult
from .identity import Identity, Role, SoftIdentifier
from .key_manager import DecryptionResult, KeyManager, KeySource
from .quota_store import (
    FallbackQuotaStore,
    MemoryQuotaStore,
    QuotaRecord,
    RedisQuotaStore,
    SqlQuotaStore,
    build_quota_store,
)
from .settings_store import SettingStoreError, SqlSettingStore, TypedSettings

__all__ = [
    "AdmissionController",
    "AdmissionDecision",
    "QuotaPolicy",
    "ChallengeService",
    "VerificationResult",
    "Identity",
    "Role",
    "SoftIdentifier",
    "DecryptionResult",
    "KeyManager",
    "KeySource",
    "FallbackQuotaStore",
    "MemoryQuotaStore",
    "QuotaRecord",
    "RedisQuotaStore",
    "SqlQuotaStore",
    "build_quota_store",
    "SettingStoreError",
    "SqlSettingStore",
    "TypedSettings",
]
