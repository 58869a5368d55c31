"""Domain model package."""

from __future__ import annotations

from .enums import (
    TERMINAL_STATUSES,
    HistoryAction,
    LicenseStatus,
    LicenseTerm,
    MatchAxis,
    ReminderType,
    SyncStatus,
)
from .external import ExternalLicense, normalize_external_status
from .keys import generate_license_key
from .license import (
    DEFAULT_GRACE_PERIOD_DAYS,
    RENEWAL_DUE_LEAD,
    License,
    RenewalHistoryEntry,
    SyncEnvelope,
)

__all__ = [
    "DEFAULT_GRACE_PERIOD_DAYS",
    "RENEWAL_DUE_LEAD",
    "TERMINAL_STATUSES",
    "ExternalLicense",
    "HistoryAction",
    "License",
    "LicenseStatus",
    "LicenseTerm",
    "MatchAxis",
    "ReminderType",
    "RenewalHistoryEntry",
    "SyncEnvelope",
    "SyncStatus",
    "generate_license_key",
    "normalize_external_status",
]
