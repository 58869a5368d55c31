"""Domain enums (pure, dependency-light)."""

from __future__ import annotations

from enum import StrEnum


class LicenseStatus(StrEnum):
    PENDING = "pending"
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCEL = "cancel"
    REVOKED = "revoked"


class LicenseTerm(StrEnum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class SyncStatus(StrEnum):
    PENDING = "pending"
    SYNCED = "synced"
    FAILED = "failed"


class ReminderType(StrEnum):
    """Renewal reminders, each with a non-overlapping window before expiry."""

    DAYS_30 = "30days"
    DAYS_7 = "7days"
    DAY_1 = "1day"


class MatchAxis(StrEnum):
    """Identifier axes shared with the external authority, in priority order."""

    APPID = "appid"
    EMAIL = "email"
    COUNTID = "countid"


class HistoryAction(StrEnum):
    AUTO_SUSPENDED = "auto_suspended"
    EXPIRATION_EXTENDED = "expiration_extended"
    LICENSE_RENEWED = "license_renewed"
    LICENSE_REACTIVATED = "license_reactivated"
    REMINDER_SENT = "reminder_sent"


TERMINAL_STATUSES = frozenset({LicenseStatus.EXPIRED, LicenseStatus.REVOKED, LicenseStatus.CANCEL})
