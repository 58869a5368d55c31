"""Pure time-based classification of licenses.

Nothing here touches persistence or sends anything; every function takes the
current time explicitly.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from licsync.domain.clock import ensure_aware
from licsync.domain.model import TERMINAL_STATUSES, ReminderType

if TYPE_CHECKING:
    from datetime import datetime

    from licsync.domain.model import License

DEFAULT_EXPIRING_THRESHOLD_DAYS = 30

# (exclusive lower bound, inclusive upper bound) on the time left before expiry
REMINDER_WINDOWS: dict[ReminderType, tuple[timedelta, timedelta]] = {
    ReminderType.DAYS_30: (timedelta(days=7), timedelta(days=30)),
    ReminderType.DAYS_7: (timedelta(days=1), timedelta(days=7)),
    ReminderType.DAY_1: (timedelta(0), timedelta(days=1)),
}


def time_to_expiry(license: License, now: datetime) -> timedelta | None:
    expires_at = ensure_aware(license.expires_at)
    if expires_at is None:
        return None
    return expires_at - now


def effective_grace_period_end(license: License) -> datetime | None:
    """Stored grace end, or the one derived from the expiry if it was never set."""

    if license.grace_period_end is not None:
        return ensure_aware(license.grace_period_end)
    expires_at = ensure_aware(license.expires_at)
    if expires_at is None:
        return None
    return expires_at + timedelta(days=license.grace_period_days)


def is_expiring_soon(
    license: License,
    now: datetime,
    threshold_days: int = DEFAULT_EXPIRING_THRESHOLD_DAYS,
) -> bool:
    if license.status in TERMINAL_STATUSES:
        return False
    remaining = time_to_expiry(license, now)
    if remaining is None:
        return False
    return timedelta(0) < remaining <= timedelta(days=threshold_days)


def is_expired(license: License, now: datetime) -> bool:
    remaining = time_to_expiry(license, now)
    return remaining is not None and remaining < timedelta(0)


def is_in_grace_period(license: License, now: datetime) -> bool:
    grace_end = effective_grace_period_end(license)
    return is_expired(license, now) and grace_end is not None and now <= grace_end


def is_suspension_eligible(license: License, now: datetime) -> bool:
    if not license.auto_suspend_enabled or license.status in TERMINAL_STATUSES:
        return False
    if not is_expired(license, now):
        return False
    grace_end = effective_grace_period_end(license)
    return grace_end is not None and grace_end < now


def reminder_window(remaining: timedelta) -> ReminderType | None:
    for reminder, (lower, upper) in REMINDER_WINDOWS.items():
        if lower < remaining <= upper:
            return reminder
    return None


def due_reminder(license: License, now: datetime) -> ReminderType | None:
    """Return the reminder that should go out now, if it has not been sent yet."""

    if license.status in TERMINAL_STATUSES:
        return None
    remaining = time_to_expiry(license, now)
    if remaining is None:
        return None
    reminder = reminder_window(remaining)
    if reminder is None or license.has_reminder(reminder):
        return None
    return reminder


@dataclass(frozen=True, slots=True)
class LifecycleClassification:
    expiring_soon: bool
    expired: bool
    in_grace_period: bool
    suspension_eligible: bool
    reminder_due: ReminderType | None


def classify(
    license: License,
    now: datetime,
    threshold_days: int = DEFAULT_EXPIRING_THRESHOLD_DAYS,
) -> LifecycleClassification:
    return LifecycleClassification(
        expiring_soon=is_expiring_soon(license, now, threshold_days),
        expired=is_expired(license, now),
        in_grace_period=is_in_grace_period(license, now),
        suspension_eligible=is_suspension_eligible(license, now),
        reminder_due=due_reminder(license, now),
    )


__all__ = [
    "DEFAULT_EXPIRING_THRESHOLD_DAYS",
    "REMINDER_WINDOWS",
    "LifecycleClassification",
    "classify",
    "due_reminder",
    "effective_grace_period_end",
    "is_expired",
    "is_expiring_soon",
    "is_in_grace_period",
    "is_suspension_eligible",
    "reminder_window",
    "time_to_expiry",
]
