"""Time-driven license lifecycle: expiry, grace period, reminders, suspension."""

from __future__ import annotations

from .rules import (
    LifecycleClassification,
    classify,
    due_reminder,
    is_expiring_soon,
    is_suspension_eligible,
)
from .service import (
    AttentionReport,
    LifecycleRunSummary,
    LifecycleService,
    ReminderReport,
    SuspensionReport,
)

__all__ = [
    "AttentionReport",
    "LifecycleClassification",
    "LifecycleRunSummary",
    "LifecycleService",
    "ReminderReport",
    "SuspensionReport",
    "classify",
    "due_reminder",
    "is_expiring_soon",
    "is_suspension_eligible",
]
