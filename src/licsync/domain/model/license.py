"""The internally owned license aggregate."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING

from licsync.domain.clock import ensure_aware, utcnow
from licsync.domain.errors import DataIntegrityAnomaly

from .enums import HistoryAction, LicenseStatus, LicenseTerm, ReminderType, SyncStatus

if TYPE_CHECKING:
    from collections.abc import Mapping

DEFAULT_GRACE_PERIOD_DAYS = 30
RENEWAL_DUE_LEAD = timedelta(days=30)


@dataclass(frozen=True, slots=True)
class RenewalHistoryEntry:
    action: str
    timestamp: datetime
    details: Mapping[str, object] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "action": self.action,
            "timestamp": self.timestamp.isoformat(),
            "details": dict(self.details),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> RenewalHistoryEntry:
        raw_details = data.get("details")
        details = dict(raw_details) if isinstance(raw_details, dict) else {}
        return cls(
            action=str(data["action"]),
            timestamp=datetime.fromisoformat(str(data["timestamp"])),
            details=details,
        )


@dataclass(frozen=True, slots=True)
class SyncEnvelope:
    """Provenance and freshness of the externally sourced part of a license."""

    external_appid: str | None
    external_email: str | None
    external_countid: int | None
    external_status: str | None
    last_external_sync: datetime | None
    external_sync_status: SyncStatus
    external_sync_error: str | None

    @property
    def has_external_identity(self) -> bool:
        return any(
            value is not None
            for value in (self.external_appid, self.external_email, self.external_countid)
        )


@dataclass(eq=False, kw_only=True)
class License:
    """A license record owned by this application.

    List valued fields are replaced rather than mutated in place so that the
    persistence layer notices the change.
    """

    key: str
    product: str
    id: uuid.UUID = field(default_factory=uuid.uuid4)
    plan: str = "Basic"
    status: LicenseStatus = LicenseStatus.PENDING
    term: LicenseTerm = LicenseTerm.MONTHLY
    seats_total: int = 1
    seats_used: int = 0
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    cancel_date: datetime | None = None

    dba: str | None = None
    zip: str | None = None
    mid: str | None = None
    license_type: str | None = None
    notes: str | None = None
    last_payment: float = 0.0
    last_active: datetime | None = None
    sms_purchased: int = 0
    sms_sent: int = 0
    sms_balance: float = 0.0
    agents: int = 0
    agents_cost: float = 0.0
    package_data: object | None = None
    sendbat_workspace: str | None = None
    coming_expired: str | None = None

    external_appid: str | None = None
    external_email: str | None = None
    external_countid: int | None = None
    external_status: str | None = None
    last_external_sync: datetime | None = None
    external_sync_status: SyncStatus = SyncStatus.PENDING
    external_sync_error: str | None = None

    renewal_reminders_sent: list[ReminderType] = field(default_factory=list)
    last_renewal_reminder: datetime | None = None
    renewal_due_date: datetime | None = None
    auto_suspend_enabled: bool = True
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    grace_period_end: datetime | None = None
    suspension_reason: str | None = None
    suspended_at: datetime | None = None
    reactivated_at: datetime | None = None
    renewal_history: list[RenewalHistoryEntry] = field(default_factory=list)

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @property
    def sync_envelope(self) -> SyncEnvelope:
        return SyncEnvelope(
            external_appid=self.external_appid,
            external_email=self.external_email,
            external_countid=self.external_countid,
            external_status=self.external_status,
            last_external_sync=self.last_external_sync,
            external_sync_status=self.external_sync_status,
            external_sync_error=self.external_sync_error,
        )

    @property
    def is_suspended(self) -> bool:
        return self.suspended_at is not None

    def touch(self, now: datetime | None = None) -> None:
        self.updated_at = now or utcnow()

    # sync envelope -------------------------------------------------------

    def mark_synced(self, now: datetime) -> None:
        self.external_sync_status = SyncStatus.SYNCED
        self.last_external_sync = now
        self.external_sync_error = None

    def mark_sync_failed(self, error: str, now: datetime) -> None:
        self.external_sync_status = SyncStatus.FAILED
        self.external_sync_error = error
        self.touch(now)

    # lifecycle -----------------------------------------------------------

    def set_expiration(self, expires_at: datetime | None) -> None:
        """Set the expiry and re-derive the fields that hang off it."""

        self.expires_at = ensure_aware(expires_at)
        self.recompute_derived_dates()

    def recompute_derived_dates(self) -> None:
        if self.expires_at is None:
            self.grace_period_end = None
            self.renewal_due_date = None
            return
        self.grace_period_end = self.expires_at + timedelta(days=self.grace_period_days)
        self.renewal_due_date = self.expires_at - RENEWAL_DUE_LEAD

    def record_history(
        self,
        action: str,
        at: datetime,
        details: Mapping[str, object] | None = None,
    ) -> None:
        entry = RenewalHistoryEntry(action=action, timestamp=at, details=dict(details or {}))
        self.renewal_history = [*self.renewal_history, entry]

    def has_reminder(self, reminder: ReminderType) -> bool:
        return reminder in self.renewal_reminders_sent

    def record_reminder(self, reminder: ReminderType, at: datetime) -> bool:
        """Add ``reminder`` to the sent set. Returns False if it was already there."""

        if self.has_reminder(reminder):
            return False
        self.renewal_reminders_sent = [*self.renewal_reminders_sent, reminder]
        self.last_renewal_reminder = at
        self.record_history(
            f"{HistoryAction.REMINDER_SENT}_{reminder}",
            at,
            {"expires_at": self.expires_at.isoformat() if self.expires_at else None},
        )
        self.touch(at)
        return True

    def suspend(self, reason: str, at: datetime) -> None:
        self.status = LicenseStatus.EXPIRED
        self.suspension_reason = reason
        self.suspended_at = at
        self.record_history(
            HistoryAction.AUTO_SUSPENDED,
            at,
            {
                "reason": reason,
                "grace_period_end": (
                    self.grace_period_end.isoformat() if self.grace_period_end else None
                ),
            },
        )
        self.touch(at)

    def extend(
        self,
        new_expires_at: datetime,
        at: datetime,
        *,
        actor: str | None = None,
        reason: str | None = None,
        action: str = HistoryAction.EXPIRATION_EXTENDED,
    ) -> None:
        previous = self.expires_at
        self.set_expiration(new_expires_at)
        self.record_history(
            action,
            at,
            {
                "previous_expires_at": previous.isoformat() if previous else None,
                "new_expires_at": self.expires_at.isoformat() if self.expires_at else None,
                "actor": actor,
                "reason": reason,
            },
        )
        self.touch(at)

    def reactivate(self, at: datetime, *, actor: str | None = None, reason: str | None = None) -> None:
        previous_status = self.status
        self.status = LicenseStatus.ACTIVE
        self.suspension_reason = None
        self.suspended_at = None
        self.reactivated_at = at
        self.record_history(
            HistoryAction.LICENSE_REACTIVATED,
            at,
            {"previous_status": str(previous_status), "actor": actor, "reason": reason},
        )
        self.touch(at)

    def clear_reminders(self) -> None:
        self.renewal_reminders_sent = []
        self.last_renewal_reminder = None

    def ensure_cancel_date(self) -> DataIntegrityAnomaly | None:
        """Backfill a missing cancel date on a cancelled license."""

        if self.status != LicenseStatus.CANCEL or self.cancel_date is not None:
            return None
        self.cancel_date = self.updated_at
        return DataIntegrityAnomaly(
            license_id=self.id,
            field="cancel_date",
            detail=f"cancelled license had no cancel date; set to {self.updated_at.isoformat()}",
        )
