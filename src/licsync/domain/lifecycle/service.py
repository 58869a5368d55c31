"""Apply lifecycle rules to the license store.

Suspensions and grace backfill run in one unit of work each. Reminders are
sent outside any transaction and recorded in chunks of ``write_batch_size``,
one unit of work per chunk. Per-license notifier failures are recorded and do
not abort the batch. Administrative operations (extend, renew, reactivate)
load a single license by id and raise :class:`LicenseNotFound` when it does
not exist.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta
from logging import getLogger
from typing import TYPE_CHECKING

from licsync.domain.clock import ensure_aware, utcnow
from licsync.domain.errors import ItemError, LicenseNotFound
from licsync.domain.model import (
    TERMINAL_STATUSES,
    HistoryAction,
    LicenseStatus,
    LicenseTerm,
    ReminderType,
)

from .rules import (
    DEFAULT_EXPIRING_THRESHOLD_DAYS,
    REMINDER_WINDOWS,
    due_reminder,
    is_expired,
    is_expiring_soon,
    is_suspension_eligible,
)

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from uuid import UUID

    from licsync.domain.clock import Clock
    from licsync.domain.errors import DataIntegrityAnomaly
    from licsync.domain.model import License
    from licsync.domain.ports import LicenseUnitOfWork, LifecycleNotifier

log = getLogger(__name__)

SUSPENSION_REASON = "Auto-suspended due to expiration and grace period end"
RENEWAL_TERMS: dict[LicenseTerm, timedelta] = {
    LicenseTerm.MONTHLY: timedelta(days=30),
    LicenseTerm.YEARLY: timedelta(days=365),
}
DEFAULT_REMINDER_BATCH_SIZE = 50
_REMINDER_HORIZON = max(upper for _lower, upper in REMINDER_WINDOWS.values())


def _empty_reminder_buckets() -> dict[ReminderType, list[UUID]]:
    return {reminder: [] for reminder in ReminderType}


@dataclass(slots=True)
class ReminderReport:
    sent: dict[ReminderType, list[UUID]] = field(default_factory=_empty_reminder_buckets)
    errors: list[ItemError] = field(default_factory=list)

    @property
    def total_sent(self) -> int:
        return sum(len(ids) for ids in self.sent.values())


@dataclass(slots=True)
class SuspensionReport:
    suspended: list[UUID] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)


@dataclass(slots=True)
class AttentionReport:
    expiring_soon: list[License] = field(default_factory=list)
    suspension_eligible: list[License] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.expiring_soon) + len(self.suspension_eligible)


@dataclass(slots=True)
class LifecycleRunSummary:
    grace_periods_updated: int = 0
    anomalies: list[DataIntegrityAnomaly] = field(default_factory=list)
    reminders: ReminderReport = field(default_factory=ReminderReport)
    suspensions: SuspensionReport = field(default_factory=SuspensionReport)


@dataclass(slots=True)
class LifecycleService:
    unit_of_work_factory: Callable[[], LicenseUnitOfWork]
    notifier: LifecycleNotifier
    expiring_threshold_days: int = DEFAULT_EXPIRING_THRESHOLD_DAYS
    write_batch_size: int = DEFAULT_REMINDER_BATCH_SIZE
    clock: Clock = utcnow

    # batch operations -----------------------------------------------------

    def run(self, now: datetime | None = None) -> LifecycleRunSummary:
        """Run every scheduled lifecycle step once, in dependency order."""

        now = now or self.clock()
        summary = LifecycleRunSummary()
        summary.grace_periods_updated = self.update_grace_periods()
        summary.anomalies = self.repair_cancel_dates()
        summary.reminders = self.process_renewal_reminders(now)
        summary.suspensions = self.process_suspensions(now)
        return summary

    def process_renewal_reminders(self, now: datetime | None = None) -> ReminderReport:
        now = now or self.clock()
        report = ReminderReport()
        with self.unit_of_work_factory() as uow:
            candidates = uow.repositories.licenses.list_with_expiry(
                expires_after=now,
                expires_before=now + _REMINDER_HORIZON,
                exclude_statuses=TERMINAL_STATUSES,
            )
        due = [
            (index, license, reminder)
            for index, license in enumerate(candidates)
            if (reminder := due_reminder(license, now)) is not None
        ]

        batch_size = max(1, self.write_batch_size)
        for start in range(0, len(due), batch_size):
            sent: list[tuple[License, ReminderType]] = []
            for index, license, reminder in due[start : start + batch_size]:
                try:
                    self.notifier.renewal_reminder(license, reminder)
                except Exception as exc:  # noqa: BLE001 - reminder stays unsent and is retried next run
                    log.warning("Sending %s reminder for license %s failed: %s", reminder, license.key, exc)
                    report.errors.append(ItemError(index=index, identifier=license.key, message=str(exc)))
                    continue
                sent.append((license, reminder))
            if sent:
                self._record_reminders(sent, now, report)
        return report

    def _record_reminders(
        self,
        sent: list[tuple[License, ReminderType]],
        now: datetime,
        report: ReminderReport,
    ) -> None:
        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.licenses
            for notified, reminder in sent:
                license = repository.get(notified.id)
                if license is None:
                    log.warning("License %s disappeared before its reminder was recorded", notified.key)
                    continue
                license.record_reminder(reminder, now)
                report.sent[reminder].append(license.id)
                log.info("Sent %s renewal reminder for license %s", reminder, license.key)
            uow.commit()

    def process_suspensions(self, now: datetime | None = None) -> SuspensionReport:
        now = now or self.clock()
        report = SuspensionReport()
        suspended: list[License] = []
        with self.unit_of_work_factory() as uow:
            candidates = uow.repositories.licenses.list_with_expiry(
                expires_before=now,
                exclude_statuses=TERMINAL_STATUSES,
            )
            for license in candidates:
                if not is_suspension_eligible(license, now):
                    continue
                license.suspend(SUSPENSION_REASON, now)
                suspended.append(license)
                log.info("Suspended license %s (grace period ended)", license.key)
            uow.commit()

        for index, license in enumerate(suspended):
            report.suspended.append(license.id)
            try:
                self.notifier.license_suspended(license, SUSPENSION_REASON)
            except Exception as exc:  # noqa: BLE001 - the suspension itself is already committed
                log.warning("Suspension notice for license %s failed: %s", license.key, exc)
                report.errors.append(ItemError(index=index, identifier=license.key, message=str(exc)))
        return report

    def update_grace_periods(self) -> int:
        """Backfill derived dates on licenses that have an expiry but no grace end."""

        now = self.clock()
        with self.unit_of_work_factory() as uow:
            licenses = uow.repositories.licenses.list_missing_grace_period()
            for license in licenses:
                license.recompute_derived_dates()
                license.touch(now)
            uow.commit()
        if licenses:
            log.info("Backfilled grace periods on %d licenses", len(licenses))
        return len(licenses)

    def repair_cancel_dates(self) -> list[DataIntegrityAnomaly]:
        anomalies: list[DataIntegrityAnomaly] = []
        with self.unit_of_work_factory() as uow:
            for license in uow.repositories.licenses.list_cancelled_without_date():
                anomaly = license.ensure_cancel_date()
                if anomaly is not None:
                    log.warning("Data integrity anomaly on license %s: %s", license.id, anomaly.detail)
                    anomalies.append(anomaly)
            uow.commit()
        return anomalies

    def licenses_requiring_attention(
        self,
        threshold_days: int | None = None,
        now: datetime | None = None,
    ) -> AttentionReport:
        now = now or self.clock()
        threshold = threshold_days or self.expiring_threshold_days
        report = AttentionReport()
        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.licenses
            for license in repository.list_with_expiry(
                expires_after=now,
                expires_before=now + timedelta(days=threshold),
                exclude_statuses=TERMINAL_STATUSES,
            ):
                if is_expiring_soon(license, now, threshold):
                    report.expiring_soon.append(license)
            for license in repository.list_with_expiry(
                expires_before=now,
                exclude_statuses=TERMINAL_STATUSES,
            ):
                if is_suspension_eligible(license, now):
                    report.suspension_eligible.append(license)
        log.info(
            "%d licenses expiring within %d days, %d eligible for suspension",
            len(report.expiring_soon),
            threshold,
            len(report.suspension_eligible),
        )
        return report

    # administrative operations ---------------------------------------------

    def extend_expiration(
        self,
        license_id: UUID,
        new_expires_at: datetime,
        *,
        actor: str | None = None,
        reason: str | None = None,
    ) -> License:
        now = self.clock()
        with self.unit_of_work_factory() as uow:
            license = self._load(uow, license_id)
            previous = license.expires_at
            license.extend(new_expires_at, now, actor=actor, reason=reason or "Manual extension")
            uow.commit()
        log.info("Extended license %s from %s to %s", license.key, previous, license.expires_at)
        self._notify_extended(license)
        return license

    def renew(
        self,
        license_id: UUID,
        new_expires_at: datetime | None = None,
        *,
        actor: str | None = None,
    ) -> License:
        """Extend by one term from the current expiry, or to ``new_expires_at``."""

        now = self.clock()
        with self.unit_of_work_factory() as uow:
            license = self._load(uow, license_id)
            previous = license.expires_at
            was_expired = license.status is LicenseStatus.EXPIRED or is_expired(license, now)
            target = ensure_aware(new_expires_at) or (previous or now) + RENEWAL_TERMS[license.term]

            license.extend(target, now, actor=actor, reason="License renewed")
            if was_expired:
                license.clear_reminders()
            license.record_history(
                HistoryAction.LICENSE_RENEWED,
                now,
                {
                    "previous_expires_at": previous.isoformat() if previous else None,
                    "new_expires_at": target.isoformat(),
                    "term": str(license.term),
                    "actor": actor,
                },
            )
            uow.commit()
        log.info("Renewed license %s (%s) until %s", license.key, license.term, license.expires_at)
        self._notify_extended(license)
        return license

    def reactivate(
        self,
        license_id: UUID,
        *,
        actor: str | None = None,
        reason: str | None = None,
    ) -> License:
        now = self.clock()
        with self.unit_of_work_factory() as uow:
            license = self._load(uow, license_id)
            license.reactivate(now, actor=actor, reason=reason or "Manual reactivation")
            uow.commit()
        log.info("Reactivated license %s", license.key)
        try:
            self.notifier.license_reactivated(license)
        except Exception:
            log.exception("Reactivation notice for license %s failed", license.key)
        return license

    @staticmethod
    def _load(uow: LicenseUnitOfWork, license_id: UUID) -> License:
        license = uow.repositories.licenses.get(license_id)
        if license is None:
            raise LicenseNotFound(license_id)
        return license

    def _notify_extended(self, license: License) -> None:
        try:
            self.notifier.license_extended(license)
        except Exception:
            log.exception("Extension notice for license %s failed", license.key)


__all__ = [
    "RENEWAL_TERMS",
    "SUSPENSION_REASON",
    "AttentionReport",
    "LifecycleRunSummary",
    "LifecycleService",
    "ReminderReport",
    "SuspensionReport",
]
