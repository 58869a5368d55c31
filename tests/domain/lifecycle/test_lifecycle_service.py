from __future__ import annotations

import uuid
from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from licsync.domain.errors import LicenseNotFound
from licsync.domain.lifecycle import LifecycleService
from licsync.domain.lifecycle.service import SUSPENSION_REASON
from licsync.domain.model import HistoryAction, LicenseStatus, LicenseTerm, ReminderType
from tests.helpers.licenses import FrozenClock, RecordingNotifier, make_license

if TYPE_CHECKING:
    from collections.abc import Callable

    from licsync.adapters.sqlalchemy import SqlAlchemyLicenseUnitOfWork
    from licsync.domain.model import License

    UnitOfWorkFactory = Callable[[], SqlAlchemyLicenseUnitOfWork]


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def service(
    unit_of_work_factory: UnitOfWorkFactory,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> LifecycleService:
    return LifecycleService(
        unit_of_work_factory=unit_of_work_factory,
        notifier=notifier,
        clock=clock,
    )


def _seed(unit_of_work_factory: UnitOfWorkFactory, *licenses: License) -> None:
    with unit_of_work_factory() as uow:
        for license in licenses:
            uow.repositories.licenses.add(license)
        uow.commit()


def _reload(unit_of_work_factory: UnitOfWorkFactory, license: License) -> License:
    with unit_of_work_factory() as uow:
        stored = uow.repositories.licenses.get(license.id)
    assert stored is not None
    return stored


def test_reminders_are_sent_once_per_window(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> None:
    now = clock.now
    due_30 = make_license(key="LIC-A", expires_at=now + timedelta(days=20))
    due_7 = make_license(
        key="LIC-B",
        expires_at=now + timedelta(days=5),
        renewal_reminders_sent=[ReminderType.DAYS_30],
    )
    already_sent = make_license(
        key="LIC-C",
        expires_at=now + timedelta(days=20),
        renewal_reminders_sent=[ReminderType.DAYS_30],
    )
    too_far = make_license(key="LIC-D", expires_at=now + timedelta(days=40))
    cancelled = make_license(
        key="LIC-E",
        expires_at=now + timedelta(days=5),
        status=LicenseStatus.CANCEL,
        cancel_date=now,
    )
    _seed(unit_of_work_factory, due_30, due_7, already_sent, too_far, cancelled)

    report = service.process_renewal_reminders()

    assert report.sent[ReminderType.DAYS_30] == [due_30.id]
    assert report.sent[ReminderType.DAYS_7] == [due_7.id]
    assert report.total_sent == 2
    assert sorted(notifier.reminders) == [
        ("LIC-A", ReminderType.DAYS_30),
        ("LIC-B", ReminderType.DAYS_7),
    ]
    stored = _reload(unit_of_work_factory, due_30)
    assert stored.renewal_reminders_sent == [ReminderType.DAYS_30]
    assert stored.last_renewal_reminder == now
    assert stored.renewal_history[-1].action == "reminder_sent_30days"

    assert service.process_renewal_reminders().total_sent == 0


class _InterruptingNotifier(RecordingNotifier):
    def renewal_reminder(self, license: License, reminder: ReminderType) -> None:
        if license.key == "LIC-3":
            raise KeyboardInterrupt
        super().renewal_reminder(license, reminder)


def test_reminders_of_finished_chunks_survive_an_interruption(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    licenses = [
        make_license(key=f"LIC-{n}", expires_at=clock.now + timedelta(days=10 + n))
        for n in range(1, 5)
    ]
    _seed(unit_of_work_factory, *licenses)
    service = LifecycleService(
        unit_of_work_factory=unit_of_work_factory,
        notifier=_InterruptingNotifier(),
        clock=clock,
        write_batch_size=2,
    )

    with pytest.raises(KeyboardInterrupt):
        service.process_renewal_reminders()

    recorded = [
        _reload(unit_of_work_factory, license).renewal_reminders_sent for license in licenses
    ]
    assert recorded == [[ReminderType.DAYS_30], [ReminderType.DAYS_30], [], []]


def test_failed_reminder_stays_unsent_and_is_retried(
    unit_of_work_factory: UnitOfWorkFactory,
    notifier: RecordingNotifier,
    service: LifecycleService,
    clock: FrozenClock,
) -> None:
    license = make_license(key="LIC-A", expires_at=clock.now + timedelta(days=20))
    _seed(unit_of_work_factory, license)
    notifier.fail_for_keys = ("LIC-A",)

    report = service.process_renewal_reminders()

    assert report.total_sent == 0
    assert [error.identifier for error in report.errors] == ["LIC-A"]
    assert _reload(unit_of_work_factory, license).renewal_reminders_sent == []

    notifier.fail_for_keys = ()
    assert service.process_renewal_reminders().sent[ReminderType.DAYS_30] == [license.id]


def test_suspension_after_grace_period(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> None:
    now = clock.now
    overdue = make_license(key="LIC-A", expires_at=now - timedelta(days=45))
    in_grace = make_license(key="LIC-B", expires_at=now - timedelta(days=10))
    opted_out = make_license(
        key="LIC-C",
        expires_at=now - timedelta(days=90),
        auto_suspend_enabled=False,
    )
    _seed(unit_of_work_factory, overdue, in_grace, opted_out)

    report = service.process_suspensions()

    assert report.suspended == [overdue.id]
    assert notifier.suspended == [("LIC-A", SUSPENSION_REASON)]
    stored = _reload(unit_of_work_factory, overdue)
    assert stored.status is LicenseStatus.EXPIRED
    assert stored.suspended_at == now
    assert stored.suspension_reason == SUSPENSION_REASON
    assert stored.renewal_history[-1].action == HistoryAction.AUTO_SUSPENDED
    assert _reload(unit_of_work_factory, in_grace).status is LicenseStatus.ACTIVE

    assert service.process_suspensions().suspended == []


def test_grace_period_backfill(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    clock: FrozenClock,
) -> None:
    expires_at = clock.now + timedelta(days=60)
    license = make_license(expires_at=expires_at, grace_period_days=14)
    _seed(unit_of_work_factory, license, make_license(key="LIC-NOEXP"))

    assert service.update_grace_periods() == 1

    stored = _reload(unit_of_work_factory, license)
    assert stored.grace_period_end == expires_at + timedelta(days=14)
    assert stored.renewal_due_date == expires_at - timedelta(days=30)
    assert service.update_grace_periods() == 0


def test_cancel_dates_are_repaired(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    clock: FrozenClock,
) -> None:
    updated_at = clock.now - timedelta(days=2)
    license = make_license(status=LicenseStatus.CANCEL, updated_at=updated_at)
    _seed(unit_of_work_factory, license)

    anomalies = service.repair_cancel_dates()

    assert [(anomaly.license_id, anomaly.field) for anomaly in anomalies] == [
        (license.id, "cancel_date")
    ]
    assert _reload(unit_of_work_factory, license).cancel_date == updated_at
    assert service.repair_cancel_dates() == []


def test_attention_report(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    clock: FrozenClock,
) -> None:
    now = clock.now
    _seed(
        unit_of_work_factory,
        make_license(key="LIC-SOON", expires_at=now + timedelta(days=10)),
        make_license(key="LIC-LATER", expires_at=now + timedelta(days=45)),
        make_license(key="LIC-OVERDUE", expires_at=now - timedelta(days=45)),
        make_license(key="LIC-GRACE", expires_at=now - timedelta(days=5)),
    )

    report = service.licenses_requiring_attention()

    assert [license.key for license in report.expiring_soon] == ["LIC-SOON"]
    assert [license.key for license in report.suspension_eligible] == ["LIC-OVERDUE"]
    assert report.total == 2
    assert len(service.licenses_requiring_attention(threshold_days=60).expiring_soon) == 2


def test_extend_expiration_records_history(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> None:
    license = make_license(key="LIC-A", expires_at=clock.now + timedelta(days=3))
    _seed(unit_of_work_factory, license)
    new_expiry = clock.now + timedelta(days=90)

    service.extend_expiration(license.id, new_expiry, actor="admin", reason="goodwill")

    stored = _reload(unit_of_work_factory, license)
    assert stored.expires_at == new_expiry
    assert stored.grace_period_end == new_expiry + timedelta(days=30)
    [entry] = stored.renewal_history
    assert entry.action == HistoryAction.EXPIRATION_EXTENDED
    assert entry.details["actor"] == "admin"
    assert entry.details["reason"] == "goodwill"
    assert notifier.extended == ["LIC-A"]


def test_renewing_an_expired_license_clears_reminders(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    clock: FrozenClock,
) -> None:
    previous = clock.now - timedelta(days=5)
    license = make_license(
        expires_at=previous,
        term=LicenseTerm.MONTHLY,
        renewal_reminders_sent=[ReminderType.DAYS_30, ReminderType.DAYS_7],
        last_renewal_reminder=previous - timedelta(days=6),
    )
    _seed(unit_of_work_factory, license)

    service.renew(license.id, actor="billing")

    stored = _reload(unit_of_work_factory, license)
    assert stored.expires_at == previous + timedelta(days=30)
    assert stored.renewal_reminders_sent == []
    assert stored.last_renewal_reminder is None
    assert [entry.action for entry in stored.renewal_history] == [
        HistoryAction.EXPIRATION_EXTENDED,
        HistoryAction.LICENSE_RENEWED,
    ]
    assert stored.renewal_history[-1].details["term"] == "monthly"


def test_renewing_an_active_license_keeps_reminders(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    clock: FrozenClock,
) -> None:
    previous = clock.now + timedelta(days=10)
    license = make_license(
        expires_at=previous,
        term=LicenseTerm.YEARLY,
        renewal_reminders_sent=[ReminderType.DAYS_30],
    )
    _seed(unit_of_work_factory, license)

    service.renew(license.id)

    stored = _reload(unit_of_work_factory, license)
    assert stored.expires_at == previous + timedelta(days=365)
    assert stored.renewal_reminders_sent == [ReminderType.DAYS_30]


def test_renew_to_explicit_date(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    clock: FrozenClock,
) -> None:
    license = make_license(expires_at=clock.now)
    _seed(unit_of_work_factory, license)
    target = clock.now + timedelta(days=7)

    assert service.renew(license.id, target).expires_at == target


def test_reactivate_suspended_license(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    notifier: RecordingNotifier,
    clock: FrozenClock,
) -> None:
    license = make_license(key="LIC-A", expires_at=clock.now - timedelta(days=60))
    license.suspend(SUSPENSION_REASON, clock.now - timedelta(days=1))
    _seed(unit_of_work_factory, license)

    service.reactivate(license.id, actor="support")

    stored = _reload(unit_of_work_factory, license)
    assert stored.status is LicenseStatus.ACTIVE
    assert stored.suspended_at is None
    assert stored.suspension_reason is None
    assert stored.reactivated_at == clock.now
    assert stored.renewal_history[-1].details["previous_status"] == "expired"
    assert notifier.reactivated == ["LIC-A"]


@pytest.mark.parametrize(
    "operation",
    [
        lambda service, license_id, now: service.extend_expiration(license_id, now),
        lambda service, license_id, now: service.renew(license_id),
        lambda service, license_id, now: service.reactivate(license_id),
    ],
    ids=["extend", "renew", "reactivate"],
)
def test_unknown_license_raises(
    service: LifecycleService,
    clock: FrozenClock,
    operation: Callable[[LifecycleService, uuid.UUID, object], object],
) -> None:
    missing = uuid.uuid4()

    with pytest.raises(LicenseNotFound) as excinfo:
        operation(service, missing, clock.now)

    assert excinfo.value.license_id == missing


def test_run_executes_every_step(
    unit_of_work_factory: UnitOfWorkFactory,
    service: LifecycleService,
    clock: FrozenClock,
) -> None:
    now = clock.now
    _seed(
        unit_of_work_factory,
        make_license(key="LIC-REMIND", expires_at=now + timedelta(days=20)),
        make_license(key="LIC-SUSPEND", expires_at=now - timedelta(days=45)),
        make_license(key="LIC-CANCEL", status=LicenseStatus.CANCEL),
    )

    summary = service.run()

    assert summary.grace_periods_updated == 2
    assert [anomaly.field for anomaly in summary.anomalies] == ["cancel_date"]
    assert summary.reminders.total_sent == 1
    assert len(summary.suspensions.suspended) == 1
