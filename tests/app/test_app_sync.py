from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from licsync import app
from licsync.config import LifecycleConfig, SyncConfig
from licsync.domain.errors import ExternalServiceUnavailable
from licsync.domain.model import LicenseStatus, SyncStatus
from tests.helpers.licenses import (
    FakeExternalSource,
    FrozenClock,
    RecordingNotifier,
    make_external,
    make_license,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    from licsync.adapters.sqlalchemy import SqlAlchemyLicenseUnitOfWork
    from licsync.domain.model import License

    UnitOfWorkFactory = Callable[[], SqlAlchemyLicenseUnitOfWork]


@pytest.fixture
def source() -> FakeExternalSource:
    return FakeExternalSource(
        records=[
            make_external(appid="APP1", countid=1, email="a@example.com"),
            make_external(appid="APP2", countid=2, email="b@example.com"),
        ]
    )


def _seed(unit_of_work_factory: UnitOfWorkFactory, *licenses: License) -> None:
    with unit_of_work_factory() as uow:
        for license in licenses:
            uow.repositories.licenses.add(license)
        uow.commit()


def test_sync_reconciles_the_fetched_snapshot(
    unit_of_work_factory: UnitOfWorkFactory,
    source: FakeExternalSource,
    clock: FrozenClock,
) -> None:
    result = app.sync_external_licenses(
        source=source,
        unit_of_work_factory=unit_of_work_factory,
        sync_config=SyncConfig(),
        lifecycle_config=LifecycleConfig(default_grace_period_days=10),
        max_licenses=500,
        validate=False,
        clock=clock,
    )

    assert result.success
    assert result.fetch is not None
    assert result.reconciliation.created == 2
    assert result.push is None
    assert source.fetch_calls == [{"max_licenses": 500, "validate": False}]
    with unit_of_work_factory() as uow:
        stored = uow.repositories.licenses.find_by_external_appid("APP1")
    assert stored is not None
    assert stored.grace_period_days == 10


def test_sync_reports_fetch_failure(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    source = FakeExternalSource(fetch_error=ExternalServiceUnavailable("upstream down"))

    result = app.sync_external_licenses(
        source=source,
        unit_of_work_factory=unit_of_work_factory,
        sync_config=SyncConfig(),
        lifecycle_config=LifecycleConfig(),
        clock=clock,
    )

    assert not result.success
    assert result.error == "upstream down"
    assert result.fetch is None
    assert result.reconciliation.total == 0


def test_bidirectional_sync_pushes_after_reconciling(
    unit_of_work_factory: UnitOfWorkFactory,
    source: FakeExternalSource,
    clock: FrozenClock,
) -> None:
    result = app.sync_external_licenses(
        source=source,
        unit_of_work_factory=unit_of_work_factory,
        sync_config=SyncConfig(bidirectional=True),
        lifecycle_config=LifecycleConfig(),
        clock=clock,
    )

    assert result.push is not None
    assert result.push.updated == 2
    assert sorted(identifier for _axis, identifier, _key in source.pushes) == ["APP1", "APP2"]


def test_dry_run_never_pushes(
    unit_of_work_factory: UnitOfWorkFactory,
    source: FakeExternalSource,
    clock: FrozenClock,
) -> None:
    result = app.sync_external_licenses(
        source=source,
        unit_of_work_factory=unit_of_work_factory,
        sync_config=SyncConfig(bidirectional=True),
        lifecycle_config=LifecycleConfig(),
        dry_run=True,
        clock=clock,
    )

    assert result.reconciliation.dry_run
    assert result.reconciliation.created == 2
    assert result.push is None
    assert source.pushes == []
    with unit_of_work_factory() as uow:
        assert uow.repositories.licenses.count() == 0


def test_sync_status_counts_and_health(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    _seed(
        unit_of_work_factory,
        make_license(
            key="LIC-1",
            external_sync_status=SyncStatus.SYNCED,
            last_external_sync=clock.now,
        ),
        make_license(key="LIC-2", external_sync_status=SyncStatus.FAILED),
        make_license(key="LIC-3"),
    )

    report = app.get_sync_status(
        source=FakeExternalSource(healthy=False),
        unit_of_work_factory=unit_of_work_factory,
    )

    assert report.total == 3
    assert report.counts == {SyncStatus.PENDING: 1, SyncStatus.SYNCED: 1, SyncStatus.FAILED: 1}
    assert report.last_sync == clock.now
    assert report.health is not None
    assert not report.health.healthy


def test_sync_status_without_health(unit_of_work_factory: UnitOfWorkFactory) -> None:
    report = app.get_sync_status(unit_of_work_factory=unit_of_work_factory, include_health=False)

    assert report.total == 0
    assert report.last_sync is None
    assert report.health is None


def test_health_check_passes_through() -> None:
    assert app.check_external_health(source=FakeExternalSource()).healthy
    assert app.check_external_health(source=FakeExternalSource(healthy=False)).error == "down"


def test_single_and_pending_sync_entry_points(
    unit_of_work_factory: UnitOfWorkFactory,
    source: FakeExternalSource,
    clock: FrozenClock,
) -> None:
    _seed(unit_of_work_factory, make_license(key="LIC-1", external_appid="APP1"))

    single = app.sync_single_license(
        "APP1", source=source, unit_of_work_factory=unit_of_work_factory, clock=clock
    )
    pending = app.sync_pending_licenses(
        source=source, unit_of_work_factory=unit_of_work_factory, clock=clock
    )

    assert single.updated == 1
    assert pending.total == 0


def test_lifecycle_entry_points(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    now = clock.now
    overdue = make_license(key="LIC-OVERDUE", expires_at=now - timedelta(days=45))
    soon = make_license(key="LIC-SOON", expires_at=now + timedelta(days=10))
    _seed(unit_of_work_factory, overdue, soon)
    notifier = RecordingNotifier()

    attention = app.licenses_requiring_attention(
        unit_of_work_factory=unit_of_work_factory, clock=clock
    )
    assert [license.key for license in attention.expiring_soon] == ["LIC-SOON"]

    summary = app.run_lifecycle(
        unit_of_work_factory=unit_of_work_factory, notifier=notifier, clock=clock
    )
    assert summary.suspensions.suspended == [overdue.id]
    assert notifier.reminders == [("LIC-SOON", "30days")]

    reactivated = app.reactivate_license(
        overdue.id, unit_of_work_factory=unit_of_work_factory, notifier=notifier, clock=clock
    )
    assert reactivated.status is LicenseStatus.ACTIVE

    extended = app.extend_license(
        overdue.id,
        now + timedelta(days=30),
        unit_of_work_factory=unit_of_work_factory,
        notifier=notifier,
        clock=clock,
    )
    assert extended.expires_at == now + timedelta(days=30)

    renewed = app.renew_license(
        overdue.id, unit_of_work_factory=unit_of_work_factory, notifier=notifier, clock=clock
    )
    assert renewed.expires_at == now + timedelta(days=60)
    assert notifier.extended == ["LIC-OVERDUE", "LIC-OVERDUE"]
