from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import pytest

from licsync.domain.model import SyncStatus
from licsync.domain.reconciliation import push_internal_changes
from tests.helpers.licenses import FakeExternalSource, FrozenClock, make_license

if TYPE_CHECKING:
    from collections.abc import Callable

    from licsync.adapters.sqlalchemy import SqlAlchemyLicenseUnitOfWork
    from licsync.domain.model import License

    UnitOfWorkFactory = Callable[[], SqlAlchemyLicenseUnitOfWork]


def _seed(unit_of_work_factory: UnitOfWorkFactory, *licenses: License) -> None:
    with unit_of_work_factory() as uow:
        for license in licenses:
            uow.repositories.licenses.add(license)
        uow.commit()


def _by_key(unit_of_work_factory: UnitOfWorkFactory) -> dict[str, License]:
    with unit_of_work_factory() as uow:
        licenses = uow.repositories.licenses.list_by_sync_status(list(SyncStatus))
    return {license.key: license for license in licenses}


def test_push_prefers_appid_and_marks_synced(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    _seed(
        unit_of_work_factory,
        make_license(key="LIC-A", external_appid="APP1", external_email="a@example.com"),
        make_license(key="LIC-B", external_email="b@example.com"),
    )
    source = FakeExternalSource()

    summary = push_internal_changes(
        source=source,
        unit_of_work_factory=unit_of_work_factory,
        clock=clock,
    )

    assert (summary.processed, summary.updated, summary.failed) == (2, 2, 0)
    assert sorted(source.pushes) == [
        ("appid", "APP1", "LIC-A"),
        ("email", "b@example.com", "LIC-B"),
    ]
    stored = _by_key(unit_of_work_factory)
    assert stored["LIC-A"].external_sync_status is SyncStatus.SYNCED
    assert stored["LIC-A"].last_external_sync == clock.now


def test_push_falls_back_to_email_when_appid_fails(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    _seed(
        unit_of_work_factory,
        make_license(key="LIC-A", external_appid="APP1", external_email="a@example.com"),
    )
    source = FakeExternalSource(failing_push_axes={"appid"})

    summary = push_internal_changes(
        source=source,
        unit_of_work_factory=unit_of_work_factory,
        clock=clock,
    )

    assert summary.updated == 1
    assert source.pushes == [("email", "a@example.com", "LIC-A")]


def test_push_failure_is_recorded_on_the_license(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    _seed(
        unit_of_work_factory,
        make_license(key="LIC-A", external_appid="APP1", external_email="a@example.com"),
        make_license(key="LIC-B", external_appid="APP2"),
    )
    source = FakeExternalSource(failing_push_axes={"appid", "email"})

    summary = push_internal_changes(
        source=source,
        unit_of_work_factory=unit_of_work_factory,
        clock=clock,
    )

    assert (summary.updated, summary.failed) == (0, 2)
    assert {error.identifier for error in summary.errors} == {"LIC-A", "LIC-B"}
    stored = _by_key(unit_of_work_factory)
    assert stored["LIC-A"].external_sync_status is SyncStatus.FAILED
    assert stored["LIC-A"].external_sync_error == "push by email failed"
    assert stored["LIC-B"].external_sync_error == "push by appid failed"


def test_push_respects_limit(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    _seed(
        unit_of_work_factory,
        *(make_license(key=f"LIC-{n}", external_appid=f"APP{n}") for n in range(3)),
    )

    summary = push_internal_changes(
        source=FakeExternalSource(),
        unit_of_work_factory=unit_of_work_factory,
        clock=clock,
        limit=2,
    )

    assert summary.processed == 2


class _InterruptingSource(FakeExternalSource):
    def push_by_appid(self, appid: str, license: License) -> None:
        if appid == "APP3":
            raise KeyboardInterrupt
        super().push_by_appid(appid, license)


def test_finished_chunks_stay_committed_when_push_is_interrupted(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    _seed(
        unit_of_work_factory,
        *(
            make_license(
                key=f"LIC-{n}",
                external_appid=f"APP{n}",
                created_at=clock.now - timedelta(days=10 - n),
            )
            for n in range(1, 5)
        ),
    )

    with pytest.raises(KeyboardInterrupt):
        push_internal_changes(
            source=_InterruptingSource(),
            unit_of_work_factory=unit_of_work_factory,
            clock=clock,
            write_batch_size=2,
        )

    stored = _by_key(unit_of_work_factory)
    assert stored["LIC-1"].external_sync_status is SyncStatus.SYNCED
    assert stored["LIC-2"].external_sync_status is SyncStatus.SYNCED
    assert stored["LIC-3"].last_external_sync is None
    assert stored["LIC-4"].last_external_sync is None


def test_push_commits_every_chunk(
    unit_of_work_factory: UnitOfWorkFactory,
    clock: FrozenClock,
) -> None:
    _seed(
        unit_of_work_factory,
        *(make_license(key=f"LIC-{n}", external_appid=f"APP{n}") for n in range(5)),
    )

    summary = push_internal_changes(
        source=FakeExternalSource(),
        unit_of_work_factory=unit_of_work_factory,
        clock=clock,
        write_batch_size=2,
    )

    assert (summary.processed, summary.updated) == (5, 5)
    stored = _by_key(unit_of_work_factory)
    assert {license.external_sync_status for license in stored.values()} == {SyncStatus.SYNCED}
