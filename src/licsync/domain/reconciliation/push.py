"""Push internal license changes back to the external authority."""

from __future__ import annotations

from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from licsync.domain.clock import utcnow
from licsync.domain.errors import ItemError, LicenseSyncError
from licsync.domain.model import MatchAxis

from .engine import DEFAULT_WRITE_BATCH_SIZE

if TYPE_CHECKING:
    from collections.abc import Callable

    from licsync.domain.clock import Clock
    from licsync.domain.model import License
    from licsync.domain.ports import ExternalLicenseSource, LicenseUnitOfWork

log = getLogger(__name__)


@dataclass(slots=True)
class PushSummary:
    processed: int = 0
    updated: int = 0
    failed: int = 0
    skipped: int = 0
    errors: list[ItemError] = field(default_factory=list)


def _push_targets(
    license: License,
    source: ExternalLicenseSource,
) -> list[tuple[MatchAxis, str, Callable[[str, License], None]]]:
    targets: list[tuple[MatchAxis, str, Callable[[str, License], None]]] = []
    if license.external_appid:
        targets.append((MatchAxis.APPID, license.external_appid, source.push_by_appid))
    if license.external_email:
        targets.append((MatchAxis.EMAIL, license.external_email, source.push_by_email))
    return targets


def _push_one(license: License, source: ExternalLicenseSource) -> Exception | None:
    last_error: Exception | None = None
    for axis, identifier, push in _push_targets(license, source):
        try:
            push(identifier, license)
        except (LicenseSyncError, ValueError) as exc:
            log.warning("Push of license %s by %s failed: %s", license.key, axis, exc)
            last_error = exc
            continue
        return None
    return last_error


def push_internal_changes(
    *,
    source: ExternalLicenseSource,
    unit_of_work_factory: Callable[[], LicenseUnitOfWork],
    clock: Clock = utcnow,
    limit: int | None = None,
    write_batch_size: int = DEFAULT_WRITE_BATCH_SIZE,
) -> PushSummary:
    """Send every license that has an external identity to the authority.

    The update is addressed by appid first and falls back to the email when
    the appid route fails. Licenses known only by countid are skipped because
    the authority has no update route for that axis.

    Pushes run outside any transaction. The resulting sync envelopes are
    written and committed once per chunk of ``write_batch_size`` licenses, so
    an interrupted push keeps the envelopes of every finished chunk.
    """

    with unit_of_work_factory() as uow:
        licenses = uow.repositories.licenses.list_with_external_ids(limit=limit)
    log.info("Pushing %d licenses to the external authority", len(licenses))

    summary = PushSummary()
    batch_size = max(1, write_batch_size)
    for start in range(0, len(licenses), batch_size):
        chunk = licenses[start : start + batch_size]
        outcomes: list[tuple[int, License, Exception | None]] = []
        for offset, license in enumerate(chunk):
            summary.processed += 1
            if not _push_targets(license, source):
                summary.skipped += 1
                continue
            outcomes.append((start + offset, license, _push_one(license, source)))
        if outcomes:
            _record_outcomes(outcomes, unit_of_work_factory, clock, summary)

    log.info(
        "Push finished: %d updated, %d failed, %d skipped",
        summary.updated,
        summary.failed,
        summary.skipped,
    )
    return summary


def _record_outcomes(
    outcomes: list[tuple[int, License, Exception | None]],
    unit_of_work_factory: Callable[[], LicenseUnitOfWork],
    clock: Clock,
    summary: PushSummary,
) -> None:
    with unit_of_work_factory() as uow:
        repository = uow.repositories.licenses
        for index, pushed, error in outcomes:
            license = repository.get(pushed.id)
            if license is None:
                log.warning("License %s disappeared during push", pushed.key)
                continue
            now = clock()
            if error is None:
                license.mark_synced(now)
                summary.updated += 1
            else:
                license.mark_sync_failed(str(error), now)
                summary.failed += 1
                summary.errors.append(
                    ItemError(index=index, identifier=license.key, message=str(error))
                )
        uow.commit()


__all__ = ["PushSummary", "push_internal_changes"]
