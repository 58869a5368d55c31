"""Targeted re-synchronisation of individual licenses."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

from licsync.domain.errors import LicenseSyncError
from licsync.domain.model import SyncStatus

from .engine import ReconciliationSummary

if TYPE_CHECKING:
    from licsync.domain.ports import ExternalLicenseSource

    from .engine import ReconciliationEngine

log = getLogger(__name__)

PENDING_STATUSES = (SyncStatus.PENDING, SyncStatus.FAILED)


def _record_fetch_failure(engine: ReconciliationEngine, appid: str, message: str) -> None:
    with engine.unit_of_work_factory() as uow:
        license = uow.repositories.licenses.find_by_external_appid(appid)
        if license is None:
            return
        license.mark_sync_failed(message, engine.clock())
        uow.commit()


def sync_single_license(
    appid: str,
    *,
    source: ExternalLicenseSource,
    engine: ReconciliationEngine,
) -> ReconciliationSummary:
    """Fetch one record by appid and reconcile it.

    A failed fetch marks the matching internal license as failed instead of
    raising, so the caller always gets a summary back.
    """

    try:
        external = source.fetch_by_appid(appid)
    except LicenseSyncError as exc:
        log.warning("Fetching external license %s failed: %s", appid, exc)
        _record_fetch_failure(engine, appid, str(exc))
        summary = ReconciliationSummary(total=1)
        summary.fail(0, f"appid={appid}", str(exc))
        return summary

    if external is None:
        message = f"External license {appid} not found"
        log.warning("External license %s not found", appid)
        _record_fetch_failure(engine, appid, message)
        summary = ReconciliationSummary(total=1)
        summary.fail(0, f"appid={appid}", message)
        return summary

    return engine.reconcile([external])


def sync_pending_licenses(
    *,
    source: ExternalLicenseSource,
    engine: ReconciliationEngine,
    limit: int | None = None,
) -> ReconciliationSummary:
    """Retry every license whose last sync is pending or failed."""

    with engine.unit_of_work_factory() as uow:
        candidates = uow.repositories.licenses.list_by_sync_status(PENDING_STATUSES, limit=limit)
        appids = [license.external_appid for license in candidates if license.external_appid]

    log.info("Re-syncing %d pending licenses", len(appids))
    combined = ReconciliationSummary(total=len(appids), started_at=engine.clock())
    for index, appid in enumerate(appids):
        result = sync_single_license(appid, source=source, engine=engine)
        combined.created += result.created
        combined.updated += result.updated
        combined.unchanged += result.unchanged
        combined.anomalies.extend(result.anomalies)
        for error in result.errors:
            combined.fail(index, error.identifier, error.message)
    combined.finished_at = engine.clock()
    return combined


__all__ = ["PENDING_STATUSES", "sync_pending_licenses", "sync_single_license"]
