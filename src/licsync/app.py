"""Application orchestration entry points."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING

from licsync.adapters.external_api import build_http_external_source
from licsync.adapters.notifications import LoggingLifecycleNotifier
from licsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyLicenseUnitOfWork,
    is_started,
    startup,
)
from licsync.config import get_lifecycle_config, get_sync_config
from licsync.domain.clock import utcnow
from licsync.domain.errors import LicenseSyncError
from licsync.domain.lifecycle import LifecycleService
from licsync.domain.model import SyncStatus
from licsync.domain.ports.unit_of_work import LicenseUnitOfWork
from licsync.domain.reconciliation import (
    ReconciliationEngine,
    ReconciliationSummary,
    push_internal_changes,
)
from licsync.domain.reconciliation import sync_pending_licenses as _sync_pending
from licsync.domain.reconciliation import sync_single_license as _sync_single

if TYPE_CHECKING:
    from datetime import datetime
    from uuid import UUID

    from licsync.config import LifecycleConfig, SyncConfig
    from licsync.domain.clock import Clock
    from licsync.domain.lifecycle import AttentionReport, LifecycleRunSummary
    from licsync.domain.model import License
    from licsync.domain.ports import (
        ExternalFetchResult,
        ExternalLicenseSource,
        HealthStatus,
        LifecycleNotifier,
    )
    from licsync.domain.reconciliation import PushSummary

UnitOfWorkFactory = Callable[[], LicenseUnitOfWork]


log = getLogger(__name__)


@dataclass(slots=True)
class SyncRunResult:
    reconciliation: ReconciliationSummary
    fetch: ExternalFetchResult | None = None
    push: PushSummary | None = None
    error: str | None = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass(slots=True)
class SyncStatusReport:
    counts: dict[SyncStatus, int] = field(default_factory=dict)
    total: int = 0
    last_sync: datetime | None = None
    health: HealthStatus | None = None


def _ensure_started() -> None:
    if not is_started():
        startup()


def _engine(
    unit_of_work_factory: UnitOfWorkFactory | None,
    sync_config: SyncConfig,
    lifecycle_config: LifecycleConfig,
    clock: Clock,
) -> ReconciliationEngine:
    return ReconciliationEngine(
        unit_of_work_factory=unit_of_work_factory or SqlAlchemyLicenseUnitOfWork,
        clock=clock,
        write_batch_size=sync_config.write_batch_size,
        grace_period_days=lifecycle_config.default_grace_period_days,
    )


def sync_external_licenses(
    *,
    source: ExternalLicenseSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    sync_config: SyncConfig | None = None,
    lifecycle_config: LifecycleConfig | None = None,
    max_licenses: int | None = None,
    validate: bool = True,
    dry_run: bool = False,
    clock: Clock = utcnow,
) -> SyncRunResult:
    """Pull the external license set and reconcile it into the store.

    Partial failures end up in the returned summaries. Only a failure to
    fetch anything at all is reported through ``SyncRunResult.error``.
    """

    _ensure_started()
    effective_sync = sync_config or get_sync_config()
    effective_source = source or build_http_external_source(sync=effective_sync)
    engine = _engine(
        unit_of_work_factory,
        effective_sync,
        lifecycle_config or get_lifecycle_config(),
        clock,
    )
    log.info(
        "Starting external license sync: max_licenses=%s, validate=%s, dry_run=%s",
        max_licenses,
        validate,
        dry_run,
    )

    try:
        fetched = effective_source.fetch_all(max_licenses=max_licenses, validate=validate)
    except LicenseSyncError as exc:
        log.error("External license fetch failed: %s", exc)
        return SyncRunResult(reconciliation=ReconciliationSummary(dry_run=dry_run), error=str(exc))

    summary = engine.reconcile(fetched.records, dry_run=dry_run)
    result = SyncRunResult(reconciliation=summary, fetch=fetched)

    if effective_sync.bidirectional and not dry_run:
        result.push = push_internal_changes(
            source=effective_source,
            unit_of_work_factory=engine.unit_of_work_factory,
            clock=clock,
            write_batch_size=effective_sync.write_batch_size,
        )

    log.info(
        "Finished external license sync: fetched=%s, created=%s, updated=%s, "
        "unchanged=%s, failed=%s, failed_pages=%s",
        len(fetched.records),
        summary.created,
        summary.updated,
        summary.unchanged,
        summary.failed,
        fetched.failed_pages,
    )
    return result


def push_internal_licenses(
    *,
    source: ExternalLicenseSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    limit: int | None = None,
    sync_config: SyncConfig | None = None,
    clock: Clock = utcnow,
) -> PushSummary:
    _ensure_started()
    effective_sync = sync_config or get_sync_config()
    return push_internal_changes(
        source=source or build_http_external_source(sync=effective_sync),
        unit_of_work_factory=unit_of_work_factory or SqlAlchemyLicenseUnitOfWork,
        clock=clock,
        limit=limit,
        write_batch_size=effective_sync.write_batch_size,
    )


def sync_single_license(
    appid: str,
    *,
    source: ExternalLicenseSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    clock: Clock = utcnow,
) -> ReconciliationSummary:
    _ensure_started()
    engine = _engine(unit_of_work_factory, get_sync_config(), get_lifecycle_config(), clock)
    return _sync_single(appid, source=source or build_http_external_source(), engine=engine)


def sync_pending_licenses(
    *,
    source: ExternalLicenseSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    limit: int | None = None,
    clock: Clock = utcnow,
) -> ReconciliationSummary:
    _ensure_started()
    engine = _engine(unit_of_work_factory, get_sync_config(), get_lifecycle_config(), clock)
    return _sync_pending(source=source or build_http_external_source(), engine=engine, limit=limit)


def check_external_health(*, source: ExternalLicenseSource | None = None) -> HealthStatus:
    status = (source or build_http_external_source()).health_check()
    if status.healthy:
        log.info("External license API is healthy")
    else:
        log.warning("External license API is unhealthy: %s", status.error)
    return status


def get_sync_status(
    *,
    source: ExternalLicenseSource | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    include_health: bool = True,
) -> SyncStatusReport:
    _ensure_started()
    report = SyncStatusReport()
    with (unit_of_work_factory or SqlAlchemyLicenseUnitOfWork)() as uow:
        repository = uow.repositories.licenses
        report.counts = repository.count_by_sync_status()
        report.total = repository.count()
        report.last_sync = repository.latest_external_sync()
    if include_health:
        report.health = check_external_health(source=source)
    return report


def _lifecycle_service(
    unit_of_work_factory: UnitOfWorkFactory | None,
    notifier: LifecycleNotifier | None,
    clock: Clock,
) -> LifecycleService:
    return LifecycleService(
        unit_of_work_factory=unit_of_work_factory or SqlAlchemyLicenseUnitOfWork,
        notifier=notifier or LoggingLifecycleNotifier(),
        expiring_threshold_days=get_lifecycle_config().expiring_threshold_days,
        write_batch_size=get_sync_config().write_batch_size,
        clock=clock,
    )


def run_lifecycle(
    *,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    notifier: LifecycleNotifier | None = None,
    now: datetime | None = None,
    clock: Clock = utcnow,
) -> LifecycleRunSummary:
    _ensure_started()
    summary = _lifecycle_service(unit_of_work_factory, notifier, clock).run(now)
    log.info(
        "Lifecycle run finished: grace_backfilled=%s, reminders=%s, suspended=%s, anomalies=%s",
        summary.grace_periods_updated,
        summary.reminders.total_sent,
        len(summary.suspensions.suspended),
        len(summary.anomalies),
    )
    return summary


def licenses_requiring_attention(
    *,
    threshold_days: int | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    clock: Clock = utcnow,
) -> AttentionReport:
    _ensure_started()
    service = _lifecycle_service(unit_of_work_factory, None, clock)
    return service.licenses_requiring_attention(threshold_days)


def extend_license(
    license_id: UUID,
    new_expires_at: datetime,
    *,
    actor: str | None = None,
    reason: str | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    notifier: LifecycleNotifier | None = None,
    clock: Clock = utcnow,
) -> License:
    _ensure_started()
    service = _lifecycle_service(unit_of_work_factory, notifier, clock)
    return service.extend_expiration(license_id, new_expires_at, actor=actor, reason=reason)


def renew_license(
    license_id: UUID,
    new_expires_at: datetime | None = None,
    *,
    actor: str | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    notifier: LifecycleNotifier | None = None,
    clock: Clock = utcnow,
) -> License:
    _ensure_started()
    service = _lifecycle_service(unit_of_work_factory, notifier, clock)
    return service.renew(license_id, new_expires_at, actor=actor)


def reactivate_license(
    license_id: UUID,
    *,
    actor: str | None = None,
    reason: str | None = None,
    unit_of_work_factory: UnitOfWorkFactory | None = None,
    notifier: LifecycleNotifier | None = None,
    clock: Clock = utcnow,
) -> License:
    _ensure_started()
    service = _lifecycle_service(unit_of_work_factory, notifier, clock)
    return service.reactivate(license_id, actor=actor, reason=reason)
