"""Reconcile a snapshot of external records into the internal license store.

Each chunk of ``write_batch_size`` records runs in its own unit of work and is
committed on its own. Inside a chunk every record is processed in a savepoint,
so a failing record rolls back only its own writes and the rest of the chunk
still commits.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING

from licsync.domain.clock import utcnow
from licsync.domain.errors import ItemError, LicenseKeyCollision, LicenseNotFound
from licsync.domain.model import DEFAULT_GRACE_PERIOD_DAYS, MatchAxis, generate_license_key

from .matcher import default_strategies, match_external
from .merge import apply_external_changes, external_changes, new_license_from_external

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence
    from datetime import datetime
    from uuid import UUID

    from licsync.domain.clock import Clock
    from licsync.domain.errors import DataIntegrityAnomaly
    from licsync.domain.model import ExternalLicense, License
    from licsync.domain.ports import LicenseRepository, LicenseUnitOfWork

    from .matcher import MatchStrategy

log = getLogger(__name__)

DEFAULT_WRITE_BATCH_SIZE = 50
KEY_ATTEMPTS = 3


class ReconcileOutcome(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"


@dataclass(slots=True)
class ReconciliationSummary:
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    dry_run: bool = False
    errors: list[ItemError] = field(default_factory=list)
    anomalies: list[DataIntegrityAnomaly] = field(default_factory=list)
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def succeeded(self) -> int:
        return self.created + self.updated + self.unchanged

    @property
    def duration_seconds(self) -> float | None:
        if self.started_at is None or self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    def count(self, outcome: ReconcileOutcome) -> None:
        if outcome is ReconcileOutcome.CREATED:
            self.created += 1
        elif outcome is ReconcileOutcome.UPDATED:
            self.updated += 1
        else:
            self.unchanged += 1

    def fail(self, index: int, identifier: str | None, message: str) -> None:
        self.failed += 1
        self.errors.append(ItemError(index=index, identifier=identifier, message=message))


@dataclass(slots=True)
class _ItemOutcome:
    index: int
    identifier: str
    outcome: ReconcileOutcome
    anomaly: DataIntegrityAnomaly | None = None


@dataclass(slots=True)
class ReconciliationEngine:
    """Match, merge and persist external records chunk by chunk."""

    unit_of_work_factory: Callable[[], LicenseUnitOfWork]
    clock: Clock = utcnow
    write_batch_size: int = DEFAULT_WRITE_BATCH_SIZE
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS
    key_generator: Callable[[ExternalLicense], str] = generate_license_key
    strategies: Callable[[LicenseRepository], Sequence[MatchStrategy]] = default_strategies

    def reconcile(
        self,
        records: Sequence[ExternalLicense],
        *,
        dry_run: bool = False,
    ) -> ReconciliationSummary:
        summary = ReconciliationSummary(total=len(records), dry_run=dry_run, started_at=self.clock())
        batch_size = max(1, self.write_batch_size)
        log.info(
            "Reconciling %d external records (batch size %d%s)",
            len(records),
            batch_size,
            ", dry run" if dry_run else "",
        )

        would_create: dict[tuple[MatchAxis, object], License] = {}
        for start in range(0, len(records), batch_size):
            chunk = records[start : start + batch_size]
            if dry_run:
                self._preview_chunk(chunk, start, summary, would_create)
            else:
                self._reconcile_chunk(chunk, start, summary)

        summary.finished_at = self.clock()
        log.info(
            "Reconciliation finished: %d created, %d updated, %d unchanged, %d failed",
            summary.created,
            summary.updated,
            summary.unchanged,
            summary.failed,
        )
        return summary

    def _reconcile_chunk(
        self,
        chunk: Sequence[ExternalLicense],
        start: int,
        summary: ReconciliationSummary,
    ) -> None:
        outcomes: list[_ItemOutcome] = []
        failures: list[ItemError] = []
        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.licenses
            strategies = self.strategies(repository)
            for offset, external in enumerate(chunk):
                index = start + offset
                identifier = external.display_identifier
                try:
                    with uow.savepoint():
                        outcome, anomaly = self._reconcile_one(external, repository, strategies)
                except Exception as exc:  # noqa: BLE001 - recorded per item, the batch continues
                    log.warning("Failed to reconcile record %d (%s): %s", index, identifier, exc)
                    failures.append(ItemError(index=index, identifier=identifier, message=str(exc)))
                    continue
                outcomes.append(_ItemOutcome(index, identifier, outcome, anomaly))

            try:
                uow.commit()
            except Exception as exc:
                log.exception("Commit failed for records %d-%d", start, start + len(chunk) - 1)
                uow.rollback()
                for item in outcomes:
                    summary.fail(item.index, item.identifier, f"commit failed: {exc}")
                for error in failures:
                    summary.fail(error.index, error.identifier, error.message)
                return

        for item in outcomes:
            summary.count(item.outcome)
            if item.anomaly is not None:
                summary.anomalies.append(item.anomaly)
        for error in failures:
            summary.fail(error.index, error.identifier, error.message)

    def _reconcile_one(
        self,
        external: ExternalLicense,
        repository: LicenseRepository,
        strategies: Sequence[MatchStrategy],
    ) -> tuple[ReconcileOutcome, DataIntegrityAnomaly | None]:
        now = self.clock()
        match = match_external(external, strategies)
        if match.license_id is None:
            license = new_license_from_external(
                external,
                key=self._unique_key(external, repository),
                now=now,
                grace_period_days=self.grace_period_days,
            )
            repository.add(license)
            log.debug("Created license %s for %s", license.key, external.display_identifier)
            return ReconcileOutcome.CREATED, self._check_integrity(license)

        license = repository.get(match.license_id)
        if license is None:
            raise LicenseNotFound(match.license_id)
        changed = apply_external_changes(license, external, now)
        anomaly = self._check_integrity(license)
        if changed:
            log.debug(
                "Updated license %s matched by %s: %s",
                license.key,
                match.matched_by,
                ", ".join(changed),
            )
            return ReconcileOutcome.UPDATED, anomaly
        return ReconcileOutcome.UNCHANGED, anomaly

    def _unique_key(self, external: ExternalLicense, repository: LicenseRepository) -> str:
        key = self.key_generator(external)
        for attempt in range(1, KEY_ATTEMPTS + 1):
            if not repository.key_exists(key):
                return key
            log.warning("License key %s already exists (attempt %d/%d)", key, attempt, KEY_ATTEMPTS)
            key = self.key_generator(external)
        raise LicenseKeyCollision(key)

    @staticmethod
    def _check_integrity(license: License) -> DataIntegrityAnomaly | None:
        anomaly = license.ensure_cancel_date()
        if anomaly is not None:
            log.warning("Data integrity anomaly on license %s: %s", license.id, anomaly.detail)
        return anomaly

    def _preview_chunk(
        self,
        chunk: Sequence[ExternalLicense],
        start: int,
        summary: ReconciliationSummary,
        would_create: dict[tuple[MatchAxis, object], License],
    ) -> None:
        now = self.clock()
        with self.unit_of_work_factory() as uow:
            repository = uow.repositories.licenses
            strategies = self.strategies(repository)
            for offset, external in enumerate(chunk):
                license_id, pending = _preview_match(external, strategies, would_create)
                if license_id is not None:
                    license = repository.get(license_id)
                elif pending is not None:
                    # not in the store yet; a real run merges into the license it creates
                    changed = apply_external_changes(pending, external, now)
                    _remember(pending, external, would_create)
                    summary.count(ReconcileOutcome.UPDATED if changed else ReconcileOutcome.UNCHANGED)
                    continue
                else:
                    license = new_license_from_external(
                        external,
                        key="dry-run",
                        now=now,
                        grace_period_days=self.grace_period_days,
                    )
                    _remember(license, external, would_create)
                    summary.count(ReconcileOutcome.CREATED)
                    continue
                if license is None:
                    summary.fail(start + offset, external.display_identifier, "matched license vanished")
                    continue
                if external_changes(license, external, now=now):
                    summary.count(ReconcileOutcome.UPDATED)
                else:
                    summary.count(ReconcileOutcome.UNCHANGED)
            uow.rollback()


def _identities(external: ExternalLicense) -> list[tuple[MatchAxis, object]]:
    identities: list[tuple[MatchAxis, object]] = []
    for axis in MatchAxis:
        value = external.identifier(axis)
        if value is None or value == "":
            continue
        if axis is MatchAxis.EMAIL:
            value = str(value).lower()
        identities.append((axis, value))
    return identities


def _preview_match(
    external: ExternalLicense,
    strategies: Sequence[MatchStrategy],
    would_create: dict[tuple[MatchAxis, object], License],
) -> tuple[UUID | None, License | None]:
    """Match against the store and against licenses a real run would have created."""

    identities = dict(_identities(external))
    for strategy in strategies:
        license_id = strategy.resolve(external)
        if license_id is not None:
            return license_id, None
        identity = (strategy.axis, identities.get(strategy.axis))
        if identity in would_create:
            return None, would_create[identity]
    return None, None


def _remember(
    license: License,
    external: ExternalLicense,
    would_create: dict[tuple[MatchAxis, object], License],
) -> None:
    for identity in _identities(external):
        would_create.setdefault(identity, license)


def reconcile_external_licenses(
    records: Sequence[ExternalLicense],
    *,
    unit_of_work_factory: Callable[[], LicenseUnitOfWork],
    clock: Clock = utcnow,
    write_batch_size: int = DEFAULT_WRITE_BATCH_SIZE,
    dry_run: bool = False,
) -> ReconciliationSummary:
    """Functional entry point around :class:`ReconciliationEngine`."""

    engine = ReconciliationEngine(
        unit_of_work_factory=unit_of_work_factory,
        clock=clock,
        write_batch_size=write_batch_size,
    )
    return engine.reconcile(records, dry_run=dry_run)


__all__ = [
    "DEFAULT_WRITE_BATCH_SIZE",
    "KEY_ATTEMPTS",
    "ReconcileOutcome",
    "ReconciliationEngine",
    "ReconciliationSummary",
    "reconcile_external_licenses",
]
