"""Repository implementations backed by SQLAlchemy sessions."""

from __future__ import annotations

from typing import TYPE_CHECKING

from sqlalchemy import and_, func, or_, select

from licsync.adapters.sqlalchemy.mappings import license_table
from licsync.domain.model import License, LicenseStatus, SyncStatus

if TYPE_CHECKING:
    from collections.abc import Collection
    from datetime import datetime
    from uuid import UUID

    from sqlalchemy.orm import Session
    from sqlalchemy.sql import Select


class SqlAlchemyLicenseRepository:
    def __init__(self, session: Session) -> None:
        self.session = session

    def add(self, entity: License) -> None:
        self.session.add(entity)

    def get(self, license_id: UUID) -> License | None:
        return self.session.get(License, license_id)

    def find_by_external_appid(self, appid: str) -> License | None:
        return self._first(license_table.c.external_appid == appid)

    def find_by_external_email(self, email: str) -> License | None:
        return self._first(func.lower(license_table.c.external_email) == email.strip().lower())

    def find_by_external_countid(self, countid: int) -> License | None:
        return self._first(license_table.c.external_countid == countid)

    def key_exists(self, key: str) -> bool:
        stmt = select(license_table.c.id).where(license_table.c["key"] == key).limit(1)
        return self.session.execute(stmt).scalar_one_or_none() is not None

    def count(self) -> int:
        stmt = select(func.count()).select_from(license_table)
        return int(self.session.execute(stmt).scalar_one())

    def list_with_external_ids(self, *, limit: int | None = None) -> list[License]:
        stmt = self._licenses().where(
            or_(
                license_table.c.external_appid.is_not(None),
                license_table.c.external_email.is_not(None),
            )
        )
        return self._all(stmt, limit=limit)

    def list_by_sync_status(
        self,
        statuses: Collection[SyncStatus],
        *,
        limit: int | None = None,
    ) -> list[License]:
        stmt = self._licenses().where(license_table.c.external_sync_status.in_(list(statuses)))
        return self._all(stmt, limit=limit)

    def list_with_expiry(
        self,
        *,
        expires_after: datetime | None = None,
        expires_before: datetime | None = None,
        exclude_statuses: Collection[LicenseStatus] = (),
    ) -> list[License]:
        conditions = [license_table.c.expires_at.is_not(None)]
        if expires_after is not None:
            conditions.append(license_table.c.expires_at > expires_after)
        if expires_before is not None:
            conditions.append(license_table.c.expires_at <= expires_before)
        if exclude_statuses:
            conditions.append(license_table.c.status.not_in(list(exclude_statuses)))
        stmt = select(License).where(and_(*conditions)).order_by(license_table.c.expires_at)
        return list(self.session.execute(stmt).scalars())

    def list_missing_grace_period(self) -> list[License]:
        stmt = self._licenses().where(
            license_table.c.expires_at.is_not(None),
            license_table.c.grace_period_end.is_(None),
        )
        return list(self.session.execute(stmt).scalars())

    def list_cancelled_without_date(self) -> list[License]:
        stmt = self._licenses().where(
            license_table.c.status == LicenseStatus.CANCEL,
            license_table.c.cancel_date.is_(None),
        )
        return list(self.session.execute(stmt).scalars())

    def count_by_sync_status(self) -> dict[SyncStatus, int]:
        stmt = select(license_table.c.external_sync_status, func.count()).group_by(
            license_table.c.external_sync_status
        )
        counts = {status: 0 for status in SyncStatus}
        for status, total in self.session.execute(stmt):
            counts[SyncStatus(status)] = int(total)
        return counts

    def latest_external_sync(self) -> datetime | None:
        stmt = select(func.max(license_table.c.last_external_sync))
        return self.session.execute(stmt).scalar_one_or_none()

    def _licenses(self) -> Select[tuple[License]]:
        return select(License).order_by(license_table.c.created_at, license_table.c.id)

    def _first(self, condition: object) -> License | None:
        stmt = self._licenses().where(condition).limit(1)  # type: ignore[arg-type]
        return self.session.execute(stmt).scalars().first()

    def _all(self, stmt: Select[tuple[License]], *, limit: int | None) -> list[License]:
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self.session.execute(stmt).scalars())


if TYPE_CHECKING:
    from licsync.domain.ports.persistence import LicenseRepository

    def _repository_check(session: Session) -> LicenseRepository:
        return SqlAlchemyLicenseRepository(session)
