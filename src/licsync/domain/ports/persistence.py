"""Ports for persisting licenses."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from collections.abc import Collection
    from datetime import datetime
    from uuid import UUID

    from licsync.domain.model import License, LicenseStatus, SyncStatus


@runtime_checkable
class LicenseRepository(Protocol):
    """Narrow data-access contract for the internal license store."""

    def add(self, entity: License) -> None: ...

    def get(self, license_id: UUID) -> License | None: ...

    def find_by_external_appid(self, appid: str) -> License | None: ...

    def find_by_external_email(self, email: str) -> License | None: ...

    def find_by_external_countid(self, countid: int) -> License | None: ...

    def key_exists(self, key: str) -> bool: ...

    def count(self) -> int: ...

    def list_with_external_ids(self, *, limit: int | None = None) -> list[License]: ...

    def list_by_sync_status(
        self,
        statuses: Collection[SyncStatus],
        *,
        limit: int | None = None,
    ) -> list[License]: ...

    def list_with_expiry(
        self,
        *,
        expires_after: datetime | None = None,
        expires_before: datetime | None = None,
        exclude_statuses: Collection[LicenseStatus] = (),
    ) -> list[License]: ...

    def list_missing_grace_period(self) -> list[License]: ...

    def list_cancelled_without_date(self) -> list[License]: ...

    def count_by_sync_status(self) -> dict[SyncStatus, int]: ...

    def latest_external_sync(self) -> datetime | None: ...
