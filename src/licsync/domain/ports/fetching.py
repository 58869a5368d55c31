"""Ports for talking to the external license authority."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import datetime

    from licsync.domain.model import ExternalLicense, License


@dataclass(slots=True)
class ExternalFetchResult:
    """Validated snapshot of the external license set."""

    records: list[ExternalLicense]
    total: int
    valid: int
    invalid: int
    pages_fetched: int
    fetched_at: datetime
    failed_pages: list[int] = field(default_factory=list)
    validation_errors: list[str] = field(default_factory=list)
    truncated: bool = False


@dataclass(frozen=True, slots=True)
class HealthStatus:
    healthy: bool
    checked_at: datetime
    error: str | None = None


@runtime_checkable
class ExternalLicenseSource(Protocol):
    """What the engine needs from the external authority."""

    def fetch_all(
        self,
        *,
        max_licenses: int | None = None,
        validate: bool = True,
    ) -> ExternalFetchResult: ...

    def fetch_by_appid(self, appid: str) -> ExternalLicense | None: ...

    def push_by_appid(self, appid: str, license: License) -> None: ...

    def push_by_email(self, email: str, license: License) -> None: ...

    def health_check(self) -> HealthStatus: ...


__all__ = ["ExternalFetchResult", "ExternalLicenseSource", "HealthStatus"]
