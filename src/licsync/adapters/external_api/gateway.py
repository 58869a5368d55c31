"""External license source backed by the HTTP client."""

from __future__ import annotations

from dataclasses import dataclass
from logging import getLogger
from typing import TYPE_CHECKING

from licsync.domain.errors import ExternalNotFound

from .translator import to_external_license, to_external_update

if TYPE_CHECKING:
    from licsync.domain.model import ExternalLicense, License
    from licsync.domain.ports.fetching import ExternalFetchResult, HealthStatus

    from .client import ExternalLicenseClient
    from .fetcher import BulkLicenseFetcher

log = getLogger(__name__)


@dataclass(slots=True)
class HttpExternalLicenseSource:
    client: ExternalLicenseClient
    fetcher: BulkLicenseFetcher

    def fetch_all(
        self,
        *,
        max_licenses: int | None = None,
        validate: bool = True,
    ) -> ExternalFetchResult:
        return self.fetcher(max_licenses=max_licenses, validate=validate)

    def fetch_by_appid(self, appid: str) -> ExternalLicense | None:
        try:
            payload = self.client.get_license_by_appid(appid)
        except ExternalNotFound:
            log.info("External license %s not found", appid)
            return None
        return to_external_license(payload)

    def push_by_appid(self, appid: str, license: License) -> None:
        self.client.update_license_by_appid(appid, to_external_update(license))

    def push_by_email(self, email: str, license: License) -> None:
        self.client.update_license_by_email(email, to_external_update(license))

    def health_check(self) -> HealthStatus:
        return self.client.health_check()


if TYPE_CHECKING:
    from licsync.domain.ports.fetching import ExternalLicenseSource

    def _source_check(source: HttpExternalLicenseSource) -> ExternalLicenseSource:
        return source
