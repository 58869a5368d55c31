"""Public interface for the external license API adapter."""

from __future__ import annotations

from typing import TYPE_CHECKING

from licsync.config.external_api import get_external_api_config
from licsync.config.sync import get_sync_config

from .client import BulkResult, ExternalLicenseClient
from .fetcher import BulkLicenseFetcher
from .gateway import HttpExternalLicenseSource
from .schema import (
    ExternalLicensePayload,
    LicenseListResponse,
    ListMeta,
    MutationResponse,
    ValidatedExternalLicensePayload,
)
from .translator import to_external_license, to_external_update

if TYPE_CHECKING:
    from collections.abc import Callable

    from licsync.adapters.http_resilience import ResilientClient
    from licsync.config.external_api import ExternalApiConfig
    from licsync.config.http_resilience import ResilienceConfig
    from licsync.config.sync import SyncConfig


def build_http_external_source(
    *,
    config: ExternalApiConfig | None = None,
    sync: SyncConfig | None = None,
    client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None,
) -> HttpExternalLicenseSource:
    client = ExternalLicenseClient(
        config=config or get_external_api_config(),
        client_factory=client_factory,
    )
    fetcher = BulkLicenseFetcher(client=client, config=sync or get_sync_config())
    return HttpExternalLicenseSource(client=client, fetcher=fetcher)


__all__ = [
    "BulkLicenseFetcher",
    "BulkResult",
    "ExternalLicenseClient",
    "ExternalLicensePayload",
    "HttpExternalLicenseSource",
    "LicenseListResponse",
    "ListMeta",
    "MutationResponse",
    "ValidatedExternalLicensePayload",
    "build_http_external_source",
    "to_external_license",
    "to_external_update",
]
