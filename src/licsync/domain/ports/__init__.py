"""Domain port definitions for adapters."""

from __future__ import annotations

from .fetching import ExternalFetchResult, ExternalLicenseSource, HealthStatus
from .notifications import LifecycleNotifier
from .persistence import LicenseRepository
from .unit_of_work import LicenseRepositories, LicenseUnitOfWork

__all__ = [
    "ExternalFetchResult",
    "ExternalLicenseSource",
    "HealthStatus",
    "LicenseRepositories",
    "LicenseRepository",
    "LicenseUnitOfWork",
    "LifecycleNotifier",
]
