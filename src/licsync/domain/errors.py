"""Error taxonomy shared by the reconciliation and lifecycle engine."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from uuid import UUID


class LicenseSyncError(RuntimeError):
    """Base class for engine errors."""


class ValidationError(LicenseSyncError):
    """Raised locally when input is malformed. Never retried."""

    def __init__(self, message: str, *, errors: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.errors = errors


class ExternalServiceError(LicenseSyncError):
    """The remote authority answered with a non-success status."""

    retryable = False

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
    ) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class ExternalServiceUnavailable(ExternalServiceError):
    """Connection failure, DNS failure, 5xx, throttling or rejected credentials."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        body: str | None = None,
        retryable: bool = True,
        retry_after: float | None = None,
    ) -> None:
        super().__init__(message, status_code=status_code, body=body)
        self.retryable = retryable
        self.retry_after = retry_after


class ExternalNotFound(ExternalServiceError):
    """A single-record lookup on the remote authority found nothing."""


class NetworkTimeout(LicenseSyncError):
    """An outbound call exceeded its timeout budget."""

    retryable = True

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        super().__init__(f"{operation} timed out after {timeout_seconds:g}s")
        self.operation = operation
        self.timeout_seconds = timeout_seconds


class CircuitOpenError(ExternalServiceUnavailable):
    """Raised immediately, without a network attempt, while a circuit is open."""

    def __init__(self, name: str, *, retry_after: float) -> None:
        super().__init__(
            f"circuit breaker {name!r} is open; retry in {retry_after:.1f}s",
            retryable=False,
            retry_after=retry_after,
        )
        self.name = name


class LicenseNotFound(LicenseSyncError):
    def __init__(self, license_id: UUID) -> None:
        super().__init__(f"License {license_id} does not exist")
        self.license_id = license_id


class LicenseKeyCollision(LicenseSyncError):
    """A generated license key already exists in the store."""

    def __init__(self, key: str) -> None:
        super().__init__(f"License key {key} is already taken")
        self.key = key


@dataclass(frozen=True, slots=True)
class DataIntegrityAnomaly:
    """An inconsistency that was corrected in place instead of rejected."""

    license_id: UUID
    field: str
    detail: str


@dataclass(frozen=True, slots=True)
class ItemError:
    """A per-item failure recorded by a bulk operation."""

    index: int
    identifier: str | None
    message: str
