"""Reconciliation run configuration."""

from __future__ import annotations

from dataclasses import dataclass, field

from .env import env_bool, env_csv, env_int
from .errors import ConfigurationError

DEFAULT_ALLOWED_LICENSE_TYPES = ("demo", "product")


@dataclass(frozen=True, slots=True)
class SyncConfig:
    batch_size: int = 50
    concurrency_limit: int = 5
    max_concurrent_batches: int = 5
    max_licenses_for_comprehensive: int = 10_000
    strict_validation: bool = False
    max_field_length: int = 1000
    allowed_license_types: tuple[str, ...] = field(
        default_factory=lambda: DEFAULT_ALLOWED_LICENSE_TYPES
    )
    write_batch_size: int = 50
    bidirectional: bool = False

    @property
    def effective_concurrency(self) -> int:
        return max(1, min(self.concurrency_limit, self.max_concurrent_batches))

    def problems(self) -> list[str]:
        found: list[str] = []
        if not 1 <= self.batch_size <= 1000:
            found.append(f"LICENSE_SYNC_BATCH_SIZE must be between 1 and 1000 ({self.batch_size})")
        if not 1 <= self.concurrency_limit <= 20:
            found.append(
                f"LICENSE_SYNC_CONCURRENCY must be between 1 and 20 ({self.concurrency_limit})"
            )
        if self.max_concurrent_batches < 1:
            found.append("LICENSE_SYNC_MAX_CONCURRENT_BATCHES must be at least 1")
        if not 100 <= self.max_licenses_for_comprehensive <= 50_000:
            found.append(
                "LICENSE_SYNC_MAX_COMPREHENSIVE must be between 100 and 50000 "
                f"({self.max_licenses_for_comprehensive})"
            )
        if self.max_field_length < 1:
            found.append("LICENSE_SYNC_MAX_FIELD_LENGTH must be positive")
        if self.write_batch_size < 1:
            found.append("LICENSE_SYNC_DB_WRITE_BATCH_SIZE must be positive")
        return found


def get_sync_config() -> SyncConfig:
    config = SyncConfig(
        batch_size=env_int("LICENSE_SYNC_BATCH_SIZE", 50),
        concurrency_limit=env_int("LICENSE_SYNC_CONCURRENCY", 5),
        max_concurrent_batches=env_int("LICENSE_SYNC_MAX_CONCURRENT_BATCHES", 5),
        max_licenses_for_comprehensive=env_int("LICENSE_SYNC_MAX_COMPREHENSIVE", 10_000),
        strict_validation=env_bool("LICENSE_SYNC_VALIDATION_STRICT", False),
        max_field_length=env_int("LICENSE_SYNC_MAX_FIELD_LENGTH", 1000),
        allowed_license_types=env_csv(
            "LICENSE_SYNC_ALLOWED_TYPES", DEFAULT_ALLOWED_LICENSE_TYPES
        ),
        write_batch_size=env_int("LICENSE_SYNC_DB_WRITE_BATCH_SIZE", 50),
        bidirectional=env_bool("LICENSE_SYNC_BIDIRECTIONAL_ENABLED", False),
    )
    problems = config.problems()
    if problems:
        raise ConfigurationError(
            "Invalid license sync configuration: " + "; ".join(problems), problems=problems
        )
    return config
