"""Lifecycle scheduler configuration."""

from __future__ import annotations

from dataclasses import dataclass

from .env import env_int
from .errors import ConfigurationError


@dataclass(frozen=True, slots=True)
class LifecycleConfig:
    expiring_threshold_days: int = 30
    default_grace_period_days: int = 30


def get_lifecycle_config() -> LifecycleConfig:
    config = LifecycleConfig(
        expiring_threshold_days=env_int("LICENSE_LIFECYCLE_EXPIRING_DAYS", 30),
        default_grace_period_days=env_int("LICENSE_LIFECYCLE_GRACE_DAYS", 30),
    )
    if config.expiring_threshold_days < 1 or config.default_grace_period_days < 0:
        raise ConfigurationError(
            "LICENSE_LIFECYCLE_EXPIRING_DAYS must be positive and "
            "LICENSE_LIFECYCLE_GRACE_DAYS must not be negative"
        )
    return config
