"""Application configuration helpers."""

from __future__ import annotations

from .env import env_bool, env_csv, env_float, env_int, require_env_vars
from .errors import ConfigurationError, MissingConfigurationError
from .external_api import (
    ExternalApiConfig,
    get_circuit_breaker_policy,
    get_external_api_config,
    get_retry_policy,
)
from .http_resilience import CircuitBreakerPolicy, RateLimit, ResilienceConfig, RetryPolicy
from .lifecycle import LifecycleConfig, get_lifecycle_config
from .logging import configure_logging
from .storage import DatabaseConfig, data_dir, get_database_config
from .sync import SyncConfig, get_sync_config

__all__ = [
    "CircuitBreakerPolicy",
    "ConfigurationError",
    "DatabaseConfig",
    "ExternalApiConfig",
    "LifecycleConfig",
    "MissingConfigurationError",
    "RateLimit",
    "ResilienceConfig",
    "RetryPolicy",
    "SyncConfig",
    "configure_logging",
    "data_dir",
    "env_bool",
    "env_csv",
    "env_float",
    "env_int",
    "get_circuit_breaker_policy",
    "get_database_config",
    "get_external_api_config",
    "get_lifecycle_config",
    "get_retry_policy",
    "get_sync_config",
    "require_env_vars",
]
