"""External license API configuration values."""

from __future__ import annotations

from dataclasses import dataclass

from licsync import __version__

from .env import env_float, env_int, require_env_vars
from .http_resilience import CircuitBreakerPolicy, ResilienceConfig, RetryPolicy

EXTERNAL_API_NAME = "external-license-api"
DEFAULT_TIMEOUT_MS = 30_000
USER_AGENT = f"licsync/{__version__}"


@dataclass(frozen=True)
class ExternalApiConfig:
    """Holds external license API configuration values."""

    base_url: str
    api_key: str
    resilience: ResilienceConfig
    user_agent: str = USER_AGENT


def get_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        total=env_int("LICENSE_SYNC_RETRY_ATTEMPTS", 3),
        initial_delay=env_int("LICENSE_SYNC_RETRY_DELAY_MS", 2000) / 1000,
        backoff_multiplier=env_float("LICENSE_SYNC_RETRY_BACKOFF_MULTIPLIER", 2.0),
    )


def get_circuit_breaker_policy() -> CircuitBreakerPolicy:
    return CircuitBreakerPolicy(
        failure_threshold=env_int("LICENSE_SYNC_CIRCUIT_FAILURE_THRESHOLD", 5),
        recovery_timeout=env_int("LICENSE_SYNC_CIRCUIT_RESET_TIMEOUT_MS", 60_000) / 1000,
        monitoring_period=env_int("LICENSE_SYNC_CIRCUIT_MONITORING_PERIOD_MS", 120_000) / 1000,
    )


def get_external_api_config(*, resilience: ResilienceConfig | None = None) -> ExternalApiConfig:
    values = require_env_vars(("EXTERNAL_LICENSE_API_URL", "EXTERNAL_LICENSE_API_KEY"))
    base_url = values["EXTERNAL_LICENSE_API_URL"].rstrip("/")
    api_key = values["EXTERNAL_LICENSE_API_KEY"]
    timeout_seconds = env_int("EXTERNAL_LICENSE_API_TIMEOUT_MS", DEFAULT_TIMEOUT_MS) / 1000
    return ExternalApiConfig(
        base_url=base_url,
        api_key=api_key,
        resilience=resilience
        or ResilienceConfig(
            name=EXTERNAL_API_NAME,
            base_url=base_url,
            timeout_seconds=timeout_seconds,
            retry=get_retry_policy(),
            circuit_breaker=get_circuit_breaker_policy(),
            default_headers={
                "x-api-key": api_key,
                "User-Agent": USER_AGENT,
                "Accept": "application/json",
            },
        ),
    )
