from __future__ import annotations

import logging
from pathlib import Path

import pytest

from licsync.config import (
    ConfigurationError,
    MissingConfigurationError,
    SyncConfig,
    configure_logging,
    env_bool,
    env_csv,
    get_circuit_breaker_policy,
    get_database_config,
    get_external_api_config,
    get_lifecycle_config,
    get_retry_policy,
    get_sync_config,
    require_env_vars,
)
from licsync.config.external_api import EXTERNAL_API_NAME, USER_AGENT
from licsync.config.http_resilience import RetryPolicy

_SYNC_VARS = (
    "LICENSE_SYNC_BATCH_SIZE",
    "LICENSE_SYNC_CONCURRENCY",
    "LICENSE_SYNC_MAX_CONCURRENT_BATCHES",
    "LICENSE_SYNC_MAX_COMPREHENSIVE",
    "LICENSE_SYNC_VALIDATION_STRICT",
    "LICENSE_SYNC_MAX_FIELD_LENGTH",
    "LICENSE_SYNC_ALLOWED_TYPES",
    "LICENSE_SYNC_DB_WRITE_BATCH_SIZE",
    "LICENSE_SYNC_BIDIRECTIONAL_ENABLED",
)


@pytest.fixture
def clean_sync_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _SYNC_VARS:
        monkeypatch.delenv(name, raising=False)


def test_require_env_vars_returns_values(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXAMPLE_VAR", " value ")

    result = require_env_vars(["EXAMPLE_VAR"])

    assert result["EXAMPLE_VAR"] == "value"


def test_require_env_vars_lists_every_missing_name(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("MISSING_A", raising=False)
    monkeypatch.setenv("MISSING_B", "   ")

    with pytest.raises(MissingConfigurationError) as exc:
        require_env_vars(["MISSING_B", "MISSING_A"])

    assert "MISSING_A" in str(exc.value)
    assert exc.value.problems == ("MISSING_A", "MISSING_B")


def test_env_bool_rejects_garbage(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("FLAG", "maybe")

    with pytest.raises(ConfigurationError):
        env_bool("FLAG", False)


def test_env_csv_splits_and_trims(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TYPES", " demo, product ,,trial ")

    assert env_csv("TYPES", ()) == ("demo", "product", "trial")


def test_sync_config_defaults(clean_sync_env: None) -> None:
    config = get_sync_config()

    assert config == SyncConfig()
    assert config.batch_size == 50
    assert config.concurrency_limit == 5
    assert config.max_licenses_for_comprehensive == 10_000
    assert config.allowed_license_types == ("demo", "product")
    assert config.strict_validation is False
    assert config.bidirectional is False


def test_sync_config_reads_environment(
    clean_sync_env: None,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LICENSE_SYNC_BATCH_SIZE", "100")
    monkeypatch.setenv("LICENSE_SYNC_CONCURRENCY", "8")
    monkeypatch.setenv("LICENSE_SYNC_MAX_CONCURRENT_BATCHES", "3")
    monkeypatch.setenv("LICENSE_SYNC_VALIDATION_STRICT", "true")
    monkeypatch.setenv("LICENSE_SYNC_BIDIRECTIONAL_ENABLED", "1")

    config = get_sync_config()

    assert config.batch_size == 100
    assert config.effective_concurrency == 3
    assert config.strict_validation is True
    assert config.bidirectional is True


def test_sync_config_reports_every_range_violation(
    clean_sync_env: None,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LICENSE_SYNC_BATCH_SIZE", "5000")
    monkeypatch.setenv("LICENSE_SYNC_CONCURRENCY", "0")
    monkeypatch.setenv("LICENSE_SYNC_MAX_COMPREHENSIVE", "50")

    with pytest.raises(ConfigurationError) as exc:
        get_sync_config()

    problems = " ".join(exc.value.problems)
    assert "LICENSE_SYNC_BATCH_SIZE" in problems
    assert "LICENSE_SYNC_CONCURRENCY" in problems
    assert "LICENSE_SYNC_MAX_COMPREHENSIVE" in problems


def test_sync_config_rejects_non_integer(
    clean_sync_env: None,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    monkeypatch.setenv("LICENSE_SYNC_BATCH_SIZE", "fifty")

    with pytest.raises(ConfigurationError, match="LICENSE_SYNC_BATCH_SIZE"):
        get_sync_config()


def test_external_api_config_requires_url_and_key(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("EXTERNAL_LICENSE_API_URL", raising=False)
    monkeypatch.delenv("EXTERNAL_LICENSE_API_KEY", raising=False)

    with pytest.raises(MissingConfigurationError) as exc:
        get_external_api_config()

    assert "EXTERNAL_LICENSE_API_KEY" in str(exc.value)
    assert "EXTERNAL_LICENSE_API_URL" in str(exc.value)


def test_external_api_config_builds_resilience(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("EXTERNAL_LICENSE_API_URL", "https://licenses.example.com/")
    monkeypatch.setenv("EXTERNAL_LICENSE_API_KEY", "secret")
    monkeypatch.setenv("EXTERNAL_LICENSE_API_TIMEOUT_MS", "5000")
    monkeypatch.setenv("LICENSE_SYNC_RETRY_ATTEMPTS", "4")
    monkeypatch.setenv("LICENSE_SYNC_CIRCUIT_FAILURE_THRESHOLD", "2")

    config = get_external_api_config()

    assert config.base_url == "https://licenses.example.com"
    resilience = config.resilience
    assert resilience.name == EXTERNAL_API_NAME
    assert resilience.timeout_seconds == 5.0
    assert resilience.retry.total == 4
    assert resilience.circuit_breaker is not None
    assert resilience.circuit_breaker.failure_threshold == 2
    assert resilience.default_headers == {
        "x-api-key": "secret",
        "User-Agent": USER_AGENT,
        "Accept": "application/json",
    }


def test_policy_defaults_match_documented_values(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in (
        "LICENSE_SYNC_RETRY_ATTEMPTS",
        "LICENSE_SYNC_RETRY_DELAY_MS",
        "LICENSE_SYNC_RETRY_BACKOFF_MULTIPLIER",
        "LICENSE_SYNC_CIRCUIT_FAILURE_THRESHOLD",
        "LICENSE_SYNC_CIRCUIT_RESET_TIMEOUT_MS",
        "LICENSE_SYNC_CIRCUIT_MONITORING_PERIOD_MS",
    ):
        monkeypatch.delenv(name, raising=False)

    retry = get_retry_policy()
    breaker = get_circuit_breaker_policy()

    assert (retry.total, retry.initial_delay, retry.backoff_multiplier) == (3, 2.0, 2.0)
    assert (breaker.failure_threshold, breaker.recovery_timeout, breaker.monitoring_period) == (
        5,
        60.0,
        120.0,
    )


@pytest.mark.parametrize(
    ("attempt", "expected"),
    [(1, 2.0), (2, 4.0), (3, 8.0), (10, 30.0)],
)
def test_retry_backoff_grows_and_is_capped(attempt: int, expected: float) -> None:
    policy = RetryPolicy(backoff_jitter=0)

    assert policy.backoff_for(attempt) == expected


def test_retry_backoff_jitter_stays_within_bounds() -> None:
    policy = RetryPolicy()

    assert policy.backoff_for(1, rng=lambda: 0.0) == pytest.approx(1.5)
    assert policy.backoff_for(1, rng=lambda: 1.0) == pytest.approx(2.5)


def test_lifecycle_config_validates(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("LICENSE_LIFECYCLE_EXPIRING_DAYS", "14")
    monkeypatch.setenv("LICENSE_LIFECYCLE_GRACE_DAYS", "45")

    config = get_lifecycle_config()

    assert (config.expiring_threshold_days, config.default_grace_period_days) == (14, 45)

    monkeypatch.setenv("LICENSE_LIFECYCLE_EXPIRING_DAYS", "0")
    with pytest.raises(ConfigurationError):
        get_lifecycle_config()


def test_database_config_prefers_env_uri(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("DATABASE_URI", "sqlite+pysqlite:///:memory:")
    monkeypatch.setenv("LICSYNC_DB_ECHO", "true")
    config = get_database_config()
    assert config.uri == "sqlite+pysqlite:///:memory:"
    assert config.echo
    assert config.is_sqlite

    monkeypatch.delenv("DATABASE_URI")
    data_dir = tmp_path / "store"
    monkeypatch.setenv("LICSYNC_DATA_DIR", str(data_dir))
    uri = get_database_config().uri
    assert uri == f"sqlite+pysqlite:///{data_dir.resolve() / 'licsync.db'}"
    assert data_dir.exists()


def test_configure_logging_quiets_httpx() -> None:
    configure_logging(level=logging.DEBUG, force=True)

    assert logging.getLogger().level == logging.DEBUG
    assert logging.getLogger("httpx").level >= logging.WARNING
