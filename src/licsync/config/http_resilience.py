"""Configuration types for resilient HTTP clients."""

from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Mapping


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Retry schedule for a single logical call.

    ``total`` counts every attempt including the first one, so ``total=3``
    means one call plus at most two retries.
    """

    total: int = 3
    initial_delay: float = 2.0
    backoff_multiplier: float = 2.0
    max_backoff_wait: float = 30.0
    backoff_jitter: float = 0.25
    respect_retry_after_header: bool = True
    status_forcelist: frozenset[int] = frozenset({408, 429, 500, 502, 503, 504})

    def backoff_for(self, attempt: int, *, rng: Callable[[], float] = random.random) -> float:
        """Return the delay to wait after the given (1-based) failed attempt."""

        delay = self.initial_delay * (self.backoff_multiplier ** max(attempt - 1, 0))
        delay = min(delay, self.max_backoff_wait)
        if self.backoff_jitter:
            delay *= 1 + self.backoff_jitter * (2 * rng() - 1)
        return max(delay, 0.0)


@dataclass(slots=True, frozen=True)
class CircuitBreakerPolicy:
    failure_threshold: int = 5
    recovery_timeout: float = 60.0
    monitoring_period: float = 120.0


@dataclass(slots=True, frozen=True)
class RateLimit:
    max_calls: int
    per_seconds: float


@dataclass(slots=True, frozen=True)
class ResilienceConfig:
    name: str
    base_url: str | None = None
    timeout_seconds: float = 30.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    circuit_breaker: CircuitBreakerPolicy | None = field(default_factory=CircuitBreakerPolicy)
    ratelimit: RateLimit | None = None
    default_headers: Mapping[str, str] | None = None
