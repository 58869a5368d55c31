"""Circuit breaker guarding calls to a named dependency."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass
from enum import StrEnum
from logging import getLogger
from typing import TYPE_CHECKING, TypeVar

from licsync.config.http_resilience import CircuitBreakerPolicy
from licsync.domain.errors import CircuitOpenError, ExternalServiceUnavailable, NetworkTimeout

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

log = getLogger(__name__)

T = TypeVar("T")


class CircuitState(StrEnum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half_open"


@dataclass(frozen=True, slots=True)
class CircuitSnapshot:
    name: str
    state: CircuitState
    failure_count: int
    retry_after: float | None
    total_calls: int
    total_failures: int
    total_successes: int
    rejected_calls: int


def counts_as_failure(exc: BaseException) -> bool:
    """Only dependency-level failures trip the breaker; client errors do not."""

    if isinstance(exc, CircuitOpenError):
        return False
    return isinstance(exc, (ExternalServiceUnavailable, NetworkTimeout))


class CircuitBreaker:
    """Fail fast after repeated failures, then allow a single trial call.

    Failures are counted in a rolling window of ``monitoring_period`` seconds
    and reset by any success. Once ``failure_threshold`` is reached the
    circuit opens for ``recovery_timeout`` seconds. The first call after that
    runs as the half-open trial while concurrent callers keep failing fast.
    """

    def __init__(
        self,
        name: str,
        policy: CircuitBreakerPolicy | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        is_failure: Callable[[BaseException], bool] = counts_as_failure,
    ) -> None:
        self.name = name
        self.policy = policy or CircuitBreakerPolicy()
        self._clock = clock
        self._is_failure = is_failure
        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._opened_until: float | None = None
        self._trial_in_flight = False
        self._total_calls = 0
        self._total_failures = 0
        self._total_successes = 0
        self._rejected_calls = 0

    @property
    def state(self) -> CircuitState:
        return self._state

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        self._before_call()
        try:
            result = await operation()
        except Exception as exc:
            if self._is_failure(exc):
                self._record_failure(exc)
            else:
                self._record_success()
            raise
        except BaseException:
            # cancelled; the next caller becomes the trial
            self._release_trial()
            raise
        self._record_success()
        return result

    def reset(self) -> None:
        if self._state is not CircuitState.CLOSED:
            log.info("Circuit %s reset to closed", self.name)
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._opened_until = None
        self._trial_in_flight = False

    def force_open(self) -> None:
        self._open()

    def snapshot(self) -> CircuitSnapshot:
        retry_after = None
        if self._state is CircuitState.OPEN and self._opened_until is not None:
            retry_after = max(self._opened_until - self._clock(), 0.0)
        self._prune()
        return CircuitSnapshot(
            name=self.name,
            state=self._state,
            failure_count=len(self._failures),
            retry_after=retry_after,
            total_calls=self._total_calls,
            total_failures=self._total_failures,
            total_successes=self._total_successes,
            rejected_calls=self._rejected_calls,
        )

    def _before_call(self) -> None:
        now = self._clock()
        if self._state is CircuitState.OPEN:
            if self._opened_until is not None and now < self._opened_until:
                self._reject(self._opened_until - now)
            self._transition(CircuitState.HALF_OPEN)
            self._trial_in_flight = False
        if self._state is CircuitState.HALF_OPEN:
            if self._trial_in_flight:
                self._reject(0.0)
            self._trial_in_flight = True
        self._total_calls += 1

    def _reject(self, retry_after: float) -> None:
        self._rejected_calls += 1
        raise CircuitOpenError(self.name, retry_after=retry_after)

    def _release_trial(self) -> None:
        if self._state is CircuitState.HALF_OPEN:
            self._trial_in_flight = False

    def _record_success(self) -> None:
        self._total_successes += 1
        self._failures.clear()
        if self._state is CircuitState.HALF_OPEN:
            self._trial_in_flight = False
            self._opened_until = None
            self._transition(CircuitState.CLOSED)

    def _record_failure(self, exc: BaseException) -> None:
        self._total_failures += 1
        if self._state is CircuitState.HALF_OPEN:
            log.warning("Circuit %s trial call failed: %s", self.name, exc)
            self._open()
            return
        now = self._clock()
        self._failures.append(now)
        self._prune(now)
        log.warning(
            "Circuit %s recorded failure %s/%s: %s",
            self.name,
            len(self._failures),
            self.policy.failure_threshold,
            exc,
        )
        if len(self._failures) >= self.policy.failure_threshold:
            self._open()

    def _open(self) -> None:
        self._opened_until = self._clock() + self.policy.recovery_timeout
        self._trial_in_flight = False
        self._failures.clear()
        self._transition(CircuitState.OPEN)

    def _prune(self, now: float | None = None) -> None:
        horizon = (now if now is not None else self._clock()) - self.policy.monitoring_period
        while self._failures and self._failures[0] < horizon:
            self._failures.popleft()

    def _transition(self, state: CircuitState) -> None:
        if state is self._state:
            return
        log.info("Circuit %s: %s -> %s", self.name, self._state, state)
        self._state = state


class CircuitBreakerRegistry:
    """Named breakers, so every client for the same dependency shares one state."""

    def __init__(self) -> None:
        self._breakers: dict[str, CircuitBreaker] = {}

    def get(self, name: str, policy: CircuitBreakerPolicy | None = None) -> CircuitBreaker:
        breaker = self._breakers.get(name)
        if breaker is None:
            breaker = CircuitBreaker(name, policy)
            self._breakers[name] = breaker
        return breaker

    def snapshots(self) -> list[CircuitSnapshot]:
        return [breaker.snapshot() for breaker in self._breakers.values()]

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()

    def clear(self) -> None:
        self._breakers.clear()


circuit_breakers = CircuitBreakerRegistry()
