"""Retry, timeout and circuit-breaker primitives plus the resilient HTTP client.

Every outbound call is composed as circuit breaker -> timeout -> retry -> raw
call, so an open circuit fails fast before any budget is spent and retries
share a single timeout budget.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from email.utils import parsedate_to_datetime
from logging import getLogger
from typing import TYPE_CHECKING, TypeVar

import httpx
from aiolimiter import AsyncLimiter

from licsync.config.http_resilience import (
    CircuitBreakerPolicy,
    RateLimit,
    ResilienceConfig,
    RetryPolicy,
)
from licsync.domain.clock import utcnow
from licsync.domain.errors import (
    CircuitOpenError,
    ExternalNotFound,
    ExternalServiceError,
    ExternalServiceUnavailable,
    NetworkTimeout,
    ValidationError,
)

from .circuit_breaker import CircuitBreaker, circuit_breakers

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Collection
    from types import TracebackType

log = getLogger(__name__)

T = TypeVar("T")

_MAX_BODY_IN_MESSAGE = 500
DEFAULT_RETRY_STATUSES = frozenset({408, 429, 500, 502, 503, 504})


def is_retryable(exc: BaseException) -> bool:
    """Network errors, 5xx responses and timeouts are retried; the rest is not."""

    if isinstance(exc, (ValidationError, CircuitOpenError)):
        return False
    if isinstance(exc, NetworkTimeout):
        return True
    if isinstance(exc, ExternalServiceUnavailable):
        return exc.retryable
    if isinstance(exc, ExternalServiceError):
        return False
    return isinstance(exc, (httpx.TransportError, TimeoutError))


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    name: str,
    retryable: Callable[[BaseException], bool] = is_retryable,
    on_retry: Callable[[BaseException, int, float], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run ``operation`` for at most ``policy.total`` attempts."""

    attempts = max(policy.total, 1)
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not retryable(exc):
                raise
            if attempt >= attempts:
                log.error("%s failed after %s attempts: %s", name, attempt, exc)
                raise
            delay = _retry_delay(policy, attempt, exc)
            log.warning(
                "%s attempt %s/%s failed, retrying in %.2fs: %s",
                name,
                attempt,
                attempts,
                delay,
                exc,
            )
            if on_retry is not None:
                on_retry(exc, attempt, delay)
            await sleep(delay)
            attempt += 1


def _retry_delay(policy: RetryPolicy, attempt: int, exc: BaseException) -> float:
    delay = policy.backoff_for(attempt)
    retry_after = getattr(exc, "retry_after", None)
    if policy.respect_retry_after_header and isinstance(retry_after, (int, float)):
        delay = max(delay, min(float(retry_after), policy.max_backoff_wait))
    return delay


async def with_timeout(
    operation: Callable[[], Awaitable[T]],
    timeout_seconds: float,
    *,
    name: str,
    on_timeout: Callable[[str, float], None] | None = None,
) -> T:
    """Abort ``operation`` after ``timeout_seconds`` and raise :class:`NetworkTimeout`."""

    try:
        async with asyncio.timeout(timeout_seconds):
            return await operation()
    except TimeoutError as exc:
        log.warning("%s exceeded its %.1fs timeout budget", name, timeout_seconds)
        if on_timeout is not None:
            on_timeout(name, timeout_seconds)
        raise NetworkTimeout(name, timeout_seconds) from exc


async def call_resilient(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str,
    retry: RetryPolicy,
    timeout_seconds: float,
    breaker: CircuitBreaker | None = None,
    on_retry: Callable[[BaseException, int, float], None] | None = None,
    on_timeout: Callable[[str, float], None] | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Compose circuit breaker -> timeout -> retry around ``operation``."""

    async def retried() -> T:
        return await with_retry(operation, retry, name=name, on_retry=on_retry, sleep=sleep)

    async def timed() -> T:
        return await with_timeout(retried, timeout_seconds, name=name, on_timeout=on_timeout)

    if breaker is None:
        return await timed()
    return await breaker.call(timed)


def raise_for_status(
    response: httpx.Response,
    *,
    retry_statuses: Collection[int] = DEFAULT_RETRY_STATUSES,
) -> None:
    """Translate a non-2xx response into the engine's error taxonomy.

    5xx, 408 and 429 map to :class:`ExternalServiceUnavailable`; only the codes
    in ``retry_statuses`` are marked retryable.
    """

    if response.is_success:
        return
    status = response.status_code
    body = response.text[:_MAX_BODY_IN_MESSAGE]
    message = f"HTTP {status} from {response.request.method} {response.request.url.path}: {body}"
    if status == 404:
        raise ExternalNotFound(message, status_code=status, body=body)
    if status in (401, 403):
        raise ExternalServiceUnavailable(message, status_code=status, body=body, retryable=False)
    if status >= 500 or status in (408, 429):
        raise ExternalServiceUnavailable(
            message,
            status_code=status,
            body=body,
            retryable=status in retry_statuses,
            retry_after=_parse_retry_after(response.headers.get("Retry-After")),
        )
    raise ExternalServiceError(message, status_code=status, body=body)


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        moment = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    return max((moment - utcnow()).total_seconds(), 0.0)


@dataclass(frozen=True, slots=True)
class ResilienceHooks:
    on_retry: Callable[[BaseException, int, float], None] | None = None
    on_timeout: Callable[[str, float], None] | None = None


class ResilientClient:
    """``httpx.AsyncClient`` wrapper applying rate limiting and the reliability stack."""

    def __init__(
        self,
        config: ResilienceConfig,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        breaker: CircuitBreaker | None = None,
        hooks: ResilienceHooks | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self._limiter: AsyncLimiter | None = _build_limiter(config.ratelimit)
        self.breaker = breaker or _shared_breaker(config.name, config.circuit_breaker)
        self._hooks = hooks or ResilienceHooks()
        self._sleep = sleep

        client_kwargs: dict[str, object] = {"timeout": config.timeout_seconds}
        if config.base_url is not None:
            client_kwargs["base_url"] = config.base_url
        if config.default_headers:
            client_kwargs["headers"] = dict(config.default_headers)
        if transport is not None:
            client_kwargs["transport"] = transport
        self._client = httpx.AsyncClient(**client_kwargs)  # type: ignore[arg-type]

    async def __aenter__(self) -> ResilientClient:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        url: str,
        **kwargs: object,
    ) -> httpx.Response:
        name = f"{self.config.name} {method} {url}"

        async def attempt() -> httpx.Response:
            response = await self._send(method, url, kwargs, name=name)
            raise_for_status(response, retry_statuses=self.config.retry.status_forcelist)
            return response

        return await call_resilient(
            attempt,
            name=name,
            retry=self.config.retry,
            timeout_seconds=self.config.timeout_seconds,
            breaker=self.breaker,
            on_retry=self._hooks.on_retry,
            on_timeout=self._hooks.on_timeout,
            sleep=self._sleep,
        )

    async def get(self, url: str, **kwargs: object) -> httpx.Response:
        return await self.request("GET", url, **kwargs)

    async def post(self, url: str, **kwargs: object) -> httpx.Response:
        return await self.request("POST", url, **kwargs)

    async def put(self, url: str, **kwargs: object) -> httpx.Response:
        return await self.request("PUT", url, **kwargs)

    async def delete(self, url: str, **kwargs: object) -> httpx.Response:
        return await self.request("DELETE", url, **kwargs)

    async def _send(
        self,
        method: str,
        url: str,
        kwargs: dict[str, object],
        *,
        name: str,
    ) -> httpx.Response:
        try:
            if self._limiter is None:
                return await self._client.request(method, url, **kwargs)  # type: ignore[arg-type]
            async with self._limiter:
                return await self._client.request(method, url, **kwargs)  # type: ignore[arg-type]
        except httpx.TimeoutException as exc:
            raise NetworkTimeout(name, self.config.timeout_seconds) from exc
        except httpx.TransportError as exc:
            raise ExternalServiceUnavailable(f"{name}: {exc!r}") from exc


def _build_limiter(ratelimit: RateLimit | None) -> AsyncLimiter | None:
    if ratelimit is None:
        return None
    return AsyncLimiter(ratelimit.max_calls, ratelimit.per_seconds)


def _shared_breaker(name: str, policy: CircuitBreakerPolicy | None) -> CircuitBreaker | None:
    if policy is None:
        return None
    return circuit_breakers.get(name, policy)
