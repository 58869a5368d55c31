"""HTTP client for the external license API."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import partial
from logging import getLogger
from typing import TYPE_CHECKING, Any, TypeVar
from urllib.parse import quote

from pydantic import ValidationError as PydanticValidationError

from licsync.adapters.circuit_breaker import CircuitSnapshot, circuit_breakers
from licsync.adapters.http_resilience import ResilientClient
from licsync.domain.clock import utcnow
from licsync.domain.errors import (
    ExternalServiceError,
    ItemError,
    LicenseSyncError,
    NetworkTimeout,
    ValidationError,
)
from licsync.domain.ports.fetching import HealthStatus

from .schema import ExternalLicensePayload, LicenseListResponse, MutationResponse

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping, Sequence

    import httpx

    from licsync.config.external_api import ExternalApiConfig
    from licsync.config.http_resilience import ResilienceConfig

log = getLogger(__name__)

T = TypeVar("T")

LICENSES_PATH = "/api/v1/licenses"
BULK_CREATE_CHUNK = 50
BULK_UPDATE_CHUNK = 25
BULK_DELETE_CHUNK = 25


@dataclass(slots=True)
class BulkResult:
    succeeded: list[object] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)

    @property
    def total_processed(self) -> int:
        return len(self.succeeded) + len(self.errors)


def _require(value: object, message: str) -> None:
    if value is None or (isinstance(value, str) and not value.strip()):
        raise ValidationError(message)


def _segment(value: object) -> str:
    return quote(str(value).strip(), safe="")


def _unwrap_record(payload: object) -> dict[str, Any]:
    if isinstance(payload, dict):
        inner = payload.get("data")
        if isinstance(inner, dict):
            return inner
        return payload
    raise ExternalServiceError("Unexpected license payload from external API")


def _json_or_empty(response: httpx.Response) -> object:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError as exc:
        raise ExternalServiceError(
            "Malformed JSON from external API",
            status_code=response.status_code,
            body=response.text[:500],
        ) from exc


class ExternalLicenseClient:
    """Typed operations against the external license authority.

    Records can be addressed by application id, by license email, or by
    count id. Required identifiers and payload fields are checked before any
    request is sent. The synchronous methods open their own connection; the
    ``a``-prefixed coroutines run on a caller-provided :class:`ResilientClient`
    so bulk work can share one connection pool.
    """

    def __init__(
        self,
        *,
        config: ExternalApiConfig,
        client_factory: Callable[[ResilienceConfig], ResilientClient] | None = None,
    ) -> None:
        self._config = config
        self._resilience = config.resilience
        self._client_factory = client_factory or ResilientClient

    @property
    def resilience(self) -> ResilienceConfig:
        return self._resilience

    def connect(self) -> ResilientClient:
        return self._client_factory(self._resilience)

    # synchronous facade ---------------------------------------------------

    def list_licenses(
        self,
        *,
        page: int = 1,
        limit: int = 50,
        status: int | str | None = None,
        dba: str | None = None,
        email: str | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> LicenseListResponse:
        return self._run(
            lambda client: self.alist_licenses(
                client,
                page=page,
                limit=limit,
                status=status,
                dba=dba,
                email=email,
                sort_by=sort_by,
                sort_order=sort_order,
            )
        )

    def get_license_by_appid(self, appid: str) -> ExternalLicensePayload:
        return self._run(lambda client: self.aget_license_by_appid(client, appid))

    def get_license_by_email(self, email: str) -> ExternalLicensePayload:
        return self._run(lambda client: self.aget_license_by_email(client, email))

    def get_license_by_countid(self, countid: int) -> ExternalLicensePayload:
        return self._run(lambda client: self.aget_license_by_countid(client, countid))

    def create_license(self, payload: Mapping[str, object]) -> MutationResponse:
        return self._run(lambda client: self.acreate_license(client, payload))

    def update_license_by_appid(
        self, appid: str, changes: Mapping[str, object]
    ) -> MutationResponse:
        return self._run(lambda client: self.aupdate_license_by_appid(client, appid, changes))

    def update_license_by_email(
        self, email: str, changes: Mapping[str, object]
    ) -> MutationResponse:
        return self._run(lambda client: self.aupdate_license_by_email(client, email, changes))

    def update_license_by_countid(
        self, countid: int, changes: Mapping[str, object]
    ) -> MutationResponse:
        return self._run(
            lambda client: self.aupdate_license_by_countid(client, countid, changes)
        )

    def delete_license_by_appid(self, appid: str) -> MutationResponse:
        return self._run(lambda client: self.adelete_license_by_appid(client, appid))

    def delete_license_by_email(self, email: str) -> MutationResponse:
        return self._run(lambda client: self.adelete_license_by_email(client, email))

    def delete_license_by_countid(self, countid: int) -> MutationResponse:
        return self._run(lambda client: self.adelete_license_by_countid(client, countid))

    def bulk_create(self, payloads: Sequence[Mapping[str, object]]) -> BulkResult:
        return self._run(lambda client: self.abulk_create(client, payloads))

    def bulk_update(self, updates: Sequence[tuple[str, Mapping[str, object]]]) -> BulkResult:
        return self._run(lambda client: self.abulk_update(client, updates))

    def bulk_delete(self, identifiers: Sequence[Mapping[str, object]]) -> BulkResult:
        return self._run(lambda client: self.abulk_delete(client, identifiers))

    def health_check(self) -> HealthStatus:
        """Issue the cheapest list call possible. Never raises for remote failures."""

        try:
            self.list_licenses(page=1, limit=1)
        except (ExternalServiceError, NetworkTimeout, PydanticValidationError) as exc:
            log.warning("External license API health check failed: %s", exc)
            return HealthStatus(healthy=False, checked_at=utcnow(), error=str(exc))
        return HealthStatus(healthy=True, checked_at=utcnow())

    def circuit_status(self) -> CircuitSnapshot | None:
        policy = self._resilience.circuit_breaker
        if policy is None:
            return None
        return circuit_breakers.get(self._resilience.name, policy).snapshot()

    # coroutines on a shared connection -----------------------------------

    async def alist_licenses(
        self,
        client: ResilientClient,
        *,
        page: int = 1,
        limit: int = 50,
        status: int | str | None = None,
        dba: str | None = None,
        email: str | None = None,
        sort_by: str | None = None,
        sort_order: str | None = None,
    ) -> LicenseListResponse:
        if page < 1 or limit < 1:
            raise ValidationError("page and limit must be positive")
        params: dict[str, str] = {"page": str(page), "limit": str(limit)}
        optional = {
            "status": status,
            "dba": dba,
            "email": email,
            "sortBy": sort_by,
            "sortOrder": sort_order,
        }
        params.update({key: str(value) for key, value in optional.items() if value is not None})

        response = await client.get(LICENSES_PATH, params=params)
        payload = _json_or_empty(response)
        if not isinstance(payload, dict):
            raise ExternalServiceError("Unexpected license list payload from external API")
        try:
            return LicenseListResponse.model_validate(payload)
        except PydanticValidationError as exc:
            raise ExternalServiceError(
                f"Malformed license list from external API: {exc.error_count()} errors",
                status_code=response.status_code,
            ) from exc

    async def aget_license_by_appid(
        self, client: ResilientClient, appid: str
    ) -> ExternalLicensePayload:
        _require(appid, "App ID is required")
        return await self._get_record(client, f"{LICENSES_PATH}/{_segment(appid)}")

    async def aget_license_by_email(
        self, client: ResilientClient, email: str
    ) -> ExternalLicensePayload:
        _require(email, "Email is required")
        return await self._get_record(client, f"{LICENSES_PATH}/email/{_segment(email)}")

    async def aget_license_by_countid(
        self, client: ResilientClient, countid: int
    ) -> ExternalLicensePayload:
        _require(countid, "Count ID is required")
        return await self._get_record(client, f"{LICENSES_PATH}/countid/{_segment(countid)}")

    async def acreate_license(
        self, client: ResilientClient, payload: Mapping[str, object]
    ) -> MutationResponse:
        if not payload or not payload.get("emailLicense") or not payload.get("pass"):
            raise ValidationError("License data with emailLicense and pass is required")
        response = await client.post(LICENSES_PATH, json=dict(payload))
        return MutationResponse.model_validate(_json_or_empty(response))

    async def aupdate_license_by_appid(
        self, client: ResilientClient, appid: str, changes: Mapping[str, object]
    ) -> MutationResponse:
        _require(appid, "App ID is required")
        return await self._put(client, f"{LICENSES_PATH}/{_segment(appid)}", changes)

    async def aupdate_license_by_email(
        self, client: ResilientClient, email: str, changes: Mapping[str, object]
    ) -> MutationResponse:
        _require(email, "Email is required")
        return await self._put(client, f"{LICENSES_PATH}/email/{_segment(email)}", changes)

    async def aupdate_license_by_countid(
        self, client: ResilientClient, countid: int, changes: Mapping[str, object]
    ) -> MutationResponse:
        _require(countid, "Count ID is required")
        return await self._put(client, f"{LICENSES_PATH}/countid/{_segment(countid)}", changes)

    async def adelete_license_by_appid(
        self, client: ResilientClient, appid: str
    ) -> MutationResponse:
        _require(appid, "App ID is required")
        return await self._delete(client, f"{LICENSES_PATH}/{_segment(appid)}")

    async def adelete_license_by_email(
        self, client: ResilientClient, email: str
    ) -> MutationResponse:
        _require(email, "Email is required")
        return await self._delete(client, f"{LICENSES_PATH}/email/{_segment(email)}")

    async def adelete_license_by_countid(
        self, client: ResilientClient, countid: int
    ) -> MutationResponse:
        _require(countid, "Count ID is required")
        return await self._delete(client, f"{LICENSES_PATH}/countid/{_segment(countid)}")

    async def abulk_create(
        self, client: ResilientClient, payloads: Sequence[Mapping[str, object]]
    ) -> BulkResult:
        if not payloads:
            raise ValidationError("Licenses data array is required")
        for index, payload in enumerate(payloads):
            if not payload.get("emailLicense") or not payload.get("pass"):
                raise ValidationError(
                    f"License at index {index} missing required fields: emailLicense and/or pass"
                )
        return await self._run_chunked(
            [
                (
                    index,
                    str(payload.get("emailLicense")),
                    partial(self.acreate_license, client, payload),
                )
                for index, payload in enumerate(payloads)
            ],
            chunk_size=BULK_CREATE_CHUNK,
            label="bulk create",
        )

    async def abulk_update(
        self,
        client: ResilientClient,
        updates: Sequence[tuple[str, Mapping[str, object]]],
    ) -> BulkResult:
        if not updates:
            raise ValidationError("Updates array is required")
        return await self._run_chunked(
            [
                (index, appid, partial(self.aupdate_license_by_appid, client, appid, changes))
                for index, (appid, changes) in enumerate(updates)
            ],
            chunk_size=BULK_UPDATE_CHUNK,
            label="bulk update",
        )

    async def abulk_delete(
        self,
        client: ResilientClient,
        identifiers: Sequence[Mapping[str, object]],
    ) -> BulkResult:
        if not identifiers:
            raise ValidationError("Identifiers array is required")
        return await self._run_chunked(
            [
                (
                    index,
                    _describe_identifier(item),
                    partial(self._delete_by_identifier, client, item),
                )
                for index, item in enumerate(identifiers)
            ],
            chunk_size=BULK_DELETE_CHUNK,
            label="bulk delete",
        )

    # internals -------------------------------------------------------------

    def _run(self, operation: Callable[[ResilientClient], Awaitable[T]]) -> T:
        async def runner() -> T:
            async with self.connect() as client:
                return await operation(client)

        return asyncio.run(runner())

    async def _get_record(self, client: ResilientClient, path: str) -> ExternalLicensePayload:
        response = await client.get(path)
        return ExternalLicensePayload.model_validate(_unwrap_record(_json_or_empty(response)))

    async def _put(
        self, client: ResilientClient, path: str, changes: Mapping[str, object]
    ) -> MutationResponse:
        if not changes:
            raise ValidationError("Update data is required")
        response = await client.put(path, json=dict(changes))
        return MutationResponse.model_validate(_json_or_empty(response))

    async def _delete(self, client: ResilientClient, path: str) -> MutationResponse:
        response = await client.delete(path)
        return MutationResponse.model_validate(_json_or_empty(response))

    async def _delete_by_identifier(
        self, client: ResilientClient, item: Mapping[str, object]
    ) -> MutationResponse:
        appid, email, countid = item.get("appid"), item.get("email"), item.get("countid")
        if appid:
            return await self.adelete_license_by_appid(client, str(appid))
        if email:
            return await self.adelete_license_by_email(client, str(email))
        if countid:
            return await self.adelete_license_by_countid(client, int(str(countid)))
        raise ValidationError("Invalid identifier: must have appid, email, or countid")

    async def _run_chunked(
        self,
        jobs: list[tuple[int, str | None, Callable[[], Awaitable[object]]]],
        *,
        chunk_size: int,
        label: str,
    ) -> BulkResult:
        result = BulkResult()
        for start in range(0, len(jobs), chunk_size):
            chunk = jobs[start : start + chunk_size]
            log.debug(
                "Processing %s chunk %s (%s items)", label, start // chunk_size + 1, len(chunk)
            )
            outcomes = await asyncio.gather(
                *(job() for _, _, job in chunk), return_exceptions=True
            )
            for (index, identifier, _), outcome in zip(chunk, outcomes, strict=True):
                if isinstance(outcome, (LicenseSyncError, PydanticValidationError)):
                    result.errors.append(ItemError(index, identifier, str(outcome)))
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    result.succeeded.append(outcome)
        if result.errors:
            log.warning("%s finished with %s failed items", label, len(result.errors))
        return result


def _describe_identifier(item: Mapping[str, object]) -> str | None:
    for key in ("appid", "email", "countid"):
        if item.get(key):
            return f"{key}={item[key]}"
    return None
