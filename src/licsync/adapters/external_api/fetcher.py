"""Paginated, concurrency-bounded retrieval of the full external license set."""

from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass, field
from logging import getLogger
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError as PydanticValidationError

from licsync.config.sync import SyncConfig
from licsync.domain.clock import utcnow
from licsync.domain.errors import LicenseSyncError, ValidationError
from licsync.domain.ports.fetching import ExternalFetchResult

from .schema import ExternalLicensePayload, ValidatedExternalLicensePayload
from .translator import to_external_license

if TYPE_CHECKING:
    from licsync.adapters.http_resilience import ResilientClient
    from licsync.domain.clock import Clock
    from licsync.domain.model import ExternalLicense

    from .client import ExternalLicenseClient
    from .schema import LicenseListResponse, ListMeta

log = getLogger(__name__)

UNKNOWN_TOTAL_PAGES = 1000
MAX_REPORTED_VALIDATION_ERRORS = 10


def estimate_total_pages(meta: ListMeta | None, page_size: int) -> int:
    if meta is not None and meta.total_pages:
        return meta.total_pages
    if meta is not None and meta.total is not None:
        return max(1, math.ceil(meta.total / page_size))
    return UNKNOWN_TOTAL_PAGES


@dataclass(slots=True)
class _Accumulator:
    page_size: int
    total_pages: int
    ceiling: int
    cap: int | None
    records: list[dict[str, Any]] = field(default_factory=list)
    truncated: bool = False
    done: bool = False

    def add_page(self, page_number: int, data: list[dict[str, Any]]) -> None:
        self.records.extend(data)
        exhausted = len(data) < self.page_size or page_number >= self.total_pages
        if len(self.records) >= self.ceiling:
            if len(self.records) > self.ceiling or not exhausted:
                log.warning(
                    "Reached maximum license limit, truncating results: fetched=%s, maximum=%s",
                    len(self.records),
                    self.ceiling,
                )
                self.truncated = True
            del self.records[self.ceiling :]
            self.done = True
        if self.cap is not None and len(self.records) >= self.cap:
            log.info("Reached requested license limit of %s, stopping pagination", self.cap)
            del self.records[self.cap :]
            self.done = True
        if exhausted:
            self.done = True


@dataclass(slots=True)
class BulkLicenseFetcher:
    """Pull every page of the external license list into memory.

    Page 1 establishes the total. Remaining pages are requested in waves of at
    most ``concurrency_limit`` concurrent calls. A failed page yields ``None``
    instead of raising, so it does not abort its wave; only a failed first
    page aborts the whole fetch.
    """

    client: ExternalLicenseClient
    config: SyncConfig = field(default_factory=SyncConfig)
    clock: Clock = utcnow

    def __call__(
        self,
        *,
        max_licenses: int | None = None,
        validate: bool = True,
        batch_size: int | None = None,
        concurrency_limit: int | None = None,
        status: int | str | None = None,
    ) -> ExternalFetchResult:
        return asyncio.run(
            self.fetch_all_async(
                max_licenses=max_licenses,
                validate=validate,
                batch_size=batch_size,
                concurrency_limit=concurrency_limit,
                status=status,
            )
        )

    async def fetch_all_async(
        self,
        *,
        max_licenses: int | None = None,
        validate: bool = True,
        batch_size: int | None = None,
        concurrency_limit: int | None = None,
        status: int | str | None = None,
    ) -> ExternalFetchResult:
        page_size = batch_size or self.config.batch_size
        concurrency = max(
            1,
            min(
                concurrency_limit or self.config.concurrency_limit,
                self.config.max_concurrent_batches,
            ),
        )
        ceiling = self.config.max_licenses_for_comprehensive
        cap = max_licenses
        if cap is not None and cap > ceiling:
            log.warning(
                "Requested license limit %s exceeds maximum allowed %s, clamping",
                cap,
                ceiling,
            )
            cap = ceiling

        log.info(
            "Starting bulk license fetch: batch_size=%s, concurrency=%s, max_licenses=%s",
            page_size,
            concurrency,
            cap,
        )

        failed_pages: list[int] = []
        async with self.client.connect() as http:
            first = await self.client.alist_licenses(
                http, page=1, limit=page_size, status=status
            )
            acc = _Accumulator(
                page_size=page_size,
                total_pages=estimate_total_pages(first.meta, page_size),
                ceiling=ceiling,
                cap=cap,
            )
            acc.add_page(1, first.data)
            pages_fetched = 1
            log.info(
                "Bulk fetch first page: records=%s, estimated_pages=%s",
                len(first.data),
                acc.total_pages,
            )

            next_page = 2
            while not acc.done and next_page <= acc.total_pages:
                wave = list(range(next_page, min(next_page + concurrency, acc.total_pages + 1)))
                pages = await asyncio.gather(
                    *(self._fetch_page(http, number, page_size, status) for number in wave)
                )
                pages_fetched += len(wave)
                received_data = False
                for number, page in zip(wave, pages, strict=True):
                    if page is None:
                        failed_pages.append(number)
                        continue
                    received_data = received_data or bool(page.data)
                    acc.add_page(number, page.data)
                    if acc.done:
                        break
                if not received_data:
                    acc.done = True
                next_page += len(wave)

        log.info(
            "Completed bulk license fetch: fetched=%s, pages=%s, failed_pages=%s",
            len(acc.records),
            pages_fetched,
            failed_pages,
        )
        records, errors = self._parse(acc.records, validate=validate)
        invalid = len(acc.records) - len(records)
        if invalid:
            log.warning(
                "External license data validation dropped %s of %s records: %s",
                invalid,
                len(acc.records),
                errors[:MAX_REPORTED_VALIDATION_ERRORS],
            )
            if validate and self.config.strict_validation:
                raise ValidationError(
                    "External license data validation failed: "
                    f"{invalid} of {len(acc.records)} licenses invalid",
                    errors=tuple(errors[:MAX_REPORTED_VALIDATION_ERRORS]),
                )

        return ExternalFetchResult(
            records=records,
            total=len(acc.records),
            valid=len(records),
            invalid=invalid,
            pages_fetched=pages_fetched,
            fetched_at=self.clock(),
            failed_pages=failed_pages,
            validation_errors=errors[:MAX_REPORTED_VALIDATION_ERRORS],
            truncated=acc.truncated,
        )

    async def _fetch_page(
        self,
        http: ResilientClient,
        number: int,
        page_size: int,
        status: int | str | None,
    ) -> LicenseListResponse | None:
        try:
            return await self.client.alist_licenses(
                http, page=number, limit=page_size, status=status
            )
        except (LicenseSyncError, PydanticValidationError) as exc:
            log.error("Error fetching page %s: %s", number, exc)
            return None

    def _parse(
        self,
        raw: list[dict[str, Any]],
        *,
        validate: bool,
    ) -> tuple[list[ExternalLicense], list[str]]:
        model = ValidatedExternalLicensePayload if validate else ExternalLicensePayload
        context = {
            "max_field_length": self.config.max_field_length,
            "allowed_types": self.config.allowed_license_types,
        }
        records: list[ExternalLicense] = []
        errors: list[str] = []
        for index, item in enumerate(raw):
            try:
                payload = model.model_validate(item, context=context)
            except PydanticValidationError as exc:
                reasons = "; ".join(str(error["msg"]) for error in exc.errors())
                errors.append(f"record {index} (countid={item.get('countid')}): {reasons}")
                continue
            records.append(to_external_license(payload))
        return records, errors
