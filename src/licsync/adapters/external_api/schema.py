"""Pydantic models describing the external license API payloads."""

from __future__ import annotations

import re
from datetime import UTC, date, datetime
from typing import Any, Self

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationInfo,
    field_validator,
    model_validator,
)

ZIP_PATTERN = re.compile(r"^\d{5}(-\d{4})?$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
DEFAULT_MAX_FIELD_LENGTH = 1000
DEFAULT_ALLOWED_TYPES = ("demo", "product")

_TEXT_FIELDS = (
    "appid",
    "email_license",
    "dba",
    "zip",
    "mid",
    "license_type",
    "coming_expired",
    "sendbat_workspace",
)


def _blank_to_none(value: object) -> object:
    if isinstance(value, str):
        stripped = value.strip()
        return stripped or None
    return value


def _coerce_identifier(value: object) -> object:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return _blank_to_none(value)


def _coerce_text(value: object) -> object:
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    if isinstance(value, str):
        return value.strip()
    return value


def _parse_timestamp(value: object) -> object:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=UTC)
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        parsed = datetime.fromisoformat(text)
        return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)
    return value


class ExternalBaseModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class ExternalLicensePayload(ExternalBaseModel):
    """A license as the external authority sends it, with its mixed key spellings."""

    countid: int | None = None
    id: int | str | None = None
    appid: str | None = None
    license_type: str | None = None
    dba: str | None = None
    zip: str | None = None
    mid: str | None = None
    status: int | str | None = None
    activate_date: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("ActivateDate", "activateDate", "activate_date"),
    )
    coming_expired: str | None = Field(
        default=None,
        validation_alias=AliasChoices("Coming_expired", "comingExpired", "coming_expired"),
    )
    monthly_fee: float | None = Field(
        default=None, validation_alias=AliasChoices("monthlyFee", "monthly_fee")
    )
    sms_balance: float | None = Field(
        default=None,
        validation_alias=AliasChoices("smsBalance", "sms_balance", "SmsBalance"),
    )
    sms_purchased: int | None = Field(
        default=None, validation_alias=AliasChoices("smsPurchased", "sms_purchased")
    )
    email_license: str | None = Field(
        default=None,
        validation_alias=AliasChoices("Email_license", "emailLicense", "email_license"),
    )
    package: Any = Field(default=None, validation_alias=AliasChoices("Package", "package"))
    note: str | None = Field(default=None, validation_alias=AliasChoices("Note", "note"))
    sendbat_workspace: str | None = Field(
        default=None,
        validation_alias=AliasChoices(
            "Sendbat_workspace", "sendbatWorkspace", "sendbat_workspace"
        ),
    )
    last_active: datetime | None = Field(
        default=None, validation_alias=AliasChoices("lastActive", "last_active")
    )

    _normalize_identifiers = field_validator("appid", "email_license", mode="before")(
        _coerce_identifier
    )
    _normalize_text = field_validator(
        "dba", "zip", "mid", "license_type", "note", "coming_expired", "sendbat_workspace",
        mode="before",
    )(_coerce_text)
    _normalize_dates = field_validator("activate_date", "last_active", mode="before")(
        _parse_timestamp
    )
    _normalize_numbers = field_validator(
        "countid", "monthly_fee", "sms_balance", "sms_purchased", mode="before"
    )(_blank_to_none)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value: object) -> object:
        if isinstance(value, bool):
            return int(value)
        if isinstance(value, str):
            stripped = value.strip()
            if not stripped:
                return None
            if stripped.lstrip("-").isdigit():
                return int(stripped)
            return stripped
        return value


class ValidatedExternalLicensePayload(ExternalLicensePayload):
    """Payload that also satisfies the business rules used during bulk fetch.

    Limits come from the validation context: ``max_field_length`` and
    ``allowed_types``.
    """

    countid: int = Field(gt=0)  # type: ignore[assignment]

    @model_validator(mode="after")
    def _check_business_rules(self, info: ValidationInfo) -> Self:
        context = info.context if isinstance(info.context, dict) else {}
        max_length = int(context.get("max_field_length", DEFAULT_MAX_FIELD_LENGTH))
        allowed_types = tuple(context.get("allowed_types", DEFAULT_ALLOWED_TYPES))

        problems: list[str] = []
        for name in _TEXT_FIELDS:
            value = getattr(self, name)
            if isinstance(value, str) and len(value) > max_length:
                problems.append(f"{name} exceeds {max_length} characters")
        if self.note is not None and len(self.note) > max_length * 2:
            problems.append(f"note exceeds {max_length * 2} characters")
        if self.zip and not ZIP_PATTERN.match(self.zip):
            problems.append(f"zip {self.zip!r} is not a valid ZIP code")
        if self.email_license is not None and not EMAIL_PATTERN.match(self.email_license):
            problems.append(f"emailLicense {self.email_license!r} is not a valid email address")
        if self.license_type and allowed_types and self.license_type not in allowed_types:
            problems.append(f"license_type {self.license_type!r} is not one of {allowed_types}")
        if isinstance(self.status, int) and self.status not in (0, 1):
            problems.append(f"status {self.status} must be 0 or 1")
        for name in ("monthly_fee", "sms_balance", "sms_purchased"):
            number = getattr(self, name)
            if number is not None and number < 0:
                problems.append(f"{name} must not be negative")
        if problems:
            raise ValueError("; ".join(problems))
        return self


class ListMeta(ExternalBaseModel):
    total: int | None = None
    page: int | None = None
    limit: int | None = None
    total_pages: int | None = Field(default=None, alias="totalPages")
    has_next: bool | None = Field(default=None, alias="hasNext")


class LicenseListResponse(ExternalBaseModel):
    data: list[dict[str, Any]]
    meta: ListMeta | None = None


class MutationResponse(ExternalBaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    success: bool | None = None
    message: str | None = None
    data: Any = None
