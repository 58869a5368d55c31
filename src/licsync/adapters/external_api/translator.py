"""Translate between external payloads and domain licenses."""

from __future__ import annotations

from typing import TYPE_CHECKING

from licsync.domain.model import ExternalLicense, LicenseStatus

if TYPE_CHECKING:
    from licsync.domain.model import License

    from .schema import ExternalLicensePayload


def to_external_license(payload: ExternalLicensePayload) -> ExternalLicense:
    """Convert a parsed payload into the domain view used by reconciliation."""

    return ExternalLicense(
        appid=payload.appid,
        countid=payload.countid,
        email=payload.email_license,
        dba=payload.dba,
        zip=payload.zip,
        mid=payload.mid,
        license_type=payload.license_type,
        status=payload.status,
        activate_date=payload.activate_date,
        coming_expired=payload.coming_expired,
        monthly_fee=payload.monthly_fee,
        sms_balance=payload.sms_balance,
        note=payload.note,
        package=payload.package,
        sendbat_workspace=payload.sendbat_workspace,
        last_active=payload.last_active,
    )


def to_external_update(license: License) -> dict[str, object]:
    """Fields pushed outward when internal changes are mirrored to the authority."""

    return {
        "dba": license.dba or "",
        "zip": license.zip or "",
        "status": 1 if license.status == LicenseStatus.ACTIVE else 0,
        "monthlyFee": license.last_payment or 0,
        "smsBalance": license.sms_balance or 0,
        "Note": license.notes or "",
    }
