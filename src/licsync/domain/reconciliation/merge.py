"""Projection of external records onto internal licenses.

Two entry points:
- ``new_license_from_external`` builds a fresh license for an unmatched record
- ``apply_external_changes`` merges a matched record field by field

The merge only writes fields the external payload actually supplied. A value
of ``None`` means "not supplied"; ``0``, ``False`` and ``""`` are real values.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from licsync.domain.clock import ensure_aware
from licsync.domain.model import DEFAULT_GRACE_PERIOD_DAYS, License, LicenseStatus, LicenseTerm

if TYPE_CHECKING:
    from datetime import datetime

    from licsync.domain.model import ExternalLicense

DEFAULT_PRODUCT = "ABC Business Suite"
DEFAULT_PLAN = "Basic"
FALLBACK_DBA = "External License"

# external attribute -> internal attribute, for plain copies
FIELD_MAP: dict[str, str] = {
    "appid": "external_appid",
    "email": "external_email",
    "countid": "external_countid",
    "dba": "dba",
    "zip": "zip",
    "mid": "mid",
    "license_type": "license_type",
    "activate_date": "starts_at",
    "coming_expired": "coming_expired",
    "monthly_fee": "last_payment",
    "sms_balance": "sms_balance",
    "note": "notes",
    "package": "package_data",
    "sendbat_workspace": "sendbat_workspace",
    "last_active": "last_active",
}

_DATETIME_FIELDS = frozenset({"starts_at", "last_active", "cancel_date"})


def _external_status_text(external: ExternalLicense) -> str | None:
    if external.status is None:
        return None
    if isinstance(external.status, bool):
        return "1" if external.status else "0"
    return str(external.status)


def new_license_from_external(
    external: ExternalLicense,
    *,
    key: str,
    now: datetime,
    product: str = DEFAULT_PRODUCT,
    grace_period_days: int = DEFAULT_GRACE_PERIOD_DAYS,
) -> License:
    """Build a new internal license for an external record with no match."""

    status = external.internal_status or LicenseStatus.CANCEL
    last_active = ensure_aware(external.last_active)
    dba = (external.dba or "").strip() or (external.email or "").strip() or FALLBACK_DBA

    license = License(
        key=key,
        product=product,
        plan=DEFAULT_PLAN,
        status=status,
        term=LicenseTerm.MONTHLY,
        seats_total=1,
        seats_used=0,
        starts_at=ensure_aware(external.activate_date) or now,
        cancel_date=(last_active or now) if status is LicenseStatus.CANCEL else None,
        dba=dba,
        zip=external.zip or "",
        mid=external.mid,
        license_type=external.license_type,
        notes=external.note or "",
        last_payment=external.monthly_fee or 0.0,
        last_active=last_active or now,
        sms_purchased=0,
        sms_sent=0,
        sms_balance=external.sms_balance or 0.0,
        agents=0,
        agents_cost=0.0,
        package_data=external.package,
        sendbat_workspace=external.sendbat_workspace,
        coming_expired=external.coming_expired,
        external_appid=external.appid,
        external_email=external.email,
        external_countid=external.countid,
        external_status=_external_status_text(external),
        grace_period_days=grace_period_days,
        created_at=now,
        updated_at=now,
    )
    license.mark_synced(now)
    return license


def external_changes(
    license: License,
    external: ExternalLicense,
    *,
    now: datetime,
) -> dict[str, object]:
    """Return ``{internal_field: new_value}`` for every supplied field that differs.

    Pure: ``license`` is not modified. Dry runs use this directly.
    """

    changes: dict[str, object] = {}
    for external_name, internal_name in FIELD_MAP.items():
        value = getattr(external, external_name)
        if value is None:
            continue
        if internal_name in _DATETIME_FIELDS:
            value = ensure_aware(value)
        if getattr(license, internal_name) != value:
            changes[internal_name] = value

    status = external.internal_status
    if status is not None:
        if license.status != status:
            changes["status"] = status
        status_text = _external_status_text(external)
        if license.external_status != status_text:
            changes["external_status"] = status_text
        if status is LicenseStatus.CANCEL:
            cancel_date = ensure_aware(external.last_active) or license.cancel_date or now
            if cancel_date != license.cancel_date:
                changes["cancel_date"] = cancel_date
    return changes


def apply_external_changes(license: License, external: ExternalLicense, now: datetime) -> list[str]:
    """Merge ``external`` into ``license`` and return the changed field names.

    ``updated_at`` only moves when something changed, so re-applying the
    same record leaves the license as it was apart from the sync envelope.
    """

    changes = external_changes(license, external, now=now)
    for name, value in changes.items():
        setattr(license, name, value)
    if changes:
        license.touch(now)
    license.mark_synced(now)
    return sorted(changes)


__all__ = [
    "DEFAULT_PLAN",
    "DEFAULT_PRODUCT",
    "FALLBACK_DBA",
    "FIELD_MAP",
    "apply_external_changes",
    "external_changes",
    "new_license_from_external",
]
