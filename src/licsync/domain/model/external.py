"""Domain view of a license record owned by the external authority."""

from __future__ import annotations

from dataclasses import dataclass, fields
from typing import TYPE_CHECKING

from .enums import LicenseStatus, MatchAxis

if TYPE_CHECKING:
    from datetime import datetime


@dataclass(frozen=True, slots=True, kw_only=True)
class ExternalLicense:
    """An external record after payload normalisation.

    ``None`` means the payload did not supply a value. Falsy values such as
    ``0``, ``False`` or ``""`` were supplied and must be honoured by a merge.
    """

    appid: str | None = None
    countid: int | None = None
    email: str | None = None
    dba: str | None = None
    zip: str | None = None
    mid: str | None = None
    license_type: str | None = None
    status: int | str | None = None
    activate_date: datetime | None = None
    coming_expired: str | None = None
    monthly_fee: float | None = None
    sms_balance: float | None = None
    note: str | None = None
    package: object | None = None
    sendbat_workspace: str | None = None
    last_active: datetime | None = None

    def supplied(self) -> dict[str, object]:
        """Return the fields that carry a value, keyed by attribute name."""

        return {
            item.name: getattr(self, item.name)
            for item in fields(self)
            if getattr(self, item.name) is not None
        }

    def identifier(self, axis: MatchAxis) -> str | int | None:
        if axis is MatchAxis.APPID:
            return self.appid
        if axis is MatchAxis.EMAIL:
            return self.email
        return self.countid

    @property
    def display_identifier(self) -> str:
        for axis in MatchAxis:
            value = self.identifier(axis)
            if value is not None:
                return f"{axis}={value}"
        return "unidentified"

    @property
    def internal_status(self) -> LicenseStatus | None:
        return normalize_external_status(self.status)


def normalize_external_status(status: int | str | None) -> LicenseStatus | None:
    """Map the external status flag onto the internal status enum.

    ``1`` and ``"active"`` mean active. Any other defined value is a
    cancellation. An absent status maps to ``None``.
    """

    if status is None:
        return None
    if isinstance(status, bool):
        return LicenseStatus.ACTIVE if status else LicenseStatus.CANCEL
    if isinstance(status, int):
        return LicenseStatus.ACTIVE if status == 1 else LicenseStatus.CANCEL
    normalized = status.strip().lower()
    if normalized in {"active", "1"}:
        return LicenseStatus.ACTIVE
    return LicenseStatus.CANCEL
