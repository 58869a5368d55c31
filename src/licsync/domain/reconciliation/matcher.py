"""Identity matching between external records and internal licenses.

Responsibilities of this stage:
- try each identifier axis in priority order (appid, email, countid)
- stop at the first axis that yields a hit
- never mutate anything

The strategy list is data, so callers can reorder or extend it without
touching the matching loop.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeAlias

from licsync.domain.model import MatchAxis

if TYPE_CHECKING:
    from collections.abc import Sequence
    from uuid import UUID

    from licsync.domain.model import ExternalLicense, License
    from licsync.domain.ports import LicenseRepository


ResolveIdentity: TypeAlias = Callable[["ExternalLicense"], "UUID | None"]


@dataclass(frozen=True, slots=True)
class MatchStrategy:
    axis: MatchAxis
    resolve: ResolveIdentity


@dataclass(frozen=True, slots=True)
class MatchResult:
    license_id: UUID | None = None
    matched_by: MatchAxis | None = None

    @property
    def matched(self) -> bool:
        return self.license_id is not None


def _license_id(found: License | None) -> UUID | None:
    return found.id if found is not None else None


def appid_strategy(repository: LicenseRepository) -> MatchStrategy:
    def resolve(external: ExternalLicense) -> UUID | None:
        if not external.appid:
            return None
        return _license_id(repository.find_by_external_appid(external.appid))

    return MatchStrategy(MatchAxis.APPID, resolve)


def email_strategy(repository: LicenseRepository) -> MatchStrategy:
    def resolve(external: ExternalLicense) -> UUID | None:
        if not external.email:
            return None
        return _license_id(repository.find_by_external_email(external.email))

    return MatchStrategy(MatchAxis.EMAIL, resolve)


def countid_strategy(repository: LicenseRepository) -> MatchStrategy:
    def resolve(external: ExternalLicense) -> UUID | None:
        if external.countid is None:
            return None
        return _license_id(repository.find_by_external_countid(external.countid))

    return MatchStrategy(MatchAxis.COUNTID, resolve)


def default_strategies(repository: LicenseRepository) -> tuple[MatchStrategy, ...]:
    return (
        appid_strategy(repository),
        email_strategy(repository),
        countid_strategy(repository),
    )


def match_external(
    external: ExternalLicense,
    strategies: Sequence[MatchStrategy],
) -> MatchResult:
    """Return the first internal license any strategy resolves ``external`` to."""

    for strategy in strategies:
        license_id = strategy.resolve(external)
        if license_id is not None:
            return MatchResult(license_id=license_id, matched_by=strategy.axis)
    return MatchResult()


__all__ = [
    "MatchResult",
    "MatchStrategy",
    "ResolveIdentity",
    "appid_strategy",
    "countid_strategy",
    "default_strategies",
    "email_strategy",
    "match_external",
]
