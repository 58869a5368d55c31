from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

from licsync.adapters.sqlalchemy import SqlAlchemyLicenseRepository
from licsync.domain.model import MatchAxis
from licsync.domain.reconciliation import MatchStrategy, default_strategies, match_external
from tests.helpers.licenses import make_external, make_license

if TYPE_CHECKING:
    from sqlalchemy.orm import Session


@pytest.fixture
def repository(sqlite_session: Session) -> SqlAlchemyLicenseRepository:
    repository = SqlAlchemyLicenseRepository(sqlite_session)
    repository.add(make_license(key="LIC-APP", external_appid="APP1"))
    repository.add(make_license(key="LIC-MAIL", external_email="owner@example.com"))
    repository.add(make_license(key="LIC-COUNT", external_countid=101))
    sqlite_session.commit()
    return repository


def _key(repository: SqlAlchemyLicenseRepository, license_id: object) -> str:
    found = repository.get(license_id)  # type: ignore[arg-type]
    assert found is not None
    return found.key


def test_appid_wins_over_other_axes(repository: SqlAlchemyLicenseRepository) -> None:
    result = match_external(make_external(), default_strategies(repository))

    assert result.matched
    assert result.matched_by is MatchAxis.APPID
    assert _key(repository, result.license_id) == "LIC-APP"


def test_email_is_tried_when_appid_misses(repository: SqlAlchemyLicenseRepository) -> None:
    result = match_external(
        make_external(appid="UNKNOWN", email="OWNER@example.com"),
        default_strategies(repository),
    )

    assert result.matched_by is MatchAxis.EMAIL
    assert _key(repository, result.license_id) == "LIC-MAIL"


def test_countid_is_the_last_resort(repository: SqlAlchemyLicenseRepository) -> None:
    result = match_external(
        make_external(appid=None, email="nobody@example.com"),
        default_strategies(repository),
    )

    assert result.matched_by is MatchAxis.COUNTID
    assert _key(repository, result.license_id) == "LIC-COUNT"


def test_no_identifier_hit_means_no_match(repository: SqlAlchemyLicenseRepository) -> None:
    result = match_external(
        make_external(appid="X", email="x@example.com", countid=999),
        default_strategies(repository),
    )

    assert not result.matched
    assert result.matched_by is None


def test_strategies_run_in_order_until_one_hits() -> None:
    calls: list[str] = []

    def recorder(axis: MatchAxis) -> MatchStrategy:
        def resolve(external: object) -> None:
            calls.append(axis)

        return MatchStrategy(axis, resolve)

    result = match_external(make_external(), [recorder(MatchAxis.APPID), recorder(MatchAxis.EMAIL)])

    assert not result.matched
    assert calls == [MatchAxis.APPID, MatchAxis.EMAIL]


def test_custom_strategy_order_is_respected(repository: SqlAlchemyLicenseRepository) -> None:
    strategies = tuple(reversed(default_strategies(repository)))

    result = match_external(make_external(), strategies)

    assert result.matched_by is MatchAxis.COUNTID
