from __future__ import annotations

import os
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.engine import Engine  # noqa: TC002
from sqlalchemy.orm import Session, sessionmaker

from licsync.adapters.circuit_breaker import circuit_breakers
from licsync.adapters.sqlalchemy import start_mappers
from licsync.adapters.sqlalchemy.migrations import upgrade_head
from licsync.adapters.sqlalchemy.unit_of_work import (
    SqlAlchemyLicenseUnitOfWork,
    create_database_engine,
    shutdown,
    startup,
)
from tests.helpers.licenses import FrozenClock

os.environ.setdefault("DATABASE_URI", "sqlite+pysqlite:///:memory:")

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator


@pytest.fixture(autouse=True)
def _isolated_circuit_breakers() -> Iterator[None]:
    circuit_breakers.clear()
    yield
    circuit_breakers.clear()


@pytest.fixture
def now() -> datetime:
    return datetime(2025, 6, 1, 12, 0, tzinfo=UTC)


@pytest.fixture
def clock(now: datetime) -> FrozenClock:
    return FrozenClock(now)


@pytest.fixture
def sqlite_engine() -> Iterator[Engine]:
    engine = create_database_engine("sqlite+pysqlite:///:memory:")
    start_mappers()
    upgrade_head(engine=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def sqlite_session(sqlite_engine: Engine) -> Iterator[Session]:
    session_factory = sessionmaker(bind=sqlite_engine, expire_on_commit=False)
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def unit_of_work_factory(
    sqlite_engine: Engine,
) -> Iterator[Callable[[], SqlAlchemyLicenseUnitOfWork]]:
    startup(engine=sqlite_engine, force=True)
    try:
        yield SqlAlchemyLicenseUnitOfWork
    finally:
        shutdown()
