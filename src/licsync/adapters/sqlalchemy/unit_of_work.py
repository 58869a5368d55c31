"""Engine lifecycle and the SQLAlchemy unit of work for the license store.

``startup()`` must run once per process before any unit of work is created.
It migrates the schema to head and keeps the engine in module state until
``shutdown()``.
"""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING, Literal

from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, SessionTransaction, sessionmaker

from licsync.adapters.sqlalchemy.mappings import start_mappers
from licsync.adapters.sqlalchemy.migrations import upgrade_head
from licsync.adapters.sqlalchemy.repositories import SqlAlchemyLicenseRepository
from licsync.config.storage import get_database_config
from licsync.domain.ports.unit_of_work import LicenseRepositories

if TYPE_CHECKING:
    from types import TracebackType

    from sqlalchemy.engine import Engine

log = getLogger(__name__)


class StartupError(RuntimeError):
    """The store was used before ``startup()`` or outside an open unit of work."""


class _Store:
    engine: Engine | None = None
    sessions: sessionmaker[Session] | None = None

    def bind(self, engine: Engine | None) -> None:
        self.engine = engine
        self.sessions = sessionmaker(bind=engine, expire_on_commit=False) if engine else None

    def session_factory(self) -> sessionmaker[Session]:
        if self.sessions is None:
            raise StartupError("License store not started; call startup() first")
        return self.sessions


_store = _Store()


def create_database_engine(database_uri: str, *, echo: bool = False) -> Engine:
    """Create an engine whose transactions and savepoints nest correctly.

    pysqlite manages transactions on its own and would commit the outer
    transaction when the first savepoint is released. For SQLite the driver is
    switched to autocommit and SQLAlchemy emits BEGIN itself.
    """

    engine = create_engine(database_uri, echo=echo)
    if engine.dialect.name == "sqlite":

        @event.listens_for(engine, "connect")
        def _disable_driver_transactions(dbapi_connection, _connection_record) -> None:  # noqa: ANN001
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(connection) -> None:  # noqa: ANN001
            connection.exec_driver_sql("BEGIN")

    return engine


def startup(
    *,
    engine: Engine | None = None,
    database_uri: str | None = None,
    force: bool = False,
) -> None:
    if _store.engine is not None and not force:
        raise StartupError("License store already started; pass force=True to rebind it")

    if engine is None:
        config = get_database_config()
        engine = create_database_engine(database_uri or config.uri, echo=config.echo)
    start_mappers()
    upgrade_head(engine=engine)
    _store.bind(engine)
    log.debug("License store bound to %s", engine.url.render_as_string(hide_password=True))


def is_started() -> bool:
    return _store.engine is not None


def shutdown() -> None:
    if _store.engine is not None:
        _store.engine.dispose()
    _store.bind(None)


class SqlAlchemyLicenseUnitOfWork:
    """One session per ``with`` block; leaving on an exception rolls back."""

    def __init__(self) -> None:
        self._sessions = _store.session_factory()
        self._session: Session | None = None
        self._repositories: LicenseRepositories | None = None

    def __enter__(self) -> SqlAlchemyLicenseUnitOfWork:
        if self._session is not None:
            raise StartupError("Unit of work is already open")
        self._session = self._sessions()
        self._repositories = LicenseRepositories(
            licenses=SqlAlchemyLicenseRepository(self._session)
        )
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> Literal[False]:
        session = self.session
        try:
            if exc_type is not None:
                session.rollback()
        finally:
            session.close()
            self._session = None
            self._repositories = None
        return False

    @property
    def session(self) -> Session:
        if self._session is None:
            raise StartupError("Unit of work is not open")
        return self._session

    @property
    def repositories(self) -> LicenseRepositories:
        if self._repositories is None:
            raise StartupError("Unit of work is not open")
        return self._repositories

    def commit(self) -> None:
        self.session.commit()

    def rollback(self) -> None:
        self.session.rollback()

    def savepoint(self) -> SessionTransaction:
        return self.session.begin_nested()


if TYPE_CHECKING:
    from licsync.domain.ports.unit_of_work import LicenseUnitOfWork

    _uow_check: LicenseUnitOfWork = SqlAlchemyLicenseUnitOfWork()
