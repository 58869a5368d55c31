"""Transaction boundary around the license store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from contextlib import AbstractContextManager
    from types import TracebackType

    from licsync.domain.ports.persistence import LicenseRepository


@dataclass(slots=True)
class LicenseRepositories:
    licenses: LicenseRepository


@runtime_checkable
class LicenseUnitOfWork(Protocol):
    """Nothing is persisted unless :meth:`commit` is called before leaving the block."""

    @property
    def repositories(self) -> LicenseRepositories: ...

    def __enter__(self) -> LicenseUnitOfWork: ...

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        traceback: TracebackType | None,
    ) -> bool: ...

    def commit(self) -> None: ...

    def rollback(self) -> None: ...

    def savepoint(self) -> AbstractContextManager[object]:
        """Nested transaction; an exception rolls back only the work done inside it."""
        ...
