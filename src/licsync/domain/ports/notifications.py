"""Outbound notifications emitted by the lifecycle service."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from licsync.domain.model import License, ReminderType


@runtime_checkable
class LifecycleNotifier(Protocol):
    def renewal_reminder(self, license: License, reminder: ReminderType) -> None: ...

    def license_suspended(self, license: License, reason: str) -> None: ...

    def license_extended(self, license: License) -> None: ...

    def license_reactivated(self, license: License) -> None: ...
