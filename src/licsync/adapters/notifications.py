"""Lifecycle notifier that only writes to the log."""

from __future__ import annotations

from logging import getLogger
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from licsync.domain.model import License, ReminderType
    from licsync.domain.ports import LifecycleNotifier

log = getLogger(__name__)


class LoggingLifecycleNotifier:
    """Records every lifecycle notice at INFO level. Nothing is delivered."""

    def renewal_reminder(self, license: License, reminder: ReminderType) -> None:
        log.info(
            "Renewal reminder %s for license %s (%s) expiring %s",
            reminder,
            license.key,
            license.dba or license.external_email or "-",
            license.expires_at,
        )

    def license_suspended(self, license: License, reason: str) -> None:
        log.info("License %s suspended: %s", license.key, reason)

    def license_extended(self, license: License) -> None:
        log.info("License %s now expires %s", license.key, license.expires_at)

    def license_reactivated(self, license: License) -> None:
        log.info("License %s reactivated", license.key)


if TYPE_CHECKING:

    def _conforms(notifier: LoggingLifecycleNotifier) -> LifecycleNotifier:
        return notifier
