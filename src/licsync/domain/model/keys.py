"""License key generation for records created from external data."""

from __future__ import annotations

import secrets
import string
import time
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from .external import ExternalLicense

KEY_PREFIX = "EXT"
SUFFIX_ALPHABET = string.ascii_uppercase + string.digits
SUFFIX_LENGTH = 3


def random_suffix(length: int = SUFFIX_LENGTH) -> str:
    return "".join(secrets.choice(SUFFIX_ALPHABET) for _ in range(length))


def key_identifier(external: ExternalLicense, *, timestamp: Callable[[], float] = time.time) -> str:
    if external.appid:
        return external.appid
    if external.countid:
        return f"C{external.countid}"
    return str(int(timestamp() * 1000))[-6:]


def generate_license_key(
    external: ExternalLicense,
    *,
    suffix: Callable[[], str] = random_suffix,
    timestamp: Callable[[], float] = time.time,
) -> str:
    """Build ``EXT-{identifier}-{suffix}``.

    The suffix lowers the collision probability; it does not remove it. The
    store enforces uniqueness.
    """

    return f"{KEY_PREFIX}-{key_identifier(external, timestamp=timestamp)}-{suffix()}"
