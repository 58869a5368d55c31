"""SQLAlchemy mapping metadata for the license store."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import UTC, datetime
from enum import StrEnum
from functools import cache
from typing import TYPE_CHECKING, Any, cast

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Dialect,
    Enum,
    Float,
    Index,
    Integer,
    String,
    Table,
    Text,
    TypeDecorator,
    UniqueConstraint,
    Uuid,
    orm,
)
from sqlalchemy.orm import configure_mappers

from licsync.domain.model import (
    License,
    LicenseStatus,
    LicenseTerm,
    ReminderType,
    RenewalHistoryEntry,
    SyncStatus,
)

if TYPE_CHECKING:
    from sqlalchemy.engine import Engine

log = logging.getLogger(__name__)


def _enum_values(enum_cls: type[StrEnum]) -> list[str]:
    return [member.value for member in enum_cls]


def _enum_column_type(enum_cls: type[StrEnum]) -> Enum:
    return Enum(enum_cls, native_enum=False, values_callable=_enum_values, length=16)


class UTCDateTime(TypeDecorator[datetime]):
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Dialect) -> datetime | None:
        _ = dialect
        if value is None:
            return None
        return value if value.tzinfo else value.replace(tzinfo=UTC)


class ReminderListType(TypeDecorator[list[ReminderType]]):
    """Ordered, duplicate-free reminder tags stored as a JSON array."""

    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: list[ReminderType] | None, dialect: Dialect
    ) -> str | None:
        _ = dialect
        if value is None:
            return json.dumps([])
        seen: list[str] = []
        for item in value:
            tag = ReminderType(item).value
            if tag not in seen:
                seen.append(tag)
        return json.dumps(seen)

    def process_result_value(self, value: str | None, dialect: Dialect) -> list[ReminderType]:
        _ = dialect
        if value is None:
            return []
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return []
        return [ReminderType(item) for item in cast(list[Any], loaded) if isinstance(item, str)]


class RenewalHistoryType(TypeDecorator[list[RenewalHistoryEntry]]):
    impl = Text
    cache_ok = True

    def process_bind_param(
        self, value: list[RenewalHistoryEntry] | None, dialect: Dialect
    ) -> str | None:
        _ = dialect
        return json.dumps([entry.to_dict() for entry in value or []])

    def process_result_value(
        self, value: str | None, dialect: Dialect
    ) -> list[RenewalHistoryEntry]:
        _ = dialect
        if value is None:
            return []
        loaded = json.loads(value)
        if not isinstance(loaded, list):
            return []
        return [
            RenewalHistoryEntry.from_dict(item)
            for item in cast(list[Any], loaded)
            if isinstance(item, dict)
        ]


class JSONValueType(TypeDecorator[object]):
    impl = Text
    cache_ok = True

    def process_bind_param(self, value: object, dialect: Dialect) -> str | None:
        _ = dialect
        if value is None:
            return None
        return json.dumps(value, default=str)

    def process_result_value(self, value: str | None, dialect: Dialect) -> object:
        _ = dialect
        if value is None:
            return None
        return json.loads(value)


mapper_registry = orm.registry()
mapper_registry.metadata.naming_convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_label)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_label)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}

license_table = Table(
    "licenses",
    mapper_registry.metadata,
    Column("id", Uuid, primary_key=True, default=uuid.uuid4),  # type: ignore[reportUnknownArgumentType]
    Column("key", String(128), nullable=False),
    Column("product", String, nullable=False),
    Column("plan", String, nullable=False),
    Column("status", _enum_column_type(LicenseStatus), nullable=False),
    Column("term", _enum_column_type(LicenseTerm), nullable=False),
    Column("seats_total", Integer, nullable=False),
    Column("seats_used", Integer, nullable=False),
    Column("starts_at", UTCDateTime, nullable=True),
    Column("expires_at", UTCDateTime, nullable=True),
    Column("cancel_date", UTCDateTime, nullable=True),
    # business fields mirrored from the external authority
    Column("dba", String, nullable=True),
    Column("zip", String, nullable=True),
    Column("mid", String, nullable=True),
    Column("license_type", String, nullable=True),
    Column("notes", Text, nullable=True),
    Column("last_payment", Float, nullable=False),
    Column("last_active", UTCDateTime, nullable=True),
    Column("sms_purchased", Integer, nullable=False),
    Column("sms_sent", Integer, nullable=False),
    Column("sms_balance", Float, nullable=False),
    Column("agents", Integer, nullable=False),
    Column("agents_cost", Float, nullable=False),
    Column("package_data", JSONValueType, nullable=True),
    Column("sendbat_workspace", String, nullable=True),
    Column("coming_expired", String, nullable=True),
    # sync envelope
    Column("external_appid", String, nullable=True),
    Column("external_email", String, nullable=True),
    Column("external_countid", Integer, nullable=True),
    Column("external_status", String, nullable=True),
    Column("last_external_sync", UTCDateTime, nullable=True),
    Column("external_sync_status", _enum_column_type(SyncStatus), nullable=False),
    Column("external_sync_error", Text, nullable=True),
    # lifecycle
    Column("renewal_reminders_sent", ReminderListType, nullable=False),
    Column("last_renewal_reminder", UTCDateTime, nullable=True),
    Column("renewal_due_date", UTCDateTime, nullable=True),
    Column("auto_suspend_enabled", Boolean, nullable=False),
    Column("grace_period_days", Integer, nullable=False),
    Column("grace_period_end", UTCDateTime, nullable=True),
    Column("suspension_reason", Text, nullable=True),
    Column("suspended_at", UTCDateTime, nullable=True),
    Column("reactivated_at", UTCDateTime, nullable=True),
    Column("renewal_history", RenewalHistoryType, nullable=False),
    Column("created_at", UTCDateTime, nullable=False),
    Column("updated_at", UTCDateTime, nullable=False),
    UniqueConstraint("key"),
    Index("ix_licenses_external_appid", "external_appid"),
    Index("ix_licenses_external_email", "external_email"),
    Index("ix_licenses_external_countid", "external_countid"),
    Index("ix_licenses_expires_at", "expires_at"),
    Index("ix_licenses_external_sync_status", "external_sync_status"),
)


@cache
def start_mappers() -> orm.registry:
    """Configure SQLAlchemy mappers for the domain model."""

    log.info("Starting SQLAlchemy mappers")
    mapper_registry.map_imperatively(License, license_table)
    configure_mappers()
    return mapper_registry


def create_all_tables(engine: Engine) -> None:
    """Create database tables for the mapped metadata."""

    log.info("Creating all tables")
    mapper_registry.metadata.create_all(engine)
