"""create licenses table

Revision ID: 0001
Revises:
Create Date: 2026-10-18
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001"
down_revision = None
branch_labels = None
depends_on = None

_STATUS = ("pending", "active", "expired", "cancel", "revoked")
_TERM = ("monthly", "yearly")
_SYNC_STATUS = ("pending", "synced", "failed")


def _enum(name: str, values: tuple[str, ...]) -> sa.Enum:
    return sa.Enum(*values, name=name, native_enum=False, length=16)


def upgrade() -> None:
    op.create_table(
        "licenses",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("key", sa.String(length=128), nullable=False),
        sa.Column("product", sa.String(), nullable=False),
        sa.Column("plan", sa.String(), nullable=False),
        sa.Column("status", _enum("licensestatus", _STATUS), nullable=False),
        sa.Column("term", _enum("licenseterm", _TERM), nullable=False),
        sa.Column("seats_total", sa.Integer(), nullable=False),
        sa.Column("seats_used", sa.Integer(), nullable=False),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dba", sa.String(), nullable=True),
        sa.Column("zip", sa.String(), nullable=True),
        sa.Column("mid", sa.String(), nullable=True),
        sa.Column("license_type", sa.String(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("last_payment", sa.Float(), nullable=False),
        sa.Column("last_active", sa.DateTime(timezone=True), nullable=True),
        sa.Column("sms_purchased", sa.Integer(), nullable=False),
        sa.Column("sms_sent", sa.Integer(), nullable=False),
        sa.Column("sms_balance", sa.Float(), nullable=False),
        sa.Column("agents", sa.Integer(), nullable=False),
        sa.Column("agents_cost", sa.Float(), nullable=False),
        sa.Column("package_data", sa.Text(), nullable=True),
        sa.Column("sendbat_workspace", sa.String(), nullable=True),
        sa.Column("coming_expired", sa.String(), nullable=True),
        sa.Column("external_appid", sa.String(), nullable=True),
        sa.Column("external_email", sa.String(), nullable=True),
        sa.Column("external_countid", sa.Integer(), nullable=True),
        sa.Column("external_status", sa.String(), nullable=True),
        sa.Column("last_external_sync", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_sync_status", _enum("syncstatus", _SYNC_STATUS), nullable=False),
        sa.Column("external_sync_error", sa.Text(), nullable=True),
        sa.Column("renewal_reminders_sent", sa.Text(), nullable=False),
        sa.Column("last_renewal_reminder", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renewal_due_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_suspend_enabled", sa.Boolean(), nullable=False),
        sa.Column("grace_period_days", sa.Integer(), nullable=False),
        sa.Column("grace_period_end", sa.DateTime(timezone=True), nullable=True),
        sa.Column("suspension_reason", sa.Text(), nullable=True),
        sa.Column("suspended_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reactivated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("renewal_history", sa.Text(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk_licenses"),
        sa.UniqueConstraint("key", name="uq_licenses_key"),
    )
    op.create_index("ix_licenses_external_appid", "licenses", ["external_appid"])
    op.create_index("ix_licenses_external_email", "licenses", ["external_email"])
    op.create_index("ix_licenses_external_countid", "licenses", ["external_countid"])
    op.create_index("ix_licenses_expires_at", "licenses", ["expires_at"])
    op.create_index("ix_licenses_external_sync_status", "licenses", ["external_sync_status"])


def downgrade() -> None:
    op.drop_table("licenses")
