from __future__ import annotations

import argparse
import logging
import sys
from datetime import UTC, datetime
from signal import SIGINT, signal
from typing import TYPE_CHECKING
from uuid import UUID

from dotenv import load_dotenv

from licsync.app import (
    check_external_health,
    extend_license,
    get_sync_status,
    licenses_requiring_attention,
    push_internal_licenses,
    reactivate_license,
    renew_license,
    run_lifecycle,
    sync_external_licenses,
    sync_pending_licenses,
    sync_single_license,
)
from licsync.config import configure_logging

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from licsync.domain.reconciliation import ReconciliationSummary

log = logging.getLogger(__name__)


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Reconcile and maintain licenses")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    sync = subparsers.add_parser("sync", help="Pull external licenses into the store")
    sync.add_argument(
        "--max-licenses",
        type=int,
        help="Stop after this many external licenses (capped by config)",
    )
    sync.add_argument(
        "--no-validate",
        action="store_true",
        help="Skip per-record schema validation",
    )
    sync.add_argument(
        "--dry-run",
        action="store_true",
        help="Classify records without writing anything",
    )
    sync.add_argument(
        "--appid",
        type=str,
        help="Only re-sync the license with this external application id",
    )
    sync.add_argument(
        "--pending",
        action="store_true",
        help="Only re-sync licenses whose last sync is pending or failed",
    )
    sync.add_argument(
        "--limit",
        type=int,
        help="Maximum number of pending licenses to re-sync",
    )

    push = subparsers.add_parser("push", help="Push internal changes to the external API")
    push.add_argument(
        "--limit",
        type=int,
        help="Maximum number of licenses to push",
    )

    lifecycle = subparsers.add_parser(
        "lifecycle",
        help="Run grace backfill, renewal reminders and auto-suspension",
    )
    lifecycle.add_argument(
        "--attention",
        action="store_true",
        help="Only list licenses that are expiring soon or due for suspension",
    )
    lifecycle.add_argument(
        "--threshold-days",
        type=int,
        help="Expiring-soon window in days (defaults to config)",
    )

    extend = subparsers.add_parser("extend", help="Move a license's expiry date")
    extend.add_argument("license_id", type=str, help="Internal license id")
    extend.add_argument(
        "--expires-at",
        type=str,
        required=True,
        help="New ISO-8601 expiry timestamp (UTC when no offset is given)",
    )
    extend.add_argument("--actor", type=str, help="Who requested the change")
    extend.add_argument("--reason", type=str, help="Free-text reason for the history log")

    renew = subparsers.add_parser("renew", help="Renew a license by one term")
    renew.add_argument("license_id", type=str, help="Internal license id")
    renew.add_argument(
        "--expires-at",
        type=str,
        help="Explicit ISO-8601 expiry instead of one term from the current expiry",
    )
    renew.add_argument("--actor", type=str, help="Who requested the renewal")

    reactivate = subparsers.add_parser("reactivate", help="Reactivate a suspended license")
    reactivate.add_argument("license_id", type=str, help="Internal license id")
    reactivate.add_argument("--actor", type=str, help="Who requested the reactivation")
    reactivate.add_argument("--reason", type=str, help="Free-text reason for the history log")

    subparsers.add_parser("health", help="Check the external license API")

    status = subparsers.add_parser("status", help="Show sync status counts")
    status.add_argument(
        "--skip-health",
        action="store_true",
        help="Do not call the external API",
    )

    return parser.parse_args(list(argv))


def _parse_iso_datetime(value: str) -> datetime:
    try:
        normalized = value.strip()
        if normalized.endswith("Z"):
            normalized = normalized[:-1] + "+00:00"
        dt = datetime.fromisoformat(normalized)
    except ValueError as exc:
        raise ValueError(f"Invalid ISO timestamp: {value}") from exc
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def _parse_uuid(value: str) -> UUID:
    try:
        return UUID(value)
    except ValueError as exc:
        raise ValueError(f"Invalid UUID: {value}") from exc


def _validate(args: argparse.Namespace) -> None:
    if args.command == "sync":
        if args.appid and args.pending:
            raise ValueError("--appid and --pending are mutually exclusive")
        if args.max_licenses is not None and args.max_licenses < 1:
            raise ValueError("--max-licenses must be positive")
    if getattr(args, "limit", None) is not None and args.limit < 1:
        raise ValueError("--limit must be positive")
    if args.command in {"extend", "renew", "reactivate"}:
        args.license_id = _parse_uuid(args.license_id)
    if args.command in {"extend", "renew"} and args.expires_at:
        args.expires_at = _parse_iso_datetime(args.expires_at)


def _log_reconciliation(label: str, summary: ReconciliationSummary) -> None:
    log.info(
        "%s: total=%s, created=%s, updated=%s, unchanged=%s, failed=%s",
        label,
        summary.total,
        summary.created,
        summary.updated,
        summary.unchanged,
        summary.failed,
    )
    for error in summary.errors[:10]:
        log.warning("  #%s %s: %s", error.index, error.identifier, error.message)


def _run_sync(args: argparse.Namespace) -> int:
    if args.appid:
        _log_reconciliation("Single license sync", sync_single_license(args.appid))
        return 0
    if args.pending:
        _log_reconciliation("Pending license sync", sync_pending_licenses(limit=args.limit))
        return 0
    result = sync_external_licenses(
        max_licenses=args.max_licenses,
        validate=not args.no_validate,
        dry_run=args.dry_run,
    )
    if not result.success:
        log.error("Sync aborted: %s", result.error)
        return 1
    _log_reconciliation("Dry run" if args.dry_run else "Sync", result.reconciliation)
    return 0


def _run_lifecycle(args: argparse.Namespace) -> int:
    if args.attention:
        report = licenses_requiring_attention(threshold_days=args.threshold_days)
        for license in report.expiring_soon:
            log.info("expiring  %s  %s  %s", license.key, license.expires_at, license.dba)
        for license in report.suspension_eligible:
            log.info("suspend   %s  %s  %s", license.key, license.grace_period_end, license.dba)
        return 0
    run_lifecycle()
    return 0


def _dispatch(args: argparse.Namespace) -> int:
    if args.command == "sync":
        return _run_sync(args)
    if args.command == "push":
        summary = push_internal_licenses(limit=args.limit)
        log.info(
            "Push: processed=%s, updated=%s, failed=%s, skipped=%s",
            summary.processed,
            summary.updated,
            summary.failed,
            summary.skipped,
        )
        return 0
    if args.command == "lifecycle":
        return _run_lifecycle(args)
    if args.command == "extend":
        license = extend_license(
            args.license_id,
            args.expires_at,
            actor=args.actor,
            reason=args.reason,
        )
        log.info("License %s now expires %s", license.key, license.expires_at)
        return 0
    if args.command == "renew":
        license = renew_license(args.license_id, args.expires_at, actor=args.actor)
        log.info("License %s renewed until %s", license.key, license.expires_at)
        return 0
    if args.command == "reactivate":
        license = reactivate_license(args.license_id, actor=args.actor, reason=args.reason)
        log.info("License %s is %s", license.key, license.status)
        return 0
    if args.command == "health":
        return 0 if check_external_health().healthy else 1
    if args.command == "status":
        report = get_sync_status(include_health=not args.skip_health)
        log.info(
            "Licenses: %s total, %s",
            report.total,
            ", ".join(f"{status}={count}" for status, count in report.counts.items()),
        )
        log.info("Last external sync: %s", report.last_sync or "never")
        return 0
    raise ValueError(f"Unsupported command: {args.command}")


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    try:
        parsed_args = _parse_args(args_list)
        configure_logging(level=logging.DEBUG if parsed_args.verbose else logging.INFO)
        _validate(parsed_args)
    except ValueError:
        log.exception("CLI validation error")
        sys.exit(2)

    try:
        exit_code = _dispatch(parsed_args)
    except Exception:
        log.exception("Fatal error during %s", parsed_args.command)
        sys.exit(1)
    if exit_code:
        sys.exit(exit_code)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


def run() -> None:
    load_dotenv()
    signal(SIGINT, sigint_handler)
    main()


if __name__ == "__main__":
    run()
