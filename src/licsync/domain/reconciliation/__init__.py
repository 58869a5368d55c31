"""Reconciliation of the external license set with the internal store.

Flow per external record:
1) match against internal licenses by appid, then email, then countid
2) create a new license when nothing matches
3) otherwise merge only the fields the external record supplied
4) stamp the sync envelope
"""

from __future__ import annotations

from .engine import (
    ReconcileOutcome,
    ReconciliationEngine,
    ReconciliationSummary,
    reconcile_external_licenses,
)
from .matcher import MatchResult, MatchStrategy, default_strategies, match_external
from .merge import apply_external_changes, external_changes, new_license_from_external
from .push import PushSummary, push_internal_changes
from .refresh import sync_pending_licenses, sync_single_license

__all__ = [
    "MatchResult",
    "MatchStrategy",
    "PushSummary",
    "ReconcileOutcome",
    "ReconciliationEngine",
    "ReconciliationSummary",
    "apply_external_changes",
    "default_strategies",
    "external_changes",
    "match_external",
    "new_license_from_external",
    "push_internal_changes",
    "reconcile_external_licenses",
    "sync_pending_licenses",
    "sync_single_license",
]
