"""
Full recalculation pass.
Batch analogue of the edit processor over the whole data region: one bulk read, one bulk write.
"""

import time
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional

from .approval import run_health_check
from .bundles import BundleValidator
from .calculations import compute_derived
from .metadata import BundleMetadataIndex
from .notifications import ActivityLog
from .numeric import parse_numeric
from .schema import ApproverAction, BundleError, OfferRow
from .settings_cache import ConfigurationCache
from .status_logic import StatusOptions, next_status
from .store import TabularStore
from ..util.logging import logger


@dataclass
class RecalculationSummary:
    """What a full pass changed."""
    rows_scanned: int = 0
    rows_changed: int = 0
    indices_assigned: int = 0
    status_changes: int = 0
    health_fixes: int = 0
    bundles_indexed: Optional[int] = None
    bundle_errors: List[BundleError] = field(default_factory=list)
    transitions: List[Dict[str, Any]] = field(default_factory=list)
    rows_written: List[int] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def next_available_index(rows: List[OfferRow]) -> int:
    """One past the highest index in use."""
    highest = max((parse_numeric(row.index) for row in rows), default=0)
    return int(highest) + 1


class FullRecalculationPass:
    """Re-derive every row. Callers hold the process lock."""

    def __init__(self, store: TabularStore, validator: BundleValidator,
                 index: BundleMetadataIndex = None, settings: ConfigurationCache = None,
                 activity: ActivityLog = None):
        self.store = store
        self.validator = validator
        self.columns = validator.columns
        self.index = index or validator.index
        self.settings = settings
        self.activity = activity

    def run(self, refresh_metadata: bool = False, health_check: bool = False) -> RecalculationSummary:
        start_time = time.time()
        summary = RecalculationSummary()

        rows = self.validator.read_data_rows()
        summary.rows_scanned = len(rows)
        if not rows:
            return summary

        originals = [row.copy() for row in rows]

        if health_check:
            fixes = run_health_check(rows)
            summary.health_fixes = len(fixes)

        # Status decisions compare against the health-checked state
        baselines = [row.copy() for row in rows]

        summary.bundle_errors = self.validator.find_all_bundle_errors(rows)
        options = StatusOptions(
            broken_bundle_ids=frozenset(error.bundle_id for error in summary.bundle_errors),
            force_revision_of_finalized_items=True,
        )
        settings = self.settings.get() if self.settings is not None else None
        next_index = next_available_index(rows)

        for row, baseline, original in zip(rows, baselines, originals):
            if row.has_model and not row.text("index"):
                row.index = next_index
                next_index += 1
                summary.indices_assigned += 1
            if row.has_model and not row.text("approver_action"):
                row.approver_action = ApproverAction.CHOOSE.value

            compute_derived(row).apply(row)

            change = next_status(row, baseline, settings, options)
            if change.changed:
                change.apply(row)
                compute_derived(row).apply(row)
                summary.status_changes += 1
                self._record(summary, original, row, change.rule)
            elif baseline.text("status") != original.text("status"):
                self._record(summary, original, row, "health_check")

            if row.to_values(self.columns) != original.to_values(self.columns):
                summary.rows_written.append(row.row_number)

        summary.rows_changed = len(summary.rows_written)
        if summary.rows_changed:
            self.store.write_range(rows[0].row_number, 1, [row.to_values(self.columns) for row in rows])

        if refresh_metadata:
            summary.bundles_indexed = self.index.rebuild(
                self.validator.valid_bundle_ranges(rows),
                rows[0].row_number,
                rows[-1].row_number,
            )

        logger.log_recalculation(summary.rows_scanned, summary.rows_changed,
                                 len(summary.bundle_errors), start_time, time.time())
        return summary

    def _record(self, summary: RecalculationSummary, before: OfferRow, after: OfferRow, rule: str) -> None:
        old_status, new_status = before.text("status"), after.text("status")
        summary.transitions.append({"row": after.row_number, "from": old_status, "to": new_status, "rule": rule})
        logger.log_status_transition(after.row_number, old_status, new_status)
        if self.activity is not None:
            self.activity.record_transition(after.row_number, old_status, new_status, before, after)
