"""
Edit event processor.
Single writer for the grid: every edit, recalculation, repair and bulk approval runs here under the process lock.

Flow per edit: Idle -> LockAcquired -> Snapshot -> Process -> Write -> (MetadataRefresh) -> Idle
"""

import copy
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from . import config
from .approval import ApprovalActionProcessor, bulk_approve
from .bundles import GAP_DETECTED, MISMATCH, BundleValidator
from .calculations import compute_derived
from .config import ColumnMap, SOURCED_FIELDS
from .corrections import CorrectionResult, apply_bundle_correction, dissolve_bundle, fix_bundle_gaps
from .errors import BundleCorrectionError
from .metadata import BundleMetadataIndex
from .notifications import BUSY_MESSAGE, ActivityLog, Notifier, RecordingNotifier
from .numeric import cell_text, parse_numeric
from .recalculation import FullRecalculationPass, RecalculationSummary
from .schema import (
    PASTE_RESET_FIELDS,
    ApproverAction,
    BundleValidationResult,
    CellEdit,
    OfferRow,
    ProcessingResult,
    RangeEdit,
)
from .settings_cache import ConfigurationCache
from .status_logic import StatusOptions, next_status
from .store import TabularStore
from .locking import ProcessLock, get_process_lock
from ..util.logging import logger

EditEvent = Union[CellEdit, RangeEdit]


class EditEventProcessor:
    """Composes normalizer, calculations, status engine and bundle checks under one lock."""

    def __init__(self, store: TabularStore, columns: ColumnMap = None, lock: ProcessLock = None,
                 settings: ConfigurationCache = None, notifier: Notifier = None,
                 activity: ActivityLog = None, approvals: ApprovalActionProcessor = None,
                 data_start_row: int = None, lock_timeout_ms: int = None,
                 enforce_bundle_integrity: bool = None,
                 clock: Callable[[], datetime] = datetime.now):
        self.store = store
        self.columns = columns or config.resolve_columns()
        self.lock = lock or get_process_lock()
        self.settings = settings or ConfigurationCache(store)
        self.notifier = notifier or RecordingNotifier()
        self.activity = activity or ActivityLog()
        self.approvals = approvals or ApprovalActionProcessor()
        self.data_start_row = config.get_data_start_row() if data_start_row is None else data_start_row
        self.lock_timeout_ms = config.get_lock_timeout_ms() if lock_timeout_ms is None else lock_timeout_ms
        self.enforce_bundle_integrity = (config.is_bundle_integrity_enforced()
                                         if enforce_bundle_integrity is None else enforce_bundle_integrity)
        self.clock = clock

        self.index = BundleMetadataIndex(store)
        self.validator = BundleValidator(store, self.columns, self.index, self.data_start_row)
        self.recalculation = FullRecalculationPass(store, self.validator, self.index, self.settings, self.activity)

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def handle_edit(self, event: EditEvent, before_values: List[List[Any]] = None,
                    user: str = None) -> ProcessingResult:
        """Process one edit or paste event to completion, or not at all."""
        if isinstance(event, CellEdit) and self.settings.is_settings_cell(event.row, event.col):
            return self._handle_settings_edit(event)

        if event.row_end < self.data_start_row or event.col_start > self.columns.width:
            logger.debug(f"Edit outside data region ignored: rows {event.row_start}-{event.row_end}")
            return ProcessingResult(outcome="ignored")

        kind = "paste" if event.is_bulk else "cell"
        logger.log_edit_event(kind, event.row_start, event.row_end, event.col_start, event.col_end)

        return self._run_locked(f"edit.{kind}",
                                lambda: self._process_edit(event, before_values, user or config.DEFAULT_APPROVER))

    def recalculate_all(self, refresh_metadata: bool = False) -> ProcessingResult:
        """Full recalculation over the data region."""
        return self._run_locked("recalculate",
                                lambda: self._summary_result(self.recalculation.run(refresh_metadata=refresh_metadata)))

    def repair(self) -> ProcessingResult:
        """Health check, full recalculation and metadata rebuild in one pass."""
        return self._run_locked("repair",
                                lambda: self._summary_result(
                                    self.recalculation.run(refresh_metadata=True, health_check=True)))

    def approve_all_pending(self, approver: str = None) -> ProcessingResult:
        """Approve every Pending and Revised by AE row in one batch."""
        return self._run_locked("approve_all",
                                lambda: self._approve_all(approver or config.DEFAULT_APPROVER))

    def apply_bundle_correction(self, bundle_id: Any, term: Any, quantity: Any) -> ProcessingResult:
        """Apply a prompt's quantity/term to a bundle, then recalculate everything."""
        return self._run_correction(
            "bundle_correction", bundle_id,
            lambda: apply_bundle_correction(self.store, self.validator, bundle_id, term, quantity))

    def fix_bundle_gaps(self, bundle_id: Any) -> ProcessingResult:
        """Regroup a split bundle under its first member, then recalculate everything."""
        return self._run_correction(
            "bundle_fix_gaps", bundle_id,
            lambda: fix_bundle_gaps(self.store, self.validator, bundle_id),
            success_message=f"Bundle #{cell_text(bundle_id)} has been re-ordered.")

    def dissolve_bundle(self, bundle_id: Any) -> ProcessingResult:
        """Clear a bundle's id from all of its rows, then recalculate everything."""
        return self._run_correction(
            "bundle_dissolve", bundle_id,
            lambda: dissolve_bundle(self.store, self.validator, bundle_id),
            success_message=f"Bundle #{cell_text(bundle_id)} has been dissolved.")

    def validate_bundle(self, bundle_id: Any) -> BundleValidationResult:
        """Read-only bundle check, resolved through the index when possible."""
        bundle_range = self.validator.find_bundle_range(bundle_id)
        hint_row = bundle_range[0] if bundle_range else None
        return self.validator.validate(bundle_id, hint_row=hint_row)

    def read_rows(self) -> List[OfferRow]:
        return self.validator.read_data_rows()

    # ------------------------------------------------------------------
    # Lock handling
    # ------------------------------------------------------------------

    def _run_locked(self, operation: str, work: Callable[[], ProcessingResult]) -> ProcessingResult:
        if not self.lock.acquire(self.lock_timeout_ms):
            self._notify(BUSY_MESSAGE, "Busy")
            logger.log_operation(operation, "busy")
            return ProcessingResult(outcome="busy", advisories=[BUSY_MESSAGE])

        try:
            result = work()
            logger.log_operation(operation, result.outcome, {"rows_written": len(result.rows_written)})
            return result
        except Exception as e:
            logger.error(f"{operation} failed: {e}")
            message = f"An unexpected error occurred while processing the edit: {e}"
            self._notify(message, "Error")
            return ProcessingResult(outcome="failed", error_message=str(e), advisories=[message])
        finally:
            self.lock.release()

    def _run_correction(self, operation: str, bundle_id: Any, apply: Callable[[], CorrectionResult],
                        success_message: str = None) -> ProcessingResult:
        """Unknown bundles raise before the lock is taken; everything else runs locked."""
        if self.validator.find_bundle_range(bundle_id) is None:
            bundle_id = cell_text(bundle_id)
            raise BundleCorrectionError(bundle_id, f"Could not find any items for bundle #{bundle_id}.")

        def correct():
            correction = apply()
            result = self._summary_result(self.recalculation.run(refresh_metadata=True))
            result.details["correction"] = {
                "bundle_id": correction.bundle_id,
                "rows_updated": correction.rows_updated,
            }
            if success_message:
                self._notify(success_message, "Bundle Corrected")
                result.advisories.append(success_message)
            return result

        return self._run_locked(operation, correct)

    def _notify(self, message: str, title: str = "") -> None:
        """Best-effort advisory; a broken notifier never fails the edit."""
        try:
            self.notifier.advisory(message, title)
        except Exception as e:
            logger.error(f"Notifier failed: {e}")

    # ------------------------------------------------------------------
    # Settings fast path
    # ------------------------------------------------------------------

    def _handle_settings_edit(self, event: CellEdit) -> ProcessingResult:
        self.settings.invalidate()
        if not self.settings.is_deal_flag_cell(event.row, event.col):
            return ProcessingResult(outcome="settings")

        logger.info("Deal flag changed; triggering full recalculation")
        result = self.recalculate_all(refresh_metadata=True)
        if result.outcome == "processed":
            result.outcome = "settings"
        return result

    # ------------------------------------------------------------------
    # Edit path
    # ------------------------------------------------------------------

    def _process_edit(self, event: EditEvent, before_values: Optional[List[List[Any]]],
                      user: str) -> ProcessingResult:
        result = ProcessingResult(outcome="processed")
        row_start = max(event.row_start, self.data_start_row)
        row_end = event.row_end
        n_rows = row_end - row_start + 1
        width = self.columns.width

        # Snapshot
        pre_flush = self.store.read_range(row_start, 1, n_rows, width)
        if before_values is not None:
            before_grid = before_values[-n_rows:]
        elif isinstance(event, CellEdit):
            before_grid = copy.deepcopy(pre_flush)
            if event.col <= width:
                before_grid[0][event.col - 1] = "" if event.old_value is None else event.old_value
        else:
            before_grid = pre_flush

        self.store.flush()
        after_grid = self.store.read_range(row_start, 1, n_rows, width)

        before_rows = [OfferRow.from_values(row_start + i, values, self.columns) for i, values in enumerate(before_grid)]
        rows = [OfferRow.from_values(row_start + i, values, self.columns) for i, values in enumerate(after_grid)]

        # Process
        settings = self.settings.get()
        bundle_checks = self._validate_bundles({row.bundle_key for row in rows if row.bundle_key}, rows)
        broken = frozenset(bundle_id for bundle_id, check in bundle_checks.items() if not check.valid)
        options = StatusOptions(broken_bundle_ids=broken, paste_reset=event.is_bulk)
        next_index = None
        now = self.clock()

        for before, row in zip(before_rows, rows):
            self._sanitize(event, before, row)

            if row.has_model and not row.text("index"):
                if next_index is None:
                    next_index = self._next_available_index()
                row.index = next_index
                next_index += 1
            if row.has_model and not row.text("approver_action"):
                row.approver_action = ApproverAction.CHOOSE.value

            compute_derived(row).apply(row)

            if self._is_approval_action(event):
                self._apply_approval(event, before, row, bundle_checks, user, now, result)
                continue

            change = next_status(row, before, settings, options)
            if change.changed:
                change.apply(row)
                compute_derived(row).apply(row)
                if before.text("status") != row.text("status"):
                    self._record_transition(before, row, change.rule, result)

        # Write
        self.store.write_range(row_start, 1, [row.to_values(self.columns) for row in rows])
        result.rows_written = [row.row_number for row in rows]

        # Metadata refresh
        if self.enforce_bundle_integrity and self._touches_bundle_integrity(event):
            affected = self._affected_bundle_ids(event, before_rows, rows)
            self._refresh_bundles(affected, rows, settings, result)

        return result

    def _sanitize(self, event: EditEvent, before: OfferRow, row: OfferRow) -> None:
        """Revert protected edits and clear fields that depend on what changed."""
        wipe_sourced = False

        if isinstance(event, CellEdit):
            if self.columns.is_protected(event.col):
                name = self.columns.name_for(event.col)
                row.set(name, "" if event.old_value is None else event.old_value)
                logger.info(f"Row {row.row_number}: edit on protected column '{name}' reverted")

            sku_changed = row.text("sku") != before.text("sku")
            model_changed = row.text("model") != before.text("model")
            wipe_sourced = sku_changed != model_changed
        else:
            for name in PASTE_RESET_FIELDS:
                row.set(name, "")
            row.approver_action = ApproverAction.CHOOSE.value
            wipe_sourced = event.covers(self.columns.sku) != event.covers(self.columns.model)

        if wipe_sourced:
            logger.debug(f"Row {row.row_number}: SKU/model desynchronized, clearing sourced fields")
            for name in SOURCED_FIELDS:
                row.set(name, "")

    def _is_approval_action(self, event: EditEvent) -> bool:
        if not isinstance(event, CellEdit) or event.col != self.columns.approver_action:
            return False
        action = ApproverAction.parse(event.new_value)
        return action is not None and action != ApproverAction.CHOOSE

    def _apply_approval(self, event: CellEdit, before: OfferRow, row: OfferRow,
                        bundle_checks: Dict[str, BundleValidationResult], user: str,
                        now: datetime, result: ProcessingResult) -> None:
        check = bundle_checks.get(row.bundle_key)
        outcome = self.approvals.process(
            row,
            event.new_value,
            previous_action=event.old_value,
            bundle_valid=check is None or check.valid,
            approver=user,
            timestamp=now,
        )
        outcome.apply(row)

        if outcome.success:
            compute_derived(row).apply(row)
            self._record_transition(before, row, "approval", result)
        else:
            self._notify(outcome.reason, "Action Blocked")
            result.advisories.append(outcome.reason)

    def _record_transition(self, before: OfferRow, row: OfferRow, rule: str, result: ProcessingResult) -> None:
        old_status, new_status = before.text("status"), row.text("status")
        result.transitions.append({"row": row.row_number, "from": old_status, "to": new_status, "rule": rule})
        logger.log_status_transition(row.row_number, old_status, new_status)
        self.activity.record_transition(row.row_number, old_status, new_status, before, row)

    def _next_available_index(self) -> int:
        last = self.store.last_row()
        if last < self.data_start_row:
            return 1
        column = self.store.read_range(self.data_start_row, self.columns.index, last - self.data_start_row + 1, 1)
        highest = max((parse_numeric(values[0]) for values in column), default=0)
        return int(highest) + 1

    # ------------------------------------------------------------------
    # Bundle integrity
    # ------------------------------------------------------------------

    def _validate_bundles(self, bundle_ids: Iterable[str], rows: List[OfferRow]) -> Dict[str, BundleValidationResult]:
        checks = {}
        for bundle_id in sorted(bundle_ids):
            hint_row = next((row.row_number for row in rows if row.bundle_key == bundle_id), None)
            checks[bundle_id] = self.validator.validate(bundle_id, hint_row=hint_row)
        return checks

    def _touches_bundle_integrity(self, event: EditEvent) -> bool:
        integrity_cols = (self.columns.bundle_id, self.columns.quantity, self.columns.term)
        if isinstance(event, CellEdit):
            return event.col in integrity_cols
        return any(event.covers(col) for col in integrity_cols)

    def _affected_bundle_ids(self, event: EditEvent, before_rows: List[OfferRow], rows: List[OfferRow]) -> Set[str]:
        affected = set()
        if isinstance(event, CellEdit) and event.col == self.columns.bundle_id:
            affected.update({cell_text(event.new_value), cell_text(event.old_value)})
        for row in before_rows + rows:
            affected.add(row.bundle_key)
        affected.discard("")
        return affected

    def _refresh_bundles(self, bundle_ids: Set[str], edited_rows: List[OfferRow],
                         settings, result: ProcessingResult) -> None:
        """Clear touched index ranges, re-validate, and reindex or force Draft."""
        edited_numbers = {row.row_number for row in edited_rows}
        bundle_ids = set(bundle_ids)
        for row in edited_rows:
            entry = self.index.get_entry(row.row_number)
            if entry is not None:
                # The indexed range still names the bundle a row was pasted out of
                bundle_ids.add(entry.bundle_id)
                self.index.clear_bundle(entry)

        for bundle_id in sorted(bundle_ids):
            check = self.validator.validate(bundle_id)
            for member in check.members:
                entry = self.index.get_entry(member)
                if entry is not None:
                    self.index.clear_bundle(entry)
            result.bundle_results.append(check)

            if check.valid:
                if len(check.members) > 1:
                    self.index.set_bundle(bundle_id, check.start_row, check.end_row)
                    self._reevaluate_members(check, settings, result, skip_rows=edited_numbers)
                continue

            self._reevaluate_members(check, settings, result)
            message = f"Bundle #{bundle_id} is invalid: {check.message} Its items were set to Draft."
            self._notify(message, "Bundle Invalid")
            result.advisories.append(message)
            self._prompt_correction(check, edited_rows)

    def _reevaluate_members(self, check: BundleValidationResult, settings, result: ProcessingResult,
                            skip_rows: Set[int] = frozenset()) -> None:
        """
        Re-run the status engine on every member of a bundle.

        Members of a broken bundle are forced to Draft. Members of a bundle that
        is valid again leave a forced Draft once they are complete.
        """
        start_row, end_row = check.start_row, check.end_row
        grid = self.store.read_range(start_row, 1, end_row - start_row + 1, self.columns.width)
        rows = [OfferRow.from_values(start_row + i, values, self.columns) for i, values in enumerate(grid)]
        broken = frozenset() if check.valid else frozenset({check.bundle_id})
        options = StatusOptions(broken_bundle_ids=broken)

        changed = False
        for row in rows:
            if row.bundle_key != check.bundle_id or row.row_number in skip_rows:
                continue
            before = row.copy()
            change = next_status(row, before, settings, options)
            if change.changed:
                change.apply(row)
                compute_derived(row).apply(row)
                self._record_transition(before, row, change.rule, result)
                changed = True

        if changed:
            self.store.write_range(start_row, 1, [row.to_values(self.columns) for row in rows])

    def _prompt_correction(self, check: BundleValidationResult, edited_rows: List[OfferRow]) -> None:
        try:
            if check.code == GAP_DETECTED:
                self.notifier.prompt_bundle_gap(check.bundle_id)
            elif check.code == MISMATCH:
                edited = next((row for row in edited_rows if row.bundle_key == check.bundle_id), None)
                row_number = edited.row_number if edited else check.start_row
                current = {
                    "quantity": edited.text("quantity") if edited else "",
                    "term": edited.text("term") if edited else "",
                }
                self.notifier.prompt_bundle_mismatch(row_number, check.bundle_id, current, check.expected)
        except Exception as e:
            logger.error(f"Bundle correction prompt failed for {check.bundle_id}: {e}")

    # ------------------------------------------------------------------
    # Batch writers
    # ------------------------------------------------------------------

    def _approve_all(self, approver: str) -> ProcessingResult:
        result = ProcessingResult(outcome="processed")
        rows = self.validator.read_data_rows()
        if not rows:
            return result

        originals = [row.copy() for row in rows]
        broken = frozenset(error.bundle_id for error in self.validator.find_all_bundle_errors(rows))
        transitions = bulk_approve(rows, approver, self.clock(), broken)
        approved_rows = {t["row"] for t in transitions}

        for row, original in zip(rows, originals):
            if row.row_number not in approved_rows:
                continue
            compute_derived(row).apply(row)
            self._record_transition(original, row, "bulk_approval", result)

        if approved_rows:
            self.store.write_range(rows[0].row_number, 1, [row.to_values(self.columns) for row in rows])
            result.rows_written = sorted(approved_rows)
        else:
            message = "No items with status 'Pending Approval' or 'Revised by AE' were found to process."
            self._notify(message, "Bulk Approval")
            result.advisories.append(message)
        return result

    @staticmethod
    def _summary_result(summary: RecalculationSummary) -> ProcessingResult:
        return ProcessingResult(
            outcome="processed",
            rows_written=summary.rows_written,
            transitions=summary.transitions,
            details={
                "rows_scanned": summary.rows_scanned,
                "rows_changed": summary.rows_changed,
                "indices_assigned": summary.indices_assigned,
                "status_changes": summary.status_changes,
                "health_fixes": summary.health_fixes,
                "bundles_indexed": summary.bundles_indexed,
                "bundle_errors": [error.to_dict() for error in summary.bundle_errors],
            },
        )
