"""
Edit event processor tests - the full edit lifecycle against an in-memory grid.
"""

import threading
from unittest.mock import Mock

import pytest

from offer_grid.core.errors import BundleCorrectionError
from offer_grid.core.notifications import BUSY_MESSAGE
from offer_grid.core.schema import CellEdit, RangeEdit, Status, ApproverAction

from conftest import COMPLETE_ROW


def pending(**fields):
    """A complete row already processed into Pending Approval."""
    values = dict(COMPLETE_ROW)
    values.update({
        "index": 1,
        "approver_action": ApproverAction.CHOOSE.value,
        "rate_ratio": 1.2,
        "contract_value": 12000.0,
        "status": Status.PENDING.value,
    })
    values.update(fields)
    return values


def approved(**fields):
    values = pending(
        status=Status.APPROVED_ORIGINAL.value,
        approver_action=ApproverAction.APPROVE_ORIGINAL.value,
        finance_price=100,
        approved_by="finance@example.com",
        approval_date="2024-01-15T10:00:00",
    )
    values.update(fields)
    return values


def user_edit(processor, store, row, col, value, user=None):
    """Land a value in the store the way the host does, then report the edit."""
    old = store.get_cell(row, col)
    store.set_cell(row, col, value)
    return processor.handle_edit(CellEdit(row=row, col=col, new_value=value, old_value=old), user=user)


class TestSingleCellEdit:
    """Test the normalize, compute and status path for one cell."""

    def test_new_row_gets_index_derived_values_and_pending(self, processor, store, columns, write_row, read_row):
        values = dict(COMPLETE_ROW)
        model = values.pop("model")
        write_row(2, **values)

        result = user_edit(processor, store, 2, columns.model, model)

        row = read_row(2)
        assert result.outcome == "processed"
        assert result.rows_written == [2]
        assert row.index == 1
        assert row.approver_action == ApproverAction.CHOOSE.value
        assert row.rate_ratio == pytest.approx(1.2)
        assert row.contract_value == pytest.approx(12000)
        assert row.status == Status.PENDING.value
        assert result.transitions == [{"row": 2, "from": "", "to": Status.PENDING.value, "rule": "complete"}]

    def test_index_continues_after_highest(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending(index=7))
        write_row(3, sku="SKU-2")

        user_edit(processor, store, 3, columns.model, "Dock")

        assert read_row(3).index == 8

    def test_incomplete_row_is_draft(self, processor, store, columns, read_row):
        user_edit(processor, store, 2, columns.model, "Dock")

        row = read_row(2)
        assert row.status == Status.DRAFT.value
        assert row.rate_ratio == ""
        assert row.contract_value == ""

    def test_clearing_model_clears_status(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending())

        user_edit(processor, store, 2, columns.model, "")

        assert read_row(2).status == ""

    def test_missing_cost_basis(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending())

        user_edit(processor, store, 2, columns.sourcing_cost, "")

        row = read_row(2)
        assert row.rate_ratio == "#NO_COST_BASIS"
        assert row.status == Status.DRAFT.value

    def test_counter_price_drives_derived_values(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending())

        user_edit(processor, store, 2, columns.counter_price, 90)

        row = read_row(2)
        assert row.rate_ratio == pytest.approx(1.08)
        assert row.contract_value == pytest.approx(10800)

    @pytest.mark.parametrize("field", ["status", "rate_ratio", "approved_by"])
    def test_protected_column_reverted(self, processor, store, columns, write_row, read_row, field):
        write_row(2, **pending())
        original = read_row(2)

        user_edit(processor, store, 2, getattr(columns, field), "Approved (New Price)")

        assert read_row(2).get(field) == original.get(field)

    def test_sku_change_clears_sourced_fields(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending(ep_capex_raw=50, tk_capex_raw=60, rental_target_raw=7, rental_limit_raw=8))

        user_edit(processor, store, 2, columns.sku, "SKU-9")

        row = read_row(2)
        assert (row.ep_capex_raw, row.tk_capex_raw, row.rental_target_raw, row.rental_limit_raw) == ("", "", "", "")

    def test_unrelated_edit_keeps_sourced_fields(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending(ep_capex_raw=50))

        user_edit(processor, store, 2, columns.quantity, 12)

        assert read_row(2).ep_capex_raw == 50


class TestFinalizedRows:
    """Test revisions of approved and rejected rows."""

    def test_price_edit_revises_and_clears_approval(self, processor, store, columns, write_row, read_row):
        write_row(2, **approved())

        result = user_edit(processor, store, 2, columns.ask_price, 120)

        row = read_row(2)
        assert row.status == Status.REVISED_BY_AE.value
        assert row.finance_price == ""
        assert row.approved_by == ""
        assert row.approval_date == ""
        assert row.approver_action == ApproverAction.CHOOSE.value
        assert row.rate_ratio == pytest.approx(1.44)
        assert result.transitions[0]["rule"] == "finalized_edited"

    def test_comment_edit_keeps_approval(self, processor, store, columns, write_row, read_row):
        write_row(2, **approved())

        user_edit(processor, store, 2, columns.approver_comment, "Confirmed with vendor")

        row = read_row(2)
        assert row.status == Status.APPROVED_ORIGINAL.value
        assert row.finance_price == 100

    def test_revised_row_resubmitted_on_next_edit(self, processor, store, columns, write_row, read_row):
        write_row(2, **approved())
        user_edit(processor, store, 2, columns.ask_price, 120)

        user_edit(processor, store, 2, columns.ask_price, 110)

        assert read_row(2).status == Status.PENDING.value

    def test_paste_over_finalized_row(self, processor, store, columns, write_row, read_row):
        write_row(2, **approved(approver_comment="ok", counter_price=95))

        result = processor.handle_edit(RangeEdit(row_start=2, row_end=2, col_start=columns.sku, col_end=columns.term))

        row = read_row(2)
        assert result.outcome == "processed"
        assert row.status == Status.REVISED_BY_AE.value
        assert row.finance_price == ""
        assert row.approver_comment == ""
        assert row.counter_price == ""


class TestPaste:
    """Test multi-row range edits."""

    def test_paste_resets_workflow_fields(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending(counter_price=90, approver_comment="cheaper?"))
        write_row(3, **pending(index=2, ep_capex_raw=40))

        result = processor.handle_edit(
            RangeEdit(row_start=2, row_end=3, col_start=columns.model, col_end=columns.term))

        assert result.rows_written == [2, 3]
        for row_number in (2, 3):
            row = read_row(row_number)
            assert row.counter_price == ""
            assert row.approver_comment == ""
            assert row.index != ""
            assert row.status == Status.PENDING.value
            assert row.contract_value == pytest.approx(12000)
        # Model pasted without SKU
        assert read_row(3).ep_capex_raw == ""

    def test_paste_covering_sku_and_model_keeps_sourced_fields(self, processor, columns, write_row, read_row):
        write_row(2, **pending(ep_capex_raw=40))

        processor.handle_edit(RangeEdit(row_start=2, row_end=2, col_start=columns.sku, col_end=columns.model))

        assert read_row(2).ep_capex_raw == 40

    def test_paste_keeping_status_records_no_transition(self, processor, columns, write_row, read_row):
        write_row(2, **pending())

        result = processor.handle_edit(
            RangeEdit(row_start=2, row_end=2, col_start=columns.sku, col_end=columns.model))

        assert read_row(2).status == Status.PENDING.value
        assert result.transitions == []
        assert processor.activity.entries == []

    def test_paste_applies_staged_values(self, processor, store, columns, write_row, read_row):
        """Values the host has not committed yet are flushed before the read."""
        write_row(2, **pending())
        store.stage_external_write(2, columns.quantity, 20)

        processor.handle_edit(RangeEdit(row_start=2, row_end=2, col_start=columns.quantity, col_end=columns.quantity))

        assert read_row(2).contract_value == pytest.approx(24000)

    def test_before_values_align_to_trailing_rows(self, processor, store, columns, write_row, read_row):
        write_row(2, **approved())
        approved_values = read_row(2).to_values(columns)
        store.set_cell(2, columns.ask_price, 120)

        processor.handle_edit(
            RangeEdit(row_start=2, row_end=2, col_start=columns.ask_price, col_end=columns.ask_price),
            before_values=[[""] * columns.width, approved_values],
        )

        assert read_row(2).status == Status.REVISED_BY_AE.value


class TestApprovalActions:
    """Test approver action edits."""

    def test_approve_original(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending())

        result = user_edit(processor, store, 2, columns.approver_action,
                           ApproverAction.APPROVE_ORIGINAL.value, user="finance@example.com")

        row = read_row(2)
        assert row.status == Status.APPROVED_ORIGINAL.value
        assert row.finance_price == 100
        assert row.approved_by == "finance@example.com"
        assert row.approval_date == "2024-03-01T09:30:00"
        assert result.transitions[0]["rule"] == "approval"

    def test_approve_new_without_counter_reverts_action(self, processor, store, columns, write_row,
                                                         read_row, notifier):
        write_row(2, **pending())

        result = user_edit(processor, store, 2, columns.approver_action, ApproverAction.APPROVE_NEW.value)

        row = read_row(2)
        assert row.approver_action == ApproverAction.CHOOSE.value
        assert row.status == Status.PENDING.value
        assert any("counter price" in message for message in result.advisories)
        assert any("counter price" in message for message in notifier.advisories())

    def test_reject_with_comment(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending(approver_comment="Over budget"))

        user_edit(processor, store, 2, columns.approver_action, ApproverAction.REJECT.value)

        row = read_row(2)
        assert row.status == Status.REJECTED.value
        assert row.finance_price == ""

    def test_draft_row_cannot_be_approved(self, processor, store, columns, write_row, read_row):
        write_row(2, sku="SKU-1", model="Dock", status=Status.DRAFT.value,
                  approver_action=ApproverAction.CHOOSE.value, index=1)

        result = user_edit(processor, store, 2, columns.approver_action, ApproverAction.APPROVE_ORIGINAL.value)

        assert read_row(2).status == Status.DRAFT.value
        assert any("cannot be processed" in message for message in result.advisories)


class TestBundleIntegrity:
    """Test bundle re-validation after edits."""

    def test_mismatch_forces_members_to_draft(self, processor, store, columns, write_row, read_row, notifier):
        write_row(2, **pending(bundle_id="101"))
        write_row(3, **pending(bundle_id="101", index=2))

        result = user_edit(processor, store, 3, columns.term, 24)

        assert read_row(2).status == Status.DRAFT.value
        assert read_row(3).status == Status.DRAFT.value
        assert any(t["row"] == 2 and t["to"] == Status.DRAFT.value for t in result.transitions)
        assert any("Bundle #101" in message for message in result.advisories)

        prompt = next(n for n in notifier.notifications if n.kind == "mismatch_prompt")
        assert prompt.details["row"] == 3
        assert prompt.details["current"] == {"quantity": "10", "term": "24"}
        assert prompt.details["expected"] == {"quantity": "10", "term": "12"}

    def test_fixing_mismatch_restores_members(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending(bundle_id="101"))
        write_row(3, **pending(bundle_id="101", index=2))
        user_edit(processor, store, 3, columns.term, 24)

        user_edit(processor, store, 3, columns.term, 12)

        assert read_row(2).status == Status.PENDING.value
        assert read_row(3).status == Status.PENDING.value
        assert processor.index.get_entry(2).bundle_id == "101"
        assert processor.index.get_entry(3).end_row == 3

    def test_gap_forces_draft_and_prompts(self, processor, store, columns, write_row, read_row, notifier):
        write_row(2, **pending(bundle_id="404"))
        write_row(3, **pending(bundle_id="404", index=2))
        write_row(4, **pending(index=3))
        write_row(5, **pending(index=4))

        user_edit(processor, store, 5, columns.bundle_id, "404")

        assert [read_row(r).status for r in (2, 3, 4, 5)] == [
            Status.DRAFT.value, Status.DRAFT.value, Status.PENDING.value, Status.DRAFT.value,
        ]
        assert any(n.kind == "gap_prompt" and n.details["bundle_id"] == "404" for n in notifier.notifications)

    def test_leaving_bundle_clears_index(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending(bundle_id="101"))
        write_row(3, **pending(bundle_id="101", index=2))
        processor.index.set_bundle("101", 2, 3)

        result = user_edit(processor, store, 3, columns.bundle_id, "")

        assert processor.index.get_entry(2) is None
        assert processor.index.get_entry(3) is None
        assert read_row(2).status == Status.PENDING.value
        assert read_row(3).status == Status.PENDING.value
        assert [check.valid for check in result.bundle_results] == [True]

    def test_paste_out_of_bundle_middle_breaks_remaining_members(self, processor, store, columns,
                                                                  write_row, read_row, notifier):
        """A paste carries no old values, so the indexed range names the bundle the row left."""
        write_row(2, **pending(bundle_id="101"))
        write_row(3, **pending(bundle_id="101", index=2))
        write_row(4, **pending(bundle_id="101", index=3))
        processor.index.set_bundle("101", 2, 4)
        store.set_cell(3, columns.bundle_id, "")

        result = processor.handle_edit(
            RangeEdit(row_start=3, row_end=3, col_start=columns.bundle_id, col_end=columns.model))

        assert read_row(2).status == Status.DRAFT.value
        assert read_row(4).status == Status.DRAFT.value
        assert read_row(3).status == Status.PENDING.value
        assert [check.code for check in result.bundle_results] == ["GAP_DETECTED"]
        assert any("Bundle #101" in message for message in result.advisories)
        assert any(n.kind == "gap_prompt" and n.details["bundle_id"] == "101" for n in notifier.notifications)

    def test_integrity_checks_can_be_disabled(self, processor, store, columns, write_row, read_row):
        processor.enforce_bundle_integrity = False
        write_row(2, **pending(bundle_id="101"))
        write_row(3, **pending(bundle_id="101", index=2))

        result = user_edit(processor, store, 3, columns.term, 24)

        assert read_row(3).status == Status.DRAFT.value
        assert read_row(2).status == Status.PENDING.value
        assert result.bundle_results == []

    def test_broken_bundle_blocks_approval(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending(bundle_id="101"))
        write_row(3, **pending(bundle_id="101", index=2, quantity=3))

        result = user_edit(processor, store, 2, columns.approver_action, ApproverAction.APPROVE_ORIGINAL.value)

        assert read_row(2).status == Status.PENDING.value
        assert any("Bundle #101" in message for message in result.advisories)


class TestLockingAndFailures:
    """Test contention and error containment."""

    def test_busy_when_lock_held(self, processor, store, columns, lock, write_row, notifier):
        write_row(2, **pending())
        store.set_cell(2, columns.ask_price, 150)
        before = store.snapshot()
        acquired, release = threading.Event(), threading.Event()

        def holder():
            lock.acquire(1000)
            acquired.set()
            release.wait(5)
            lock.release()

        worker = threading.Thread(target=holder)
        worker.start()
        acquired.wait(5)
        try:
            result = processor.handle_edit(CellEdit(row=2, col=columns.ask_price, new_value=150, old_value=100))
        finally:
            release.set()
            worker.join()

        assert result.outcome == "busy"
        assert result.advisories == [BUSY_MESSAGE]
        assert BUSY_MESSAGE in notifier.advisories()
        assert store.snapshot() == before

    def test_unexpected_error_is_contained(self, processor, store, columns, lock, write_row, notifier):
        write_row(2, **pending())
        processor.approvals = Mock()
        processor.approvals.process.side_effect = RuntimeError("boom")

        result = user_edit(processor, store, 2, columns.approver_action, ApproverAction.APPROVE_ORIGINAL.value)

        assert result.outcome == "failed"
        assert result.error_message == "boom"
        assert not lock.is_locked()
        assert any("boom" in message for message in notifier.advisories())

    def test_broken_notifier_does_not_fail_edit(self, processor, store, columns, write_row, read_row):
        write_row(2, **pending())
        processor.notifier = Mock()
        processor.notifier.advisory.side_effect = RuntimeError("no UI")

        result = user_edit(processor, store, 2, columns.approver_action, ApproverAction.APPROVE_NEW.value)

        assert result.outcome == "processed"
        assert read_row(2).approver_action == ApproverAction.CHOOSE.value

    def test_activity_log_records_transitions(self, processor, store, columns, write_row):
        write_row(2, **pending())

        user_edit(processor, store, 2, columns.ask_price, "")

        entry = processor.activity.entries[-1]
        assert entry.row_number == 2
        assert entry.old_status == Status.PENDING.value
        assert entry.new_status == Status.DRAFT.value


class TestRouting:
    """Test settings fast path and out-of-region edits."""

    def test_language_edit_only_invalidates(self, processor, store):
        store.set_cell(1, 9, "english")

        result = processor.handle_edit(CellEdit(row=1, col=9, new_value="english", old_value="german"))

        assert result.outcome == "settings"
        assert result.rows_written == []
        assert processor.settings.get().language == "english"

    def test_deal_flag_edit_recalculates(self, processor, store, write_row, read_row):
        write_row(2, **pending(rate_ratio="", contract_value=""))
        store.set_cell(1, 12, "yes")

        result = processor.handle_edit(CellEdit(row=1, col=12, new_value="yes", old_value=""))

        assert result.outcome == "settings"
        assert read_row(2).rate_ratio == pytest.approx(1.2)

    def test_header_edit_ignored(self, processor, store):
        result = processor.handle_edit(CellEdit(row=1, col=3, new_value="x", old_value=""))
        assert result.outcome == "ignored"
        assert store.write_count == 0

    def test_edit_right_of_data_region_ignored(self, processor, columns):
        result = processor.handle_edit(CellEdit(row=2, col=columns.width + 3, new_value="note"))
        assert result.outcome == "ignored"


class TestBatchOperations:
    """Test bulk approval and bundle correction."""

    def test_approve_all_pending(self, processor, write_row, read_row):
        write_row(2, **pending(counter_price=90))
        write_row(3, **pending(index=2, status=Status.REVISED_BY_AE.value))
        write_row(4, sku="SKU-3", model="Dock", index=3, status=Status.DRAFT.value)

        result = processor.approve_all_pending("finance@example.com")

        assert result.rows_written == [2, 3]
        assert read_row(2).status == Status.APPROVED_NEW.value
        assert read_row(2).finance_price == 90
        assert read_row(2).rate_ratio == pytest.approx(1.08)
        assert read_row(3).status == Status.APPROVED_ORIGINAL.value
        assert read_row(4).status == Status.DRAFT.value

    def test_approve_all_with_nothing_pending(self, processor, write_row, notifier):
        write_row(2, **approved())

        result = processor.approve_all_pending()

        assert result.rows_written == []
        assert "No items with status" in result.advisories[0]

    def test_bundle_correction(self, processor, write_row, read_row):
        write_row(2, **pending(bundle_id="101", status=Status.DRAFT.value))
        write_row(3, **pending(bundle_id="101", index=2, term=24, status=Status.DRAFT.value))

        result = processor.apply_bundle_correction("101", term=12, quantity=10)

        assert result.details["correction"]["rows_updated"] == [2, 3]
        assert read_row(3).term == 12
        assert read_row(2).status == Status.PENDING.value
        assert read_row(3).status == Status.PENDING.value
        assert processor.validate_bundle("101").valid

    def test_bundle_correction_unknown_bundle(self, processor):
        with pytest.raises(BundleCorrectionError):
            processor.apply_bundle_correction("999", term=12, quantity=1)

    def test_fix_bundle_gaps_regroups_members(self, processor, write_row, read_row, notifier):
        write_row(2, **pending(bundle_id="404", status=Status.DRAFT.value))
        write_row(3, **pending(bundle_id="404", index=2, status=Status.DRAFT.value))
        write_row(4, **pending(index=3, model="Dock"))
        write_row(5, **pending(bundle_id="404", index=4, status=Status.DRAFT.value))

        result = processor.fix_bundle_gaps("404")

        assert result.outcome == "processed"
        assert [read_row(r).bundle_id for r in (2, 3, 4, 5)] == ["404", "404", "404", ""]
        assert read_row(4).index == 4
        assert read_row(5).model == "Dock"
        assert read_row(5).index == 3
        assert [read_row(r).status for r in (2, 3, 4)] == [Status.PENDING.value] * 3
        assert processor.index.get_entry(2).end_row == 4
        assert processor.index.get_entry(5) is None
        assert processor.validate_bundle("404").valid
        assert "Bundle #404 has been re-ordered." in notifier.advisories()

    def test_fix_bundle_gaps_leaves_contiguous_bundle(self, processor, write_row):
        write_row(2, **pending(bundle_id="101"))
        write_row(3, **pending(bundle_id="101", index=2))

        result = processor.fix_bundle_gaps("101")

        assert result.details["correction"]["rows_updated"] == []

    def test_dissolve_bundle(self, processor, write_row, read_row, notifier):
        write_row(2, **pending(bundle_id="101", status=Status.DRAFT.value))
        write_row(3, **pending(bundle_id="101", index=2, quantity=3, status=Status.DRAFT.value))
        processor.index.set_bundle("101", 2, 3)

        result = processor.dissolve_bundle("101")

        assert result.details["correction"]["rows_updated"] == [2, 3]
        assert read_row(2).bundle_id == ""
        assert read_row(3).bundle_id == ""
        assert read_row(2).status == Status.PENDING.value
        assert read_row(3).status == Status.PENDING.value
        assert processor.index.get_entry(2) is None
        assert "Bundle #101 has been dissolved." in notifier.advisories()

    def test_dissolve_unknown_bundle(self, processor, store):
        with pytest.raises(BundleCorrectionError, match="Could not find any items for bundle #999"):
            processor.dissolve_bundle("999")
        assert store.write_count == 0
