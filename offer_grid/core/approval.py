"""
Approver action handling.
Validates an approver's selection against the row and returns the finalizing changeset.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, FrozenSet, List, Optional

from .calculations import has_rate_ratio
from .schema import (
    APPROVABLE_STATUSES,
    ApproverAction,
    OfferRow,
    Status,
)
from ..util.logging import logger, log_approval_decision


@dataclass
class ApprovalOutcome:
    """Result of one approver action."""
    success: bool
    action: str
    status: Optional[Status] = None
    changes: Dict[str, Any] = field(default_factory=dict)
    reason: str = ""
    revert_action: Any = None

    def apply(self, row: OfferRow) -> None:
        """Write the changeset on success, or restore the previous action on failure."""
        if self.success:
            for name, value in self.changes.items():
                row.set(name, value)
        else:
            row.approver_action = self.revert_action if self.revert_action is not None else ""


def format_timestamp(timestamp: datetime) -> str:
    return timestamp.isoformat(timespec="seconds")


class ApprovalActionProcessor:
    """Default approval action collaborator."""

    def process(self, row: OfferRow, action: Any, previous_action: Any = "",
                bundle_valid: bool = True, approver: str = "",
                timestamp: datetime = None) -> ApprovalOutcome:
        """
        Validate an approver's selection and build the finalizing changeset.

        Preconditions: the row's bundle is valid, its status is Pending or
        Revised by AE, approve actions need a positive rate ratio, Approve
        Original needs an ask price, Approve New needs a counter price and
        Reject needs a comment. Failure reverts the action field.
        """
        selected = ApproverAction.parse(action)
        action_text = selected.value if selected is not None else str(action or "")
        timestamp = timestamp or datetime.now()
        row_number = row.row_number

        def fail(reason: str) -> ApprovalOutcome:
            log_approval_decision(row_number, action_text, approver, False, reason)
            return ApprovalOutcome(success=False, action=action_text, reason=reason,
                                   revert_action=previous_action)

        if selected is None or selected == ApproverAction.CHOOSE:
            return fail(f"Row {row_number}: no approver action selected.")

        if not bundle_valid:
            return fail(f"Action blocked for row {row_number}. Bundle #{row.bundle_key} has an error "
                        f"that must be fixed first.")

        current = row.status_enum
        if current not in APPROVABLE_STATUSES:
            return fail(f"Row {row_number} cannot be processed because its status is '{row.text('status')}'.")

        changes: Dict[str, Any] = {}
        if selected in (ApproverAction.APPROVE_ORIGINAL, ApproverAction.APPROVE_NEW):
            if not has_rate_ratio(row.rate_ratio):
                return fail(f"Row {row_number}: Cannot approve with an invalid or missing rate ratio.")

            if selected == ApproverAction.APPROVE_ORIGINAL:
                price = row.number("ask_price")
                if price <= 0:
                    return fail(f"Row {row_number}: Cannot 'Approve Original Price' without a valid ask price.")
                new_status = Status.APPROVED_ORIGINAL
            else:
                price = row.number("counter_price")
                if price <= 0:
                    return fail(f"Row {row_number}: Cannot 'Approve New Price' without a valid counter price.")
                new_status = Status.APPROVED_NEW
            changes["finance_price"] = price
        else:
            if not row.text("approver_comment"):
                return fail(f"Row {row_number}: Cannot 'Reject with Comment' without adding a comment.")
            new_status = Status.REJECTED

        changes.update({
            "status": new_status.value,
            "approved_by": approver,
            "approval_date": format_timestamp(timestamp),
        })

        log_approval_decision(row_number, action_text, approver, True)
        return ApprovalOutcome(success=True, action=action_text, status=new_status, changes=changes)


def bulk_approve(rows: List[OfferRow], approver: str, timestamp: datetime = None,
                 broken_bundle_ids: FrozenSet[str] = frozenset()) -> List[Dict[str, Any]]:
    """
    Approve every Pending or Revised by AE row in place.

    A positive counter price approves at the new price, otherwise at the ask
    price. Rows in a broken bundle are skipped. Returns one transition per row.
    """
    timestamp = timestamp or datetime.now()
    transitions = []
    for row in rows:
        initial = row.status_enum
        if initial not in APPROVABLE_STATUSES:
            continue
        if row.bundle_key and row.bundle_key in broken_bundle_ids:
            logger.log_operation("approval.bulk_skip", "blocked", {"row": row.row_number, "bundle_id": row.bundle_key})
            continue

        counter = row.number("counter_price")
        if counter > 0:
            new_status, price = Status.APPROVED_NEW, counter
        else:
            new_status, price = Status.APPROVED_ORIGINAL, row.number("ask_price")

        row.status = new_status.value
        row.finance_price = price
        row.approved_by = approver
        row.approval_date = format_timestamp(timestamp)
        transitions.append({"row": row.row_number, "from": initial.value, "to": new_status.value})

    logger.log_operation("approval.bulk", "success", {"approved": len(transitions)})
    return transitions


def run_health_check(rows: List[OfferRow]) -> List[Dict[str, Any]]:
    """
    Reset finalized rows that carry no approval date back to Pending.

    Finance price and approver are cleared and the action reset. Mutates the
    rows in place and returns one transition per fixed row.
    """
    fixes = []
    for row in rows:
        status = row.status_enum
        if status is None or not status.is_finalized or row.text("approval_date"):
            continue

        row.status = Status.PENDING.value
        row.finance_price = ""
        row.approved_by = ""
        row.approver_action = ApproverAction.CHOOSE.value
        fixes.append({"row": row.row_number, "from": status.value, "to": Status.PENDING.value})

    logger.log_operation("health_check", "success", {"fixed": len(fixes)})
    return fixes
