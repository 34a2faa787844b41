"""
Status transition engine.
Computes a row's next status as one atomic changeset. Pure, no I/O.
"""

from dataclasses import dataclass, field
from typing import FrozenSet, Optional

from .numeric import is_blank, values_equal
from .schema import (
    ACTION_RESET_STATUSES,
    APPROVAL_FIELDS,
    DERIVED_FIELDS,
    PRICING_FIELDS,
    SUPPORTING_FIELDS,
    ConfigurationSnapshot,
    OfferRow,
    Status,
    StatusChange,
)
from ..util.logging import logger


@dataclass
class StatusOptions:
    """Context the caller supplies for one evaluation."""
    broken_bundle_ids: FrozenSet[str] = field(default_factory=frozenset)
    force_revision_of_finalized_items: bool = False
    paste_reset: bool = False


def is_row_complete(row: OfferRow) -> bool:
    """Model plus positive sourcing cost, ask price, quantity and term."""
    if not row.has_model:
        return False
    for name in ("sourcing_cost", "ask_price", "quantity", "term"):
        if row.number(name) <= 0:
            return False
    return True


def was_key_field_edited(after: OfferRow, before: OfferRow) -> bool:
    """True if any pricing-relevant field differs between the snapshots."""
    return any(after.text(name) != before.text(name) for name in PRICING_FIELDS)


def supporting_data_changed(after: OfferRow, before: OfferRow) -> bool:
    """
    Wider comparison used by forced revision.

    Covers pricing fields, counter and finance price, and any derived metric
    that was stored before and no longer matches.
    """
    for name in SUPPORTING_FIELDS:
        if not values_equal(after.get(name), before.get(name)):
            return True
    for name in DERIVED_FIELDS:
        stored = before.get(name)
        if is_blank(stored):
            continue
        if not values_equal(after.get(name), stored, tolerance=1e-3):
            return True
    return False


def _target_status(after: OfferRow, before: OfferRow, initial: Optional[Status], options: StatusOptions):
    """Return (target status, rule name). target None clears the status."""
    if not after.has_model:
        return None, "no_model"

    if after.bundle_key and after.bundle_key in options.broken_bundle_ids:
        return Status.DRAFT, "broken_bundle"

    if not is_row_complete(after):
        return Status.DRAFT, "incomplete"

    if initial is not None and initial.is_finalized:
        if options.paste_reset or was_key_field_edited(after, before):
            return Status.REVISED_BY_AE, "finalized_edited"
        if options.force_revision_of_finalized_items and supporting_data_changed(after, before):
            return Status.REVISED_BY_AE, "finalized_out_of_date"
        return initial, "finalized_unchanged"

    if initial == Status.REVISED_BY_AE:
        # A further user edit resubmits; a recalculation leaves it waiting
        if not options.force_revision_of_finalized_items and was_key_field_edited(after, before):
            return Status.PENDING, "revision_resubmitted"
        return Status.REVISED_BY_AE, "revision_pending"

    return Status.PENDING, "complete"


def next_status(after: OfferRow, before: OfferRow = None, settings: ConfigurationSnapshot = None,
                options: StatusOptions = None) -> StatusChange:
    """
    Evaluate the status state machine for one row.

    Rules in priority order: no model clears the status, a broken bundle forces
    Draft, an incomplete row is Draft, an edited finalized row becomes Revised by
    AE, otherwise a complete row is Pending. Leaving a finalized status clears
    finance price, approver and approval date in the same changeset.
    """
    before = before if before is not None else after
    options = options or StatusOptions()

    initial = before.status_enum
    current = after.status_enum
    target, rule = _target_status(after, before, initial, options)

    if settings is not None:
        logger.debug(f"Status evaluation row={after.row_number} rule={rule} deal_flag={settings.deal_flag}")

    target_text = target.value if target is not None else ""
    if after.text("status") == target_text:
        return StatusChange.unchanged(current, rule)

    was_finalized = any(s is not None and s.is_finalized for s in (initial, current))
    leaving_finalized = was_finalized and (target is None or not target.is_finalized)

    fields_to_clear = list(APPROVAL_FIELDS) if leaving_finalized else []
    reset_action = target in ACTION_RESET_STATUSES

    return StatusChange(
        status=target,
        fields_to_clear=fields_to_clear,
        reset_action=reset_action,
        changed=True,
        rule=rule,
    )
