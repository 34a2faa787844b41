"""
Bundle correction service.
Resolves the mismatch and gap prompts: apply a quantity and term to every member,
regroup a split bundle, or dissolve it.
"""

from dataclasses import dataclass, field
from typing import Any, List

from .bundles import BundleValidator
from .errors import BundleCorrectionError
from .numeric import cell_text
from .store import TabularStore
from ..util.logging import logger


@dataclass
class CorrectionResult:
    """Result of applying a bundle correction."""
    bundle_id: str
    start_row: int
    end_row: int
    rows_updated: List[int] = field(default_factory=list)
    success: bool = True


def apply_bundle_correction(store: TabularStore, validator: BundleValidator, bundle_id: Any,
                            term: Any, quantity: Any) -> CorrectionResult:
    """
    Set term and quantity on every row carrying the bundle id.

    Rows between the first and last member that belong to something else are
    left alone. Callers hold the process lock and run a recalculation after.
    """
    bundle_id = cell_text(bundle_id)
    bundle_range = validator.find_bundle_range(bundle_id)
    if bundle_range is None:
        raise BundleCorrectionError(bundle_id, f"Could not find any items for bundle #{bundle_id}.")

    start_row, end_row = bundle_range
    columns = validator.columns
    n_rows = end_row - start_row + 1

    bundle_column = store.read_range(start_row, columns.bundle_id, n_rows, 1)
    updated = []
    for offset, values in enumerate(bundle_column):
        if cell_text(values[0]) != bundle_id:
            continue
        row = start_row + offset
        store.write_range(row, columns.quantity, [[quantity]])
        store.write_range(row, columns.term, [[term]])
        updated.append(row)

    logger.log_operation("bundle.correction", "applied", {
        "bundle_id": bundle_id,
        "rows": updated,
        "quantity": cell_text(quantity),
        "term": cell_text(term),
    })
    return CorrectionResult(bundle_id=bundle_id, start_row=start_row, end_row=end_row, rows_updated=updated)


def fix_bundle_gaps(store: TabularStore, validator: BundleValidator, bundle_id: Any) -> CorrectionResult:
    """
    Move the later members of a bundle up so they follow the first member.

    Rows that sat between members shift down below the regrouped bundle, keeping
    their order. Row annotations are not moved; callers rebuild the metadata
    index in the recalculation they run afterwards.
    """
    bundle_id = cell_text(bundle_id)
    members = validator.find_members(bundle_id)
    if not members:
        raise BundleCorrectionError(bundle_id, f"Could not find any items for bundle #{bundle_id}.")

    start_row, end_row = members[0], members[-1]
    if len(members) <= 1 or end_row - start_row + 1 == len(members):
        logger.log_operation("bundle.fix_gaps", "skipped", {"bundle_id": bundle_id, "rows": members})
        return CorrectionResult(bundle_id=bundle_id, start_row=start_row, end_row=end_row)

    columns = validator.columns
    block = store.read_range(start_row, 1, end_row - start_row + 1, columns.width)
    grouped = [block[row - start_row] for row in members]
    others = [values for offset, values in enumerate(block) if start_row + offset not in members]
    store.write_range(start_row, 1, grouped + others)

    moved = list(range(start_row, end_row + 1))
    logger.log_operation("bundle.fix_gaps", "applied", {
        "bundle_id": bundle_id,
        "from_rows": members,
        "to_rows": moved[:len(members)],
    })
    return CorrectionResult(bundle_id=bundle_id, start_row=start_row, end_row=end_row, rows_updated=moved)


def dissolve_bundle(store: TabularStore, validator: BundleValidator, bundle_id: Any) -> CorrectionResult:
    """Clear the bundle id on every member so each row stands alone."""
    bundle_id = cell_text(bundle_id)
    members = validator.find_members(bundle_id)
    if not members:
        raise BundleCorrectionError(bundle_id, f"Could not find any items for bundle #{bundle_id}.")

    for row in members:
        store.write_range(row, validator.columns.bundle_id, [[""]])

    logger.log_operation("bundle.dissolve", "applied", {"bundle_id": bundle_id, "rows": members})
    return CorrectionResult(bundle_id=bundle_id, start_row=members[0], end_row=members[-1], rows_updated=members)
