"""
Bundle integrity validation.
Checks that rows sharing a bundle id are contiguous and agree on quantity and term.
"""

from collections import OrderedDict
from dataclasses import dataclass, asdict
from typing import Any, Dict, List, Optional, Tuple

from . import config
from .config import ColumnMap
from .metadata import BundleMetadataIndex
from .numeric import cell_text, parse_numeric
from .schema import BundleError, BundleValidationResult, OfferRow
from .store import TabularStore
from ..util.logging import logger

GAP_DETECTED = "GAP_DETECTED"
MISMATCH = "MISMATCH"


@dataclass
class GroupedItem:
    """One renderable approved item: a single row or a consolidated bundle."""
    is_bundle: bool
    models: str
    quantity: Any
    term: Any
    unit_price: float
    total_price: float
    bundle_id: str = ""
    rows: List[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _check_members(bundle_id: str, members: List[Tuple[int, Any, Any]],
                   check_contiguity: bool = True) -> BundleValidationResult:
    """Run contiguity and quantity/term checks on (row, quantity, term) members."""
    rows = [row for row, _, _ in members]
    if len(members) <= 1:
        return BundleValidationResult(
            valid=True,
            bundle_id=bundle_id,
            start_row=rows[0] if rows else None,
            end_row=rows[0] if rows else None,
            members=rows,
        )

    start_row, end_row = rows[0], rows[-1]

    if check_contiguity:
        for previous, current in zip(rows, rows[1:]):
            if current != previous + 1:
                return BundleValidationResult(
                    valid=False,
                    bundle_id=bundle_id,
                    code=GAP_DETECTED,
                    message=f"Bundle {bundle_id} is not contiguous: gap between rows {previous} and {current}.",
                    start_row=start_row,
                    end_row=end_row,
                    members=rows,
                )

    first_row, first_quantity, first_term = members[0]
    expected = {"quantity": cell_text(first_quantity), "term": cell_text(first_term)}
    for row, quantity, term in members[1:]:
        if cell_text(quantity) != expected["quantity"] or cell_text(term) != expected["term"]:
            return BundleValidationResult(
                valid=False,
                bundle_id=bundle_id,
                code=MISMATCH,
                message=(f"Bundle {bundle_id}: row {row} has quantity '{cell_text(quantity)}' and term "
                         f"'{cell_text(term)}', expected quantity '{expected['quantity']}' and term "
                         f"'{expected['term']}' (row {first_row})."),
                start_row=start_row,
                end_row=end_row,
                expected=expected,
                members=rows,
            )

    return BundleValidationResult(
        valid=True,
        bundle_id=bundle_id,
        start_row=start_row,
        end_row=end_row,
        members=rows,
    )


class BundleValidator:
    """Two-tier bundle lookup: metadata index hint, verified against a column scan."""

    def __init__(self, store: TabularStore, columns: ColumnMap,
                 index: BundleMetadataIndex = None, data_start_row: int = None):
        self.store = store
        self.columns = columns
        self.index = index or BundleMetadataIndex(store)
        self.data_start_row = config.get_data_start_row() if data_start_row is None else data_start_row

    def validate(self, bundle_id: Any, hint_row: int = None) -> BundleValidationResult:
        """
        Validate one bundle. hint_row lets the metadata index resolve members.

        The bundle column is always scanned in full and that scan is authoritative:
        a member outside an indexed range is only visible to a full read. A matching
        index entry labels the result as index-resolved and skips the contiguity
        check; a stale one is logged and ignored.
        """
        bundle_id = cell_text(bundle_id)
        if not bundle_id:
            return BundleValidationResult(valid=True)

        scanned = self._scan_members(bundle_id)
        resolved_by = "scan"

        if hint_row is not None:
            entry = self.index.get_entry(hint_row)
            if entry is not None and entry.bundle_id == bundle_id:
                if scanned == list(range(entry.start_row, entry.end_row + 1)):
                    resolved_by = "index"
                else:
                    logger.log_operation("bundle.index_stale", "fallback", {
                        "bundle_id": bundle_id,
                        "indexed": f"{entry.start_row}-{entry.end_row}",
                        "scanned": scanned,
                    })

        members = self._read_quantity_term(scanned)
        # Index-resolved ranges are contiguous by construction
        result = _check_members(bundle_id, members, check_contiguity=(resolved_by == "scan"))
        result.resolved_by = resolved_by

        logger.log_bundle_validation(bundle_id, result.valid, result.code,
                                     {"members": len(scanned), "resolved_by": resolved_by})
        return result

    def find_all_bundle_errors(self, rows: List[OfferRow] = None) -> List[BundleError]:
        """Validate every bundle from one bulk read, grouping rows in memory."""
        rows = self.read_data_rows() if rows is None else rows
        errors = []
        for bundle_id, members in self._group(rows).items():
            result = _check_members(bundle_id, [(r.row_number, r.quantity, r.term) for r in members])
            if not result.valid:
                errors.append(BundleError(
                    bundle_id=bundle_id,
                    code=result.code,
                    message=result.message,
                    rows=result.members,
                    expected=result.expected,
                ))

        errors.sort(key=lambda e: e.rows[0] if e.rows else 0)
        if errors:
            logger.log_operation("bundle.scan", "errors_found", {"count": len(errors)})
        return errors

    def valid_bundle_ranges(self, rows: List[OfferRow] = None) -> List[Tuple[str, int, int]]:
        """(bundle_id, start_row, end_row) for every valid bundle with two or more members."""
        rows = self.read_data_rows() if rows is None else rows
        ranges = []
        for bundle_id, members in self._group(rows).items():
            if len(members) < 2:
                continue
            result = _check_members(bundle_id, [(r.row_number, r.quantity, r.term) for r in members])
            if result.valid:
                ranges.append((bundle_id, result.start_row, result.end_row))
        return ranges

    def find_members(self, bundle_id: Any) -> List[int]:
        """Every row carrying the bundle id, in sheet order."""
        return self._scan_members(cell_text(bundle_id))

    def find_bundle_range(self, bundle_id: Any) -> Optional[Tuple[int, int]]:
        """First and last row carrying the bundle id, or None."""
        members = self.find_members(bundle_id)
        if not members:
            return None
        return members[0], members[-1]

    def is_bundle_still_invalid(self, bundle_id: Any) -> bool:
        """Re-check a previously reported bundle."""
        return not self.validate(bundle_id).valid

    def read_data_rows(self) -> List[OfferRow]:
        """One bulk read of the whole data region."""
        last = self.store.last_row()
        if last < self.data_start_row:
            return []
        grid = self.store.read_range(self.data_start_row, 1, last - self.data_start_row + 1, self.columns.width)
        return [
            OfferRow.from_values(self.data_start_row + offset, values, self.columns)
            for offset, values in enumerate(grid)
        ]

    def _scan_members(self, bundle_id: str) -> List[int]:
        if not bundle_id:
            return []
        last = self.store.last_row()
        if last < self.data_start_row:
            return []
        column = self.store.read_range(self.data_start_row, self.columns.bundle_id,
                                       last - self.data_start_row + 1, 1)
        return [
            self.data_start_row + offset
            for offset, values in enumerate(column)
            if cell_text(values[0]) == bundle_id
        ]

    def _read_quantity_term(self, rows: List[int]) -> List[Tuple[int, Any, Any]]:
        if len(rows) <= 1:
            return [(row, "", "") for row in rows]

        first_col = min(self.columns.quantity, self.columns.term)
        last_col = max(self.columns.quantity, self.columns.term)
        grid = self.store.read_range(rows[0], first_col, rows[-1] - rows[0] + 1, last_col - first_col + 1)

        members = []
        for row in rows:
            values = grid[row - rows[0]]
            members.append((row, values[self.columns.quantity - first_col], values[self.columns.term - first_col]))
        return members

    @staticmethod
    def _group(rows: List[OfferRow]) -> "OrderedDict[str, List[OfferRow]]":
        groups: "OrderedDict[str, List[OfferRow]]" = OrderedDict()
        for row in rows:
            if row.bundle_key:
                groups.setdefault(row.bundle_key, []).append(row)
        return groups


def group_approved_items(rows: List[OfferRow]) -> List[GroupedItem]:
    """
    Consolidate approved rows into renderable items.

    Unbundled approved rows pass through individually. A bundle is consolidated
    only when every member is approved: its finance prices are summed into a
    unit price and its models listed by price, highest first. Bundles with any
    unapproved member are left out.
    """
    bundle_sizes: Dict[str, int] = {}
    for row in rows:
        if row.bundle_key:
            bundle_sizes[row.bundle_key] = bundle_sizes.get(row.bundle_key, 0) + 1

    approved = [row for row in rows if row.status_enum is not None and row.status_enum.is_approved]

    items = []
    processed = set()
    for row in approved:
        bundle_id = row.bundle_key
        if not bundle_id:
            price = parse_numeric(row.finance_price)
            quantity = parse_numeric(row.quantity)
            items.append(GroupedItem(
                is_bundle=False,
                models=row.text("model"),
                quantity=row.quantity,
                term=row.term,
                unit_price=round(price, 2),
                total_price=round(price * quantity, 2),
                rows=[row.row_number],
            ))
            continue

        if bundle_id in processed:
            continue
        processed.add(bundle_id)

        members = [r for r in approved if r.bundle_key == bundle_id]
        if len(members) != bundle_sizes.get(bundle_id, 0):
            logger.debug(f"Bundle {bundle_id} skipped: {len(members)}/{bundle_sizes.get(bundle_id, 0)} approved")
            continue

        priced = sorted(((parse_numeric(m.finance_price), m.text("model")) for m in members),
                        key=lambda pair: pair[0], reverse=True)
        unit_price = sum(price for price, _ in priced)
        quantity = parse_numeric(members[0].quantity)

        items.append(GroupedItem(
            is_bundle=True,
            models=",\n".join(name for _, name in priced),
            quantity=members[0].quantity,
            term=members[0].term,
            unit_price=round(unit_price, 2),
            total_price=round(unit_price * quantity, 2),
            bundle_id=bundle_id,
            rows=[m.row_number for m in members],
        ))

    logger.log_operation("bundle.group_approved", "success", {"items": len(items)})
    return items
