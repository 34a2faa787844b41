"""
Typed records for the offer grid: rows, statuses, changesets and edit events.
"""

from dataclasses import dataclass, field, fields, asdict
from enum import Enum
from typing import Any, Dict, List, Optional

from .config import ColumnMap
from .numeric import cell_text, parse_numeric


class Status(str, Enum):
    """Row lifecycle status, stored in the grid as its display string."""
    DRAFT = "Draft"
    PENDING = "Pending Approval"
    REVISED_BY_AE = "Revised by AE"
    APPROVED_ORIGINAL = "Approved (Original Price)"
    APPROVED_NEW = "Approved (New Price)"
    REJECTED = "Rejected"

    @classmethod
    def parse(cls, raw: Any) -> Optional["Status"]:
        text = cell_text(raw)
        for status in cls:
            if status.value == text:
                return status
        return None

    @property
    def is_finalized(self) -> bool:
        return self in FINALIZED_STATUSES

    @property
    def is_approved(self) -> bool:
        return self in (Status.APPROVED_ORIGINAL, Status.APPROVED_NEW)


FINALIZED_STATUSES = frozenset({Status.APPROVED_ORIGINAL, Status.APPROVED_NEW, Status.REJECTED})
APPROVABLE_STATUSES = frozenset({Status.PENDING, Status.REVISED_BY_AE})
ACTION_RESET_STATUSES = frozenset({Status.DRAFT, Status.PENDING, Status.REVISED_BY_AE})


class ApproverAction(str, Enum):
    """Approver action selection."""
    CHOOSE = "Choose Action"
    APPROVE_ORIGINAL = "Approve Original Price"
    APPROVE_NEW = "Approve New Price"
    REJECT = "Reject with Comment"

    @classmethod
    def parse(cls, raw: Any) -> Optional["ApproverAction"]:
        text = cell_text(raw)
        for action in cls:
            if action.value == text:
                return action
        return None


# Fields cleared whenever a row leaves a finalized status
APPROVAL_FIELDS = ("finance_price", "approved_by", "approval_date")

# Fields whose change on a finalized row forces a revision
PRICING_FIELDS = ("model", "sourcing_cost", "ask_price", "quantity", "term")

# Fields compared when a recalculation forces revision of finalized rows
SUPPORTING_FIELDS = PRICING_FIELDS + ("counter_price", "finance_price")

DERIVED_FIELDS = ("rate_ratio", "contract_value")

# Fields wiped by a bulk paste before re-evaluation
PASTE_RESET_FIELDS = (
    "index", "rate_ratio", "contract_value", "status", "finance_price",
    "approved_by", "approval_date", "approver_comment", "counter_price",
)


@dataclass
class OfferRow:
    """One offer line item. Values are kept raw, exactly as the store holds them."""
    row_number: int
    sku: Any = ""
    ep_capex_raw: Any = ""
    tk_capex_raw: Any = ""
    rental_target_raw: Any = ""
    rental_limit_raw: Any = ""
    index: Any = ""
    bundle_id: Any = ""
    model: Any = ""
    sourcing_cost: Any = ""
    ask_price: Any = ""
    quantity: Any = ""
    term: Any = ""
    approver_action: Any = ""
    approver_comment: Any = ""
    counter_price: Any = ""
    rate_ratio: Any = ""
    contract_value: Any = ""
    status: Any = ""
    finance_price: Any = ""
    approved_by: Any = ""
    approval_date: Any = ""

    @classmethod
    def field_names(cls) -> List[str]:
        return [f.name for f in fields(cls) if f.name != "row_number"]

    @classmethod
    def from_values(cls, row_number: int, values: List[Any], columns: ColumnMap, start_col: int = 1) -> "OfferRow":
        """Build a row from a positional grid row starting at start_col."""
        kwargs = {}
        for name in cls.field_names():
            offset = columns.columns[name] - start_col
            value = values[offset] if 0 <= offset < len(values) else ""
            kwargs[name] = "" if value is None else value
        return cls(row_number=row_number, **kwargs)

    def to_values(self, columns: ColumnMap, width: int = None, start_col: int = 1) -> List[Any]:
        """Flatten back to a positional grid row starting at start_col."""
        width = width or (columns.width - start_col + 1)
        values: List[Any] = [""] * width
        for name in self.field_names():
            offset = columns.columns[name] - start_col
            if 0 <= offset < width:
                values[offset] = getattr(self, name)
        return values

    def copy(self) -> "OfferRow":
        return OfferRow(**asdict(self))

    def get(self, name: str) -> Any:
        return getattr(self, name)

    def set(self, name: str, value: Any) -> None:
        setattr(self, name, value)

    def number(self, name: str) -> float:
        return parse_numeric(getattr(self, name))

    def text(self, name: str) -> str:
        return cell_text(getattr(self, name))

    @property
    def status_enum(self) -> Optional[Status]:
        return Status.parse(self.status)

    @property
    def bundle_key(self) -> str:
        return cell_text(self.bundle_id)

    @property
    def has_model(self) -> bool:
        return cell_text(self.model) != ""

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DerivedMetrics:
    """Derived financial metrics for one row. Empty string means not computable."""
    rate_ratio: Any = ""
    contract_value: Any = ""

    def apply(self, row: OfferRow) -> bool:
        """Write the metrics to the row; return True if anything changed."""
        changed = False
        for name in ("rate_ratio", "contract_value"):
            value = getattr(self, name)
            if row.get(name) != value:
                row.set(name, value)
                changed = True
        return changed


@dataclass
class StatusChange:
    """
    Atomic status changeset.

    status=None means clear the status entirely. changed=False means the caller
    leaves the row alone.
    """
    status: Optional[Status]
    fields_to_clear: List[str] = field(default_factory=list)
    reset_action: bool = False
    changed: bool = False
    rule: str = ""

    def apply(self, row: OfferRow) -> None:
        if not self.changed:
            return
        row.status = self.status.value if self.status is not None else ""
        for name in self.fields_to_clear:
            row.set(name, "")
        if self.reset_action:
            row.approver_action = ApproverAction.CHOOSE.value

    @classmethod
    def unchanged(cls, current: Optional[Status], rule: str = "unchanged") -> "StatusChange":
        return cls(status=current, changed=False, rule=rule)


@dataclass
class ConfigurationSnapshot:
    """Global settings read from the sheet header cells."""
    language: str = "german"
    deal_flag: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BundleMetadataEntry:
    """Index hint for a bundle's row range. Never authoritative."""
    bundle_id: str
    start_row: int
    end_row: int

    def to_dict(self) -> Dict[str, Any]:
        return {"bundleId": self.bundle_id, "startRow": self.start_row, "endRow": self.end_row}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BundleMetadataEntry":
        return cls(
            bundle_id=str(data["bundleId"]),
            start_row=int(data["startRow"]),
            end_row=int(data["endRow"]),
        )


@dataclass
class BundleValidationResult:
    """Outcome of a bundle integrity check."""
    valid: bool
    bundle_id: str = ""
    code: Optional[str] = None
    message: str = ""
    start_row: Optional[int] = None
    end_row: Optional[int] = None
    expected: Optional[Dict[str, str]] = None
    members: List[int] = field(default_factory=list)
    resolved_by: str = "scan"

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class BundleError:
    """One bundle violation found by the batch scan."""
    bundle_id: str
    code: str
    message: str
    rows: List[int] = field(default_factory=list)
    expected: Optional[Dict[str, str]] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class CellEdit:
    """Single-cell edit with the value it replaced."""
    row: int
    col: int
    new_value: Any = None
    old_value: Any = None

    @property
    def row_start(self) -> int:
        return self.row

    @property
    def row_end(self) -> int:
        return self.row

    @property
    def col_start(self) -> int:
        return self.col

    @property
    def col_end(self) -> int:
        return self.col

    @property
    def is_bulk(self) -> bool:
        return False


@dataclass
class RangeEdit:
    """Multi-cell edit or paste. No old values are guaranteed."""
    row_start: int
    row_end: int
    col_start: int
    col_end: int

    @property
    def is_bulk(self) -> bool:
        return True

    def covers(self, col: int) -> bool:
        return self.col_start <= col <= self.col_end


@dataclass
class ProcessingResult:
    """What one orchestrator run did."""
    outcome: str  # processed|busy|ignored|settings|failed
    rows_written: List[int] = field(default_factory=list)
    transitions: List[Dict[str, Any]] = field(default_factory=list)
    bundle_results: List[BundleValidationResult] = field(default_factory=list)
    advisories: List[str] = field(default_factory=list)
    error_message: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return self.outcome in ("processed", "ignored", "settings")

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
