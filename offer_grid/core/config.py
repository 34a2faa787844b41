"""
Runtime configuration for the offer grid core.
Environment-driven flags plus the column layout resolved once at startup.
"""

import os
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Tuple

from .errors import ColumnConfigError

# Storage configuration
DB_PATH = os.getenv("DB_PATH", "./data/offer_grid.db")
STORE_BACKEND = os.getenv("STORE_BACKEND", "memory")  # memory|sqlite

# Debug flag
DEBUG = os.getenv("DEBUG", "false").lower() == "true"

# Grid layout
DATA_START_ROW = int(os.getenv("DATA_START_ROW", "7"))
MAX_DATA_COLUMN = int(os.getenv("MAX_DATA_COLUMN", "21"))
LANGUAGE_CELL = os.getenv("LANGUAGE_CELL", "I1")
DEAL_FLAG_CELL = os.getenv("DEAL_FLAG_CELL", "L1")
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "german")

# Edit processing
LOCK_TIMEOUT_SEC = int(os.getenv("LOCK_TIMEOUT_SEC", "30"))
SETTINGS_CACHE_TTL_SEC = int(os.getenv("SETTINGS_CACHE_TTL_SEC", "300"))
ENFORCE_BUNDLE_INTEGRITY_ON_EDIT = os.getenv("ENFORCE_BUNDLE_INTEGRITY_ON_EDIT", "true").lower() == "true"
HIGHLIGHT_BUNDLES = os.getenv("HIGHLIGHT_BUNDLES", "true").lower() == "true"
DEFAULT_APPROVER = os.getenv("DEFAULT_APPROVER", "finance@local")

# Version string
VERSION = "1.0.0"

# Logical column name -> column letter
DEFAULT_COLUMN_LETTERS: Dict[str, str] = {
    "sku": "A",
    "ep_capex_raw": "B",
    "tk_capex_raw": "C",
    "rental_target_raw": "D",
    "rental_limit_raw": "E",
    "index": "F",
    "bundle_id": "G",
    "model": "H",
    "sourcing_cost": "I",
    "ask_price": "J",
    "quantity": "K",
    "term": "L",
    "approver_action": "M",
    "approver_comment": "N",
    "counter_price": "O",
    "rate_ratio": "P",
    "contract_value": "Q",
    "status": "R",
    "finance_price": "S",
    "approved_by": "T",
    "approval_date": "U",
}

# System-derived columns users may not overwrite
PROTECTED_COLUMN_LETTERS: Tuple[str, ...] = ("B", "C", "D", "E", "F", "P", "Q", "R", "S", "T", "U")

# Externally-sourced price lookup fields cleared when SKU/model desynchronize
SOURCED_FIELDS: Tuple[str, ...] = ("ep_capex_raw", "tk_capex_raw", "rental_target_raw", "rental_limit_raw")

_A1_PATTERN = re.compile(r"^([A-Za-z]+)(\d+)$")


def column_index_by_letter(letter: str) -> int:
    """Convert a column letter (A, Z, AA...) to its 1-based index."""
    if not letter or not letter.isalpha():
        raise ColumnConfigError(f"Invalid column letter: {letter!r}")

    index = 0
    for char in letter.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index


def parse_a1(cell: str) -> Tuple[int, int]:
    """Parse an A1 reference into (row, col), both 1-based."""
    match = _A1_PATTERN.match(cell.strip())
    if not match:
        raise ColumnConfigError(f"Invalid cell reference: {cell!r}")
    return int(match.group(2)), column_index_by_letter(match.group(1))


@dataclass(frozen=True)
class ColumnMap:
    """Logical field name to 1-based column, resolved once."""
    columns: Dict[str, int]
    protected: FrozenSet[int] = field(default_factory=frozenset)

    def __getattr__(self, name: str) -> int:
        # Only called for names not found normally
        columns = self.__dict__.get("columns", {})
        if name in columns:
            return columns[name]
        raise AttributeError(name)

    @property
    def width(self) -> int:
        return max(self.columns.values())

    def name_for(self, col: int) -> str:
        """Return the logical name at a 1-based column, or empty string."""
        for name, index in self.columns.items():
            if index == col:
                return name
        return ""

    def is_protected(self, col: int) -> bool:
        return col in self.protected


def resolve_columns(letters: Dict[str, str] = None, protected_letters=None) -> ColumnMap:
    """Resolve the letter configuration into a ColumnMap."""
    letters = letters or DEFAULT_COLUMN_LETTERS
    protected_letters = PROTECTED_COLUMN_LETTERS if protected_letters is None else protected_letters

    missing = [name for name in DEFAULT_COLUMN_LETTERS if name not in letters]
    if missing:
        raise ColumnConfigError(f"Column configuration missing fields: {missing}")

    columns = {name: column_index_by_letter(letter) for name, letter in letters.items()}
    if len(set(columns.values())) != len(columns):
        raise ColumnConfigError("Column configuration maps two fields to one column")

    protected = frozenset(column_index_by_letter(letter) for letter in protected_letters)
    return ColumnMap(columns=columns, protected=protected)


def get_data_start_row() -> int:
    """Get the first data row (rows above hold headers and settings)."""
    return DATA_START_ROW


def get_lock_timeout_ms() -> int:
    """Get the bounded lock wait in milliseconds."""
    return LOCK_TIMEOUT_SEC * 1000


def get_settings_cache_ttl() -> int:
    """Get the settings cache TTL in seconds."""
    return SETTINGS_CACHE_TTL_SEC


def is_bundle_integrity_enforced() -> bool:
    """Check if edits re-validate touched bundles."""
    return ENFORCE_BUNDLE_INTEGRITY_ON_EDIT


def debug_enabled():
    """Check if debug mode is enabled."""
    return os.getenv("DEBUG", "false").lower() == "true"


def validate_config():
    """Validate configuration and return any issues."""
    issues = []

    if STORE_BACKEND not in ["memory", "sqlite"]:
        issues.append(f"Invalid STORE_BACKEND: {STORE_BACKEND}")

    if DATA_START_ROW < 2:
        issues.append("DATA_START_ROW must be >= 2")

    if LOCK_TIMEOUT_SEC < 1:
        issues.append("LOCK_TIMEOUT_SEC must be >= 1")

    if SETTINGS_CACHE_TTL_SEC < 0:
        issues.append("SETTINGS_CACHE_TTL_SEC must be >= 0")

    for cell in (LANGUAGE_CELL, DEAL_FLAG_CELL):
        try:
            row, _ = parse_a1(cell)
        except ColumnConfigError as e:
            issues.append(str(e))
            continue
        if row >= DATA_START_ROW:
            issues.append(f"Settings cell {cell} lies inside the data region")

    try:
        columns = resolve_columns()
        if columns.width > MAX_DATA_COLUMN:
            issues.append("Column configuration exceeds MAX_DATA_COLUMN")
    except ColumnConfigError as e:
        issues.append(str(e))

    return issues
