"""
Numeric value normalization for raw cell content.
"""

import math
import re
from enum import Enum
from typing import Any

_DECIMAL_PATTERN = re.compile(r"^-?\d*\.?\d*$")
_STRIP_CHARS = ("€", "$", ",")


def parse_numeric(raw: Any) -> float:
    """
    Convert raw cell content into a float.

    Native numbers pass through. Strings have currency symbols and thousands
    separators removed and must then match a strict decimal pattern. Anything
    empty, malformed or non-numeric yields 0.0. Never raises.
    """
    if isinstance(raw, bool):
        return 0.0

    if isinstance(raw, (int, float)):
        value = float(raw)
        if math.isnan(value) or math.isinf(value):
            return 0.0
        return value

    if not isinstance(raw, str):
        return 0.0

    cleaned = raw.strip()
    for char in _STRIP_CHARS:
        cleaned = cleaned.replace(char, "")
    cleaned = cleaned.strip()

    if not cleaned or not _DECIMAL_PATTERN.match(cleaned):
        return 0.0

    try:
        return float(cleaned)
    except ValueError:
        # "-", "." and "-." pass the pattern but are not numbers
        return 0.0


def cell_text(raw: Any) -> str:
    """String-normalized cell value used for equality checks."""
    if raw is None:
        return ""
    if isinstance(raw, Enum):
        return str(raw.value)
    if isinstance(raw, bool):
        return str(raw).lower()
    if isinstance(raw, float):
        if math.isnan(raw):
            return ""
        if raw.is_integer():
            return str(int(raw))
        return repr(raw)
    return str(raw).strip()


def is_blank(raw: Any) -> bool:
    return cell_text(raw) == ""


def values_equal(a: Any, b: Any, tolerance: float = 1e-6) -> bool:
    """Compare two cell values, numerically when both parse as numbers."""
    text_a, text_b = cell_text(a), cell_text(b)
    if text_a == text_b:
        return True
    if text_a == "" or text_b == "":
        return False

    num_a, num_b = parse_numeric(a), parse_numeric(b)
    if num_a == 0.0 and text_a not in ("0", "0.0"):
        return False
    if num_b == 0.0 and text_b not in ("0", "0.0"):
        return False
    return abs(num_a - num_b) <= tolerance
