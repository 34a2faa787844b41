"""
Row calculation engine.
Derives rate ratio and contract value from a row's pricing inputs. Pure, no I/O.
"""

from .schema import DerivedMetrics, OfferRow

# Written to the rate ratio cell when price and term exist but cost is missing
MISSING_COST_BASIS = "#NO_COST_BASIS"


def effective_price(row: OfferRow) -> float:
    """Finance price once approved, else a positive counter price, else the ask price."""
    status = row.status_enum
    if status is not None and status.is_approved:
        return row.number("finance_price")

    counter = row.number("counter_price")
    if counter > 0:
        return counter
    return row.number("ask_price")


def compute_derived(row: OfferRow) -> DerivedMetrics:
    """Compute rate ratio and contract value for one row."""
    price = effective_price(row)
    term = row.number("term")
    quantity = row.number("quantity")
    cost = row.number("sourcing_cost")

    rate_ratio = ""
    if price > 0 and term > 0:
        if cost > 0:
            rate_ratio = (price * term) / cost
        else:
            rate_ratio = MISSING_COST_BASIS

    contract_value = ""
    if price > 0 and term > 0 and quantity > 0:
        contract_value = price * term * quantity

    return DerivedMetrics(rate_ratio=rate_ratio, contract_value=contract_value)


def has_rate_ratio(value) -> bool:
    """True when a stored rate ratio is a positive number."""
    if value == MISSING_COST_BASIS or value == "" or value is None:
        return False
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False
