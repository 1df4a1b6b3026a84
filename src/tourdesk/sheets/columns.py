"""
Column layout of the shared spreadsheet tabs.

Both sync directions use the same layout: the normalizer reads these
positions when importing rows, the row builder writes them on write-back.
Indices are 0-based (A=0). Every tab spans A..AZ.

Columns not listed here belong to staff (manual notes, colour codes,
hand-maintained totals) and are never written by write-back.
"""
from typing import Dict, List, Sequence, Tuple

SHEET_WIDTH = 52  # A..AZ
LAST_COLUMN = "AZ"

REQUEST_COLUMNS: Dict[str, int] = {
    "seller": 0,             # A
    "customer_name": 1,      # B
    "contact": 2,            # C
    "pax": 4,                # E
    "country": 5,            # F
    "source": 6,             # G
    "status": 7,             # H
    "tour_days": 9,          # J
    "start_date": 10,        # K
    "expected_revenue": 11,  # L
    "expected_cost": 12,     # M
    "notes": 13,             # N
    "booking_code": 19,      # T
    "end_date": 25,          # Z
    "code": 43,              # AR
}

OPERATOR_COLUMNS: Dict[str, int] = {
    "booking_code": 0,       # A
    "service_date": 9,       # J
    "service_type": 10,      # K
    "service_name": 11,      # L
    "cost_before_tax": 14,   # O
    "vat": 15,               # P
    "total_cost": 16,        # Q (formula)
    "supplier": 18,          # S
    "notes": 19,             # T
    "payment_status": 20,    # U
    "debt": 22,              # W (formula)
}

REVENUE_COLUMNS: Dict[str, int] = {
    "booking_code": 0,       # A
    "payment_type": 11,      # L
    "payment_date": 12,      # M
    "payment_source": 13,    # N
    "foreign_amount": 16,    # Q
    "exchange_rate": 17,     # R
    "currency": 18,          # S
    "amount_vnd": 19,        # T
    "notes": 20,             # U
}

COLUMNS: Dict[str, Dict[str, int]] = {
    "Request": REQUEST_COLUMNS,
    "Operator": OPERATOR_COLUMNS,
    "Revenue": REVENUE_COLUMNS,
}

# Columns computed by sheet formulas; write-back must leave them alone.
FORMULA_COLUMNS: Dict[str, Tuple[int, ...]] = {
    "Request": (),
    "Operator": (OPERATOR_COLUMNS["total_cost"], OPERATOR_COLUMNS["debt"]),
    "Revenue": (),
}


def get_writable_columns(sheet_name: str) -> List[int]:
    """Column indices write-back may overwrite. Unknown sheets are fully writable."""
    excluded = set(FORMULA_COLUMNS.get(sheet_name, ()))
    return [i for i in range(SHEET_WIDTH) if i not in excluded]


def contiguous_runs(values: Sequence[object]) -> List[Tuple[int, int]]:
    """Return (start, end) inclusive index pairs of consecutive non-None cells.

    >>> contiguous_runs(["a", "b", None, "c"])
    [(0, 1), (3, 3)]
    """
    runs: List[Tuple[int, int]] = []
    start = None
    for i, value in enumerate(values):
        if value is None:
            if start is not None:
                runs.append((start, i - 1))
                start = None
        elif start is None:
            start = i
    if start is not None:
        runs.append((start, len(values) - 1))
    return runs
