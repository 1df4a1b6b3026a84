"""
Spreadsheet row normalizer.

Converts raw cell lists from the shared sheet into clean field dicts that map
directly onto SQLModel columns. No DB access here; the importer resolves
parents and default owners and handles persistence.

A normalizer returns None for blank or placeholder rows (no business key);
the importer skips those silently. Rows that have a key but carry values
that cannot be parsed raise RowMappingError and are logged as FAILED.

Staff type numbers the Vietnamese way ("1.234.567" or "2.000,50") and dates
as DD/MM/YYYY; ISO dates are accepted too.
"""
import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from tourdesk.sheets.columns import OPERATOR_COLUMNS, REQUEST_COLUMNS, REVENUE_COLUMNS
from tourdesk.sheets.row_builder import STATUS_LABELS

_DMY = re.compile(r"^(\d{1,2})/(\d{1,2})/(\d{4})$")
_ISO = re.compile(r"^(\d{4})-(\d{2})-(\d{2})$")

_LABEL_TO_STATUS = {label.lower(): key for key, label in STATUS_LABELS.items()}


class RowMappingError(ValueError):
    """Raised when a non-blank row carries values that cannot be imported."""


def _cell(row: List[str], index: int) -> str:
    """Stripped cell text, or "" when the row is shorter than the column."""
    if index >= len(row) or row[index] is None:
        return ""
    return str(row[index]).strip()


def parse_number(value: Optional[str]) -> Optional[Decimal]:
    """Parse a Vietnamese-formatted number: dots group thousands, comma is decimal."""
    if not value or not value.strip():
        return None
    cleaned = value.strip().replace(".", "").replace(",", ".")
    try:
        parsed = Decimal(cleaned)
    except InvalidOperation:
        return None
    return parsed if parsed.is_finite() else None


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse DD/MM/YYYY or YYYY-MM-DD. Returns None for blank or unparseable input."""
    if not value or not value.strip():
        return None
    value = value.strip()

    match = _DMY.match(value)
    if match:
        day, month, year = (int(g) for g in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None

    match = _ISO.match(value)
    if match:
        year, month, day = (int(g) for g in match.groups())
        try:
            return date(year, month, day)
        except ValueError:
            return None

    try:
        return datetime.fromisoformat(value).date()
    except ValueError:
        return None


def map_status_to_stage(status: Optional[str]) -> str:
    """Derive the pipeline stage from a free-text status label."""
    normalized = (status or "").lower().strip()

    if any(k in normalized for k in ("mới", "chưa trả lời", "đang ll")):
        return "LEAD"
    if any(k in normalized for k in ("báo giá", "xây tour")):
        return "QUOTE"
    if any(k in normalized for k in ("f1", "f2", "f3", "f4", "suy nghĩ")):
        return "FOLLOWUP"
    if any(k in normalized for k in ("booking", "kết thúc", "cancel", "hoãn")):
        return "OUTCOME"
    return "LEAD"


def status_from_label(label: str) -> str:
    """Map a sheet status label back to its status key; unknown labels pass through."""
    return _LABEL_TO_STATUS.get(label.lower().strip(), label.strip())


def _required_date(value: str, field: str) -> Optional[date]:
    """None for a blank cell, RowMappingError for text that isn't a date."""
    if not value:
        return None
    parsed = parse_date(value)
    if parsed is None:
        raise RowMappingError(f"Invalid {field}: {value!r}")
    return parsed


def normalize_request_row(row: List[str], row_index: int) -> Optional[Dict[str, Any]]:
    """
    Normalize a Request tab row into Request model fields.

    Args:
        row: Raw cell values, column A first.
        row_index: 1-based sheet row number; stored as row-index linkage.

    Returns:
        Field dict (without seller_id), or None for a blank row.
    """
    cols = REQUEST_COLUMNS
    code = _cell(row, cols["code"])
    customer_name = _cell(row, cols["customer_name"])
    if not code or not customer_name:
        return None

    status_label = _cell(row, cols["status"]) or STATUS_LABELS["DANG_LL_CHUA_TL"]
    pax = parse_number(_cell(row, cols["pax"]))
    tour_days = parse_number(_cell(row, cols["tour_days"]))

    return {
        "code": code,
        "booking_code": _cell(row, cols["booking_code"]) or None,
        "customer_name": customer_name,
        "contact": _cell(row, cols["contact"]),
        "country": _cell(row, cols["country"]) or "Unknown",
        "source": _cell(row, cols["source"]) or "Other",
        "status": status_from_label(status_label),
        "stage": map_status_to_stage(status_label),
        "pax": int(pax) if pax else 1,
        "tour_days": int(round(tour_days)) if tour_days else None,
        "start_date": parse_date(_cell(row, cols["start_date"])),
        "end_date": parse_date(_cell(row, cols["end_date"])),
        "expected_revenue": parse_number(_cell(row, cols["expected_revenue"])),
        "expected_cost": parse_number(_cell(row, cols["expected_cost"])),
        "notes": _cell(row, cols["notes"]) or None,
        "sheet_row_index": row_index,
    }


def normalize_operator_row(row: List[str], row_index: int) -> Optional[Dict[str, Any]]:
    """
    Normalize an Operator (service cost) tab row.

    Returns a field dict keyed like Operator columns plus `request_code`
    (the parent's business code), or None for a blank row.
    """
    cols = OPERATOR_COLUMNS
    request_code = _cell(row, cols["booking_code"])
    service_name = _cell(row, cols["service_name"])
    if not request_code or not service_name:
        return None

    service_date = _required_date(_cell(row, cols["service_date"]), "service date")
    if service_date is None:
        return None

    cost = parse_number(_cell(row, cols["cost_before_tax"])) or Decimal("0")
    total = parse_number(_cell(row, cols["total_cost"])) or cost

    return {
        "request_code": request_code,
        "service_date": service_date,
        "service_type": _cell(row, cols["service_type"]) or "Other",
        "service_name": service_name,
        "supplier": _cell(row, cols["supplier"]) or None,
        "cost_before_tax": cost,
        "vat": parse_number(_cell(row, cols["vat"])),
        "total_cost": total,
        "payment_status": _cell(row, cols["payment_status"]) or "PENDING",
        "notes": _cell(row, cols["notes"]) or None,
        "sheet_row_index": row_index,
    }


def normalize_revenue_row(row: List[str], row_index: int) -> Optional[Dict[str, Any]]:
    """Normalize a Revenue tab row; same contract as normalize_operator_row."""
    cols = REVENUE_COLUMNS
    request_code = _cell(row, cols["booking_code"])
    if not request_code:
        return None

    payment_date = _required_date(_cell(row, cols["payment_date"]), "payment date")
    if payment_date is None:
        return None

    return {
        "request_code": request_code,
        "payment_date": payment_date,
        "payment_type": _cell(row, cols["payment_type"]) or "Deposit",
        "foreign_amount": parse_number(_cell(row, cols["foreign_amount"])),
        "currency": _cell(row, cols["currency"]) or "VND",
        "exchange_rate": parse_number(_cell(row, cols["exchange_rate"])),
        "amount_vnd": parse_number(_cell(row, cols["amount_vnd"])) or Decimal("0"),
        "payment_source": _cell(row, cols["payment_source"]) or "Bank transfer",
        "notes": _cell(row, cols["notes"]) or None,
        "sheet_row_index": row_index,
    }


NORMALIZERS = {
    "Request": normalize_request_row,
    "Operator": normalize_operator_row,
    "Revenue": normalize_revenue_row,
}
