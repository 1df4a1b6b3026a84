"""
Record -> sheet row builders used by write-back.

Each builder returns a list of SHEET_WIDTH cells laid out per
tourdesk.sheets.columns. Cell values:

  - str:  text to write ("" clears a mapped field whose DB value is empty)
  - None: leave the cell untouched (staff-owned or formula column)

Builders take plain records and read relations through attributes
(`seller.name`, `request.booking_code`), so they work on ORM rows and on
simple namespaces in tests alike.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Union

from tourdesk.sheets.columns import (
    OPERATOR_COLUMNS,
    REQUEST_COLUMNS,
    REVENUE_COLUMNS,
    SHEET_WIDTH,
    get_writable_columns,
)

Cell = Optional[str]
Number = Union[int, float, Decimal, None]

# Status labels as they appear in the Request tab
STATUS_LABELS: Dict[str, str] = {
    "DANG_LL_CHUA_TL": "Đang LL - khách chưa trả lời",
    "DANG_LL_DA_TL": "Đang LL - khách đã trả lời",
    "DA_BAO_GIA": "Đã báo giá",
    "DANG_XAY_TOUR": "Đang xây Tour",
    "F1": "F1",
    "F2": "F2",
    "F3": "F3",
    "F4": "F4",
    "BOOKING": "Booking",
    "KHACH_HOAN": "Khách hoãn",
    "KHACH_SUY_NGHI": "Khách đang suy nghĩ",
    "KHONG_DU_TC": "Không đủ TC",
    "DA_KET_THUC": "Đã kết thúc",
    "CANCEL": "Cancel",
}


def status_key_to_label(status: str) -> str:
    return STATUS_LABELS.get(status, status)


def format_date(value: Optional[date]) -> str:
    """DD/MM/YYYY, zero-padded."""
    if value is None:
        return ""
    return value.strftime("%d/%m/%Y")


def format_amount(value: Number) -> str:
    """Whole amount with dot thousands separators: 1234567 -> "1.234.567"."""
    if value is None:
        return ""
    return f"{int(round(Decimal(str(value)))):,}".replace(",", ".")


def format_decimal(value: Number) -> str:
    """Two decimals, dot thousands, comma decimal: 1234.5 -> "1.234,50"."""
    if value is None:
        return ""
    text = f"{Decimal(str(value)):,.2f}"
    return text.replace(",", "_").replace(".", ",").replace("_", ".")


def _text(value: Any) -> str:
    if value is None:
        return ""
    return str(value)


def _blank_row() -> List[Cell]:
    return [None] * SHEET_WIDTH


def _related(record: Any, relation: str, attr: str) -> Any:
    parent = getattr(record, relation, None)
    if parent is None:
        return None
    return getattr(parent, attr, None)


def map_request_to_row(record: Any) -> List[Cell]:
    cols = REQUEST_COLUMNS
    row = _blank_row()
    row[cols["seller"]] = _text(_related(record, "seller", "name"))
    row[cols["customer_name"]] = _text(record.customer_name)
    row[cols["contact"]] = _text(record.contact)
    row[cols["pax"]] = _text(record.pax)
    row[cols["country"]] = _text(record.country)
    row[cols["source"]] = _text(record.source)
    row[cols["status"]] = status_key_to_label(record.status)
    row[cols["tour_days"]] = _text(record.tour_days)
    row[cols["start_date"]] = format_date(record.start_date)
    row[cols["expected_revenue"]] = format_amount(record.expected_revenue)
    row[cols["expected_cost"]] = format_amount(record.expected_cost)
    row[cols["notes"]] = _text(record.notes)
    row[cols["booking_code"]] = _text(record.booking_code)
    row[cols["end_date"]] = format_date(record.end_date)
    row[cols["code"]] = _text(record.code)
    return row


def map_operator_to_row(record: Any) -> List[Cell]:
    cols = OPERATOR_COLUMNS
    row = _blank_row()
    row[cols["booking_code"]] = _text(_related(record, "request", "booking_code"))
    row[cols["service_date"]] = format_date(record.service_date)
    row[cols["service_type"]] = _text(record.service_type)
    row[cols["service_name"]] = _text(record.service_name)
    row[cols["cost_before_tax"]] = format_amount(record.cost_before_tax)
    row[cols["vat"]] = format_amount(record.vat)
    row[cols["supplier"]] = _text(record.supplier)
    row[cols["notes"]] = _text(record.notes)
    row[cols["payment_status"]] = _text(record.payment_status)
    # total_cost (Q) and debt (W) are sheet formulas
    return row


def map_revenue_to_row(record: Any) -> List[Cell]:
    cols = REVENUE_COLUMNS
    row = _blank_row()
    row[cols["booking_code"]] = _text(_related(record, "request", "booking_code"))
    row[cols["payment_type"]] = _text(record.payment_type)
    row[cols["payment_date"]] = format_date(record.payment_date)
    row[cols["payment_source"]] = _text(record.payment_source)
    row[cols["foreign_amount"]] = format_decimal(record.foreign_amount)
    row[cols["exchange_rate"]] = format_decimal(record.exchange_rate)
    row[cols["currency"]] = record.currency or "VND"
    row[cols["amount_vnd"]] = format_amount(record.amount_vnd)
    row[cols["notes"]] = _text(record.notes)
    return row


ROW_BUILDERS: Dict[str, Callable[[Any], List[Cell]]] = {
    "Request": map_request_to_row,
    "Operator": map_operator_to_row,
    "Revenue": map_revenue_to_row,
}


def map_record_to_row(sheet_name: str, record: Any) -> List[Cell]:
    try:
        builder = ROW_BUILDERS[sheet_name]
    except KeyError:
        raise ValueError(f"No row builder for sheet {sheet_name!r}") from None
    return builder(record)


def filter_writable_values(sheet_name: str, values: List[Cell]) -> List[Cell]:
    """Blank out (None) every column write-back must not overwrite."""
    writable = set(get_writable_columns(sheet_name))
    return [v if i in writable else None for i, v in enumerate(values)]
