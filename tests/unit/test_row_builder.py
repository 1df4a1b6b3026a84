"""Tests for record → sheet row builders and the column layout."""
from datetime import date
from decimal import Decimal
from types import SimpleNamespace

import pytest

from tourdesk.sheets.columns import (
    FORMULA_COLUMNS,
    OPERATOR_COLUMNS,
    REQUEST_COLUMNS,
    REVENUE_COLUMNS,
    SHEET_WIDTH,
    contiguous_runs,
    get_writable_columns,
)
from tourdesk.sheets.row_builder import (
    filter_writable_values,
    format_amount,
    format_date,
    format_decimal,
    map_operator_to_row,
    map_record_to_row,
    map_request_to_row,
    map_revenue_to_row,
    status_key_to_label,
)


def _request(**overrides):
    fields = dict(
        code="RQ-240101-0001",
        booking_code="BK-2401-001",
        customer_name="John Smith",
        contact="john@example.com",
        country="USA",
        source="Website",
        status="BOOKING",
        pax=2,
        tour_days=5,
        start_date=date(2024, 3, 10),
        end_date=date(2024, 3, 15),
        expected_revenue=Decimal("45000000"),
        expected_cost=Decimal("30000000"),
        notes=None,
        seller=SimpleNamespace(name="Lan"),
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _operator(**overrides):
    fields = dict(
        service_date=date(2024, 3, 11),
        service_type="Hotel",
        service_name="Old Quarter Hotel",
        cost_before_tax=Decimal("2500000"),
        vat=Decimal("250000"),
        total_cost=Decimal("2750000"),
        supplier="HQ Hotels",
        notes="",
        payment_status="PENDING",
        request=SimpleNamespace(booking_code="BK-2401-001"),
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


def _revenue(**overrides):
    fields = dict(
        payment_date=date(2024, 3, 1),
        payment_type="Deposit",
        payment_source="Bank transfer",
        foreign_amount=Decimal("1500"),
        exchange_rate=Decimal("24500.5"),
        currency="USD",
        amount_vnd=Decimal("36750750"),
        notes=None,
        request=SimpleNamespace(booking_code="BK-2401-001"),
    )
    fields.update(overrides)
    return SimpleNamespace(**fields)


class TestFormatters:
    def test_date(self):
        assert format_date(date(2024, 1, 5)) == "05/01/2024"
        assert format_date(None) == ""

    def test_amount(self):
        assert format_amount(1234567) == "1.234.567"
        assert format_amount(Decimal("999")) == "999"
        assert format_amount(None) == ""

    def test_decimal(self):
        assert format_decimal(1234.5) == "1.234,50"
        assert format_decimal(Decimal("0.1")) == "0,10"
        assert format_decimal(None) == ""

    def test_status_label(self):
        assert status_key_to_label("DANG_LL_CHUA_TL") == "Đang LL - khách chưa trả lời"
        assert status_key_to_label("UNKNOWN") == "UNKNOWN"


class TestColumns:
    def test_every_layout_fits_the_sheet(self):
        for cols in (REQUEST_COLUMNS, OPERATOR_COLUMNS, REVENUE_COLUMNS):
            assert max(cols.values()) < SHEET_WIDTH

    def test_operator_formula_columns(self):
        assert FORMULA_COLUMNS["Operator"] == (16, 22)

    def test_writable_columns_exclude_formulas(self):
        writable = get_writable_columns("Operator")
        assert 16 not in writable
        assert 22 not in writable
        assert len(writable) == SHEET_WIDTH - 2

    def test_unknown_sheet_fully_writable(self):
        assert get_writable_columns("Nope") == list(range(SHEET_WIDTH))

    def test_contiguous_runs(self):
        assert contiguous_runs(["a", "b", None, "c"]) == [(0, 1), (3, 3)]
        assert contiguous_runs([None, None]) == []
        assert contiguous_runs(["", None, ""]) == [(0, 0), (2, 2)]


class TestMapRequestToRow:
    def test_layout(self):
        row = map_request_to_row(_request())

        assert len(row) == SHEET_WIDTH
        assert row[0] == "Lan"
        assert row[1] == "John Smith"
        assert row[4] == "2"
        assert row[7] == "Booking"
        assert row[10] == "10/03/2024"
        assert row[11] == "45.000.000"
        assert row[19] == "BK-2401-001"
        assert row[25] == "15/03/2024"
        assert row[43] == "RQ-240101-0001"

    def test_unmapped_columns_are_untouched(self):
        row = map_request_to_row(_request())
        assert row[3] is None
        assert row[51] is None

    def test_empty_fields_clear_their_cells(self):
        row = map_request_to_row(_request(notes=None, seller=None, start_date=None))
        assert row[REQUEST_COLUMNS["notes"]] == ""
        assert row[REQUEST_COLUMNS["seller"]] == ""
        assert row[REQUEST_COLUMNS["start_date"]] == ""


class TestMapOperatorToRow:
    def test_layout(self):
        row = map_operator_to_row(_operator())

        assert row[0] == "BK-2401-001"
        assert row[9] == "11/03/2024"
        assert row[11] == "Old Quarter Hotel"
        assert row[14] == "2.500.000"
        assert row[15] == "250.000"
        assert row[18] == "HQ Hotels"

    def test_formula_cells_left_alone(self):
        row = map_operator_to_row(_operator())
        assert row[16] is None
        assert row[22] is None


class TestMapRevenueToRow:
    def test_layout(self):
        row = map_revenue_to_row(_revenue())

        assert row[12] == "01/03/2024"
        assert row[16] == "1.500,00"
        assert row[17] == "24.500,50"
        assert row[18] == "USD"
        assert row[19] == "36.750.750"

    def test_currency_defaults_to_vnd(self):
        row = map_revenue_to_row(_revenue(currency=None))
        assert row[REVENUE_COLUMNS["currency"]] == "VND"


class TestDispatchAndFilter:
    def test_map_record_to_row_dispatches(self):
        assert map_record_to_row("Operator", _operator())[0] == "BK-2401-001"

    def test_unknown_sheet_raises(self):
        with pytest.raises(ValueError):
            map_record_to_row("Supplier", _operator())

    def test_filter_blanks_formula_columns(self):
        values = ["x"] * SHEET_WIDTH
        filtered = filter_writable_values("Operator", values)
        assert filtered[16] is None
        assert filtered[22] is None
        assert filtered[15] == "x"

    def test_filter_keeps_request_row(self):
        values = ["x"] * SHEET_WIDTH
        assert filter_writable_values("Request", values) == values
