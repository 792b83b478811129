"""
Tests for the xlsx_api module.

This module tests the public read/write functions end to end, including
large sheets and the round trip of written records.
"""

import pytest
from openpyxl import load_workbook

from xlsxmap.xlsx_api import build_validation_specs, read_xlsx, write_xlsx
from xlsxmap.xlsx_common import (
    ValidationKind,
    XLSXAggregateReadError,
    XLSXMissingEssentialHeadersError,
)
from xlsxmap.xlsx_reader import ErrorKind

from .conftest import ORDER_HEADERS, LineItem, Order, order_row


class TestReadWriteAPI:
    """Tests for read_xlsx and write_xlsx."""

    def test_round_trip(self, sample_orders, temp_file):
        write_xlsx(sample_orders, temp_file)
        assert read_xlsx(temp_file, Order) == sample_orders

    def test_round_trip_named_sheet(self, temp_file):
        items = [LineItem(name="bolt", quantity=4), LineItem(name="nut", active=False)]
        write_xlsx(items, temp_file, sheet_name="Items")
        assert read_xlsx(temp_file, LineItem, sheet_name="Items") == items

    def test_thousand_rows(self, xlsx_factory):
        rows = [ORDER_HEADERS] + [order_row(i) for i in range(1000)]
        orders = read_xlsx(xlsx_factory(rows), Order)
        assert len(orders) == 1000
        assert [order.order_number for order in orders] == [
            f"ORD-{i}" for i in range(1000)
        ]

    def test_thousand_rows_with_one_bad_cell(self, xlsx_factory):
        rows = [ORDER_HEADERS] + [order_row(i) for i in range(1000)]
        rows[501][4] = "free"
        with pytest.raises(XLSXAggregateReadError) as exc_info:
            read_xlsx(xlsx_factory(rows), Order)

        (error,) = exc_info.value.error_fields
        assert error.row_number == 502
        assert error.field_name == "price"
        assert error.header_name == "PRICE"
        assert error.raw_input == "free"
        assert error.kind is ErrorKind.PARSE_FAILURE
        assert "Row 502, column 'PRICE'" in str(exc_info.value)

    def test_essential_headers_argument(self, xlsx_factory):
        filepath = xlsx_factory([["SKU", "PRICE"], ["SKU-1", 2.5]])
        with pytest.raises(XLSXMissingEssentialHeadersError) as exc_info:
            read_xlsx(filepath, Order, essential_headers={"SKU", "PRICE", "QUANTITY"})
        assert exc_info.value.missing == frozenset({"QUANTITY"})

    def test_write_empty_without_model(self, temp_file):
        with pytest.raises(ValueError, match="No data provided for export"):
            write_xlsx([], temp_file)

    def test_write_template(self, temp_config, temp_file):
        temp_config.load_config(
            config=temp_config.XLSXMapConfig(
                writer=temp_config.WriterSettings(validation_rows_pre_allocated=5)
            )
        )
        write_xlsx([], temp_file, model_class=Order)

        worksheet = load_workbook(temp_file)["Order"]
        assert worksheet.max_row == 1
        ranges = {str(dv.sqref) for dv in worksheet.data_validations.dataValidation}
        assert "D2:D6" in ranges
        assert read_xlsx(temp_file, Order) == []


class TestBuildValidationSpecs:
    def test_order_specs(self):
        specs = build_validation_specs(Order)
        assert list(specs) == [
            "COUNTRY CODE",
            "SKU",
            "ORDER NUMBER",
            "ORDER STATUS",
            "QUANTITY",
            "ORDERED AT",
            "PAID DATE",
            "PRODUCT NAME",
        ]
        assert specs["COUNTRY CODE"].formula1 == "EXACT(UPPER(A2),A2)"
        assert specs["ORDER STATUS"].kind is ValidationKind.LIST
        assert specs["ORDERED AT"].kind is ValidationKind.ANY
        assert not specs["ORDERED AT"].has_message

    def test_first_data_row(self):
        specs = build_validation_specs(Order, first_data_row_index=9)
        assert specs["COUNTRY CODE"].formula1 == "EXACT(UPPER(A10),A10)"
