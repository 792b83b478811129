# Common pytest fixtures for all test modules
import tempfile
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Annotated, ClassVar

import pytest
from openpyxl import Workbook
from pydantic import BaseModel, field_validator

from xlsxmap import config
from xlsxmap.xlsx_common import (
    ErrorSeverity,
    ValidationKind,
    ValidationOperator,
    XLSXColumn,
)


# Test Enums
class OrderStatus(Enum):
    ORDERED = "ordered"
    PAID = "paid"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELED = "canceled"
    REFUND_REQUESTED = "refund_requested"
    REFUND = "refund"
    EXCHANGE_REQUESTED = "exchange_requested"
    EXCHANGED = "exchanged"


# Test Models
class Order(BaseModel):
    """Order record with metadata for every validation kind."""

    xlsx_essential_headers: ClassVar[frozenset[str]] = frozenset(
        {"SKU", "ORDER NUMBER"}
    )

    country_code: Annotated[
        str,
        XLSXColumn(
            header_name="COUNTRY CODE",
            validation_kind=ValidationKind.FORMULA,
            validation_formula="EXACT(UPPER(CURRENT_CELL),CURRENT_CELL)",
            prompt_title="Country code",
            error_title="Invalid country code",
            error_text="Use upper case letters, e.g. DE.",
            error_severity=ErrorSeverity.STOP,
        ),
    ]
    sku: Annotated[
        str,
        XLSXColumn(
            header_name="SKU",
            validation_kind=ValidationKind.TEXT_LENGTH,
            formula1="3",
            formula2="20",
            error_text="The SKU has 3 to 20 characters.",
        ),
    ]
    order_number: Annotated[
        str,
        XLSXColumn(header_name="ORDER NUMBER", prompt_text="Unique order number"),
    ]
    order_status: Annotated[
        OrderStatus,
        XLSXColumn(
            header_name="ORDER STATUS",
            validation_kind=ValidationKind.LIST,
            validation_enum=OrderStatus,
        ),
    ]
    price: Annotated[
        float, XLSXColumn(header_name="PRICE", validation_kind=ValidationKind.NONE)
    ]
    quantity: Annotated[
        int,
        XLSXColumn(
            header_name="QUANTITY",
            validation_kind=ValidationKind.INTEGER,
            operator=ValidationOperator.GREATER_THAN_OR_EQUAL,
            formula1="1",
            error_text="At least one item.",
        ),
    ]
    ordered_at: Annotated[datetime | None, XLSXColumn(header_name="ORDERED AT")] = None
    paid_date: Annotated[date | None, XLSXColumn(header_name="PAID DATE")] = None
    product_name: Annotated[str | None, XLSXColumn(header_name="PRODUCT NAME")] = None

    @field_validator("quantity")
    @classmethod
    def check_quantity(cls, value):
        if value < 1:
            msg = "Quantity must be at least 1"
            raise ValueError(msg)
        return value


ORDER_HEADERS = [
    "COUNTRY CODE",
    "SKU",
    "ORDER NUMBER",
    "ORDER STATUS",
    "PRICE",
    "QUANTITY",
    "ORDERED AT",
    "PAID DATE",
    "PRODUCT NAME",
]


class LineItem(BaseModel):
    """Simple model without metadata; headers are the field names."""

    name: str
    quantity: int = 0
    active: bool = True
    due: date | None = None


def order_row(index: int) -> list:
    """Cell values of a valid order row."""
    return [
        "DE",
        f"SKU-{index:05d}",
        f"ORD-{index}",
        "PAID" if index % 2 else "ORDERED",
        9.5 + index,
        index % 7 + 1,
        datetime(2024, 3, 1, 9, 30),
        date(2024, 3, 2) if index % 2 else None,
        f"Product {index}",
    ]


@pytest.fixture
def temp_config():
    """
    Provides a temporary config that can be safely changed in test functions.

    After the test the config will be reset to default.
    """
    yield config

    # Reset the globally changed config to default.
    config.load_config()


@pytest.fixture
def temp_file():
    """Temporary file for testing."""
    with tempfile.NamedTemporaryFile(suffix=".xlsx", delete=False) as f:
        yield Path(f.name)
    Path(f.name).unlink(missing_ok=True)


@pytest.fixture
def xlsx_factory(tmp_path):
    """Create an xlsx file from a list of rows (header row first)."""

    def _make(rows, filename="data.xlsx", sheet_name=None):
        workbook = Workbook()
        worksheet = workbook.active
        if sheet_name:
            worksheet.title = sheet_name
        for row in rows:
            worksheet.append(row)
        filepath = tmp_path / filename
        workbook.save(filepath)
        return filepath

    return _make


@pytest.fixture
def order_file(xlsx_factory):
    """Order sheet with three valid rows."""
    return xlsx_factory([ORDER_HEADERS] + [order_row(i) for i in range(1, 4)])


@pytest.fixture
def sample_orders():
    return [
        Order(
            country_code="DE",
            sku="SKU-001",
            order_number="ORD-1",
            order_status=OrderStatus.PAID,
            price=19.99,
            quantity=2,
            ordered_at=datetime(2024, 3, 1, 9, 30),
            paid_date=date(2024, 3, 2),
            product_name="Coffee mug",
        ),
        Order(
            country_code="FR",
            sku="SKU-002",
            order_number="ORD-2",
            order_status=OrderStatus.REFUND_REQUESTED,
            price=5.0,
            quantity=10,
        ),
        Order(
            country_code="US",
            sku="SKU-003",
            order_number="ORD-3",
            order_status=OrderStatus.EXCHANGED,
            price=120.5,
            quantity=1,
            ordered_at=datetime(2023, 12, 31, 23, 59, 59),
            product_name="=not a formula",
        ),
    ]
