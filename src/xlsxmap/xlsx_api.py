"""
Public API for reading and writing records.

This module provides the main entry points:
- read_xlsx: read a sheet into a list of Pydantic records
- write_xlsx: write records to a sheet with synthesized data validations
- build_validation_specs: the validation specs of a model without writing
"""

from collections.abc import Iterable, Sequence
from pathlib import Path

from pydantic import BaseModel

from .xlsx_common import XLSXFieldAnalyzer
from .xlsx_reader import XLSXReadSession
from .xlsx_validation import XLSXValidationSpec, build_validation_spec
from .xlsx_writer import HEADER_ROW, XLSXWriter


def read_xlsx(
    filepath: Path | str,
    model_class: type[BaseModel],
    essential_headers: Iterable[str] | None = None,
    sheet_name: str | None = None,
) -> list[BaseModel]:
    """Read all data rows of a sheet into records.

    Args:
        filepath: Path to the Excel file
        model_class: Pydantic model class of the records
        essential_headers: Header labels that must be present. Defaults to
            the model's ``xlsx_essential_headers`` class attribute.
        sheet_name: Optional sheet name (default: first sheet)

    Returns:
        Records in row order

    Raises:
        XLSXReaderError: the file cannot be read; XLSXAggregateReadError
            lists every cell that could not be mapped.
    """
    with XLSXReadSession(
        filepath, model_class, essential_headers, sheet_name
    ) as session:
        return session.read()


def write_xlsx(
    records: Sequence[BaseModel],
    filepath: Path | str,
    model_class: type[BaseModel] | None = None,
    sheet_name: str | None = None,
) -> None:
    """Write records to a sheet.

    Args:
        records: Records to write
        filepath: Path to save the Excel file
        model_class: Model class of the records. Required for an empty
            sequence, otherwise taken from the first record.
        sheet_name: Optional sheet name (default: model class name)
    """
    if model_class is None:
        if not records:
            msg = "No data provided for export"
            raise ValueError(msg)
        model_class = records[0].__class__

    XLSXWriter(model_class).write(records, filepath, sheet_name)


def build_validation_specs(
    model_class: type[BaseModel], first_data_row_index: int = HEADER_ROW
) -> dict[str, XLSXValidationSpec]:
    """Return the validation spec of every validated column by header label.

    ``first_data_row_index`` is the zero-based row of the first data cell,
    used to resolve CURRENT_CELL in formula templates.
    """
    specs = {}
    for col_idx, field_analysis in enumerate(
        XLSXFieldAnalyzer.analyze_model(model_class)
    ):
        spec = build_validation_spec(
            field_analysis.column, col_idx, first_data_row_index
        )
        if spec is not None:
            specs[field_analysis.header_name] = spec
    return specs
