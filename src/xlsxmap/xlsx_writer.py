"""
Writing Pydantic records to a worksheet.

The sheet gets one header row, one row per record and one data validation
per column, synthesized from the XLSXColumn metadata of the model fields.
"""

import logging
import re
from collections.abc import Sequence
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any
from zipfile import BadZipFile

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import IllegalCharacterError, InvalidFileException
from openpyxl.workbook.defined_name import DefinedName
from openpyxl.worksheet.worksheet import Worksheet
from pydantic import BaseModel

from xlsxmap import config
from xlsxmap.config import WriterSettings

from .xlsx_common import (
    FieldAnalysis,
    LogicalType,
    ValidationKind,
    XLSXFieldAnalyzer,
    XLSXSerializationError,
    column_letters,
)
from .xlsx_validation import (
    build_validation_spec,
    inline_list_formula,
    to_data_validation,
)

logger = logging.getLogger(__name__)

HEADER_ROW = 1
VALIDATION_LISTS_SHEET = "_ValidationLists"

NUMBER_FORMATS = {
    LogicalType.TEXT: "@",
    LogicalType.INTEGER: "0",
    LogicalType.FLOAT: "0.0",
    LogicalType.DATE: "yyyy-mm-dd",
    LogicalType.DATETIME: "yyyy-mm-dd hh:mm:ss",
}


class XLSXWriter:
    """Writes records of one model class to XLSX."""

    def __init__(
        self, model_class: type[BaseModel], settings: WriterSettings | None = None
    ):
        self.model_class = model_class
        self.settings = settings or config.SETTINGS.writer
        self.fields = XLSXFieldAnalyzer.analyze_model(model_class)

    def write(
        self,
        records: Sequence[BaseModel],
        filepath: Path | str,
        sheet_name: str | None = None,
    ) -> None:
        """Write records to a sheet of the given file.

        An existing file is updated: only the target sheet is replaced.
        """
        filepath = Path(filepath)
        sheet_name = (
            sheet_name or self.settings.sheet_name or self.model_class.__name__
        )
        workbook, worksheet = self._prepare_workbook(filepath, sheet_name)
        self.write_sheet(worksheet, records)
        workbook.save(filepath)
        logger.debug(
            'Wrote %i records to sheet "%s" of %s', len(records), sheet_name, filepath
        )

    def write_sheet(self, worksheet: Worksheet, records: Sequence[BaseModel]) -> None:
        self._write_headers(worksheet)
        self._write_data_rows(worksheet, records)
        self._add_data_validations(worksheet, len(records))
        if self.settings.freeze_header:
            worksheet.freeze_panes = f"A{HEADER_ROW + 1}"

    def serialize_value(self, value: Any, field_analysis: FieldAnalysis) -> Any:
        """Convert a field value to a value openpyxl can store."""
        if value is None:
            return None
        # Enum members are written by name, the way list validations offer them.
        if isinstance(value, Enum):
            return value.name
        if isinstance(value, bool | int | float | str | date | datetime):
            return value
        return str(value)

    def _write_headers(self, worksheet: Worksheet) -> None:
        for col_idx, field_analysis in enumerate(self.fields, start=1):
            worksheet.cell(
                row=HEADER_ROW, column=col_idx, value=field_analysis.header_name
            )

    def _write_data_rows(
        self, worksheet: Worksheet, records: Sequence[BaseModel]
    ) -> None:
        for row_idx, record in enumerate(records, start=HEADER_ROW + 1):
            if not isinstance(record, self.model_class):
                msg = (
                    f"Expected {self.model_class.__name__} records, "
                    f"got {type(record).__name__} in row {row_idx}"
                )
                raise TypeError(msg)
            for col_idx, field_analysis in enumerate(self.fields, start=1):
                value = getattr(record, field_analysis.name, None)
                try:
                    cell_value = self.serialize_value(value, field_analysis)
                    if cell_value is None:
                        continue
                    cell = worksheet.cell(row=row_idx, column=col_idx, value=cell_value)
                    if isinstance(cell_value, str) and cell.data_type == "f":
                        # Text starting with "=" is data, not a formula.
                        cell.data_type = "s"
                    cell.number_format = NUMBER_FORMATS.get(
                        field_analysis.logical_type, "General"
                    )
                except (ValueError, TypeError, IllegalCharacterError) as e:
                    raise XLSXSerializationError(field_analysis.name, value, e) from e

    def _add_data_validations(self, worksheet: Worksheet, data_rows: int) -> None:
        """Add one data validation per column.

        The validations cover the data rows plus the pre-allocated empty rows.
        Lists that do not fit into an inline formula are moved to a hidden
        sheet and referenced by a named range.
        """
        first_row = HEADER_ROW + 1
        last_row = HEADER_ROW + data_rows + self.settings.validation_rows_pre_allocated
        if last_row < first_row:
            logger.debug("No rows to validate in sheet %s", worksheet.title)
            return

        for col_idx, field_analysis in enumerate(self.fields):
            spec = build_validation_spec(field_analysis.column, col_idx, first_row - 1)
            if spec is None or (
                spec.kind is ValidationKind.ANY and not spec.has_message
            ):
                continue

            list_formula = None
            if (
                spec.kind is ValidationKind.LIST
                and inline_list_formula(spec.allowed_values) is None
            ):
                list_formula = self._create_validation_list_range(
                    worksheet.parent, field_analysis.name, spec.allowed_values
                )

            dv = to_data_validation(spec, list_formula)
            worksheet.add_data_validation(dv)
            col_letter = column_letters(col_idx)
            dv.add(f"{col_letter}{first_row}:{col_letter}{last_row}")

    def _create_validation_list_range(
        self, workbook: Workbook, field_name: str, values: Sequence[str]
    ) -> str:
        """Write values to a column of the hidden list sheet and name the range.

        Returns:
            Name of the range, usable as list validation formula.
        """
        if VALIDATION_LISTS_SHEET not in workbook.sheetnames:
            hidden_sheet = workbook.create_sheet(VALIDATION_LISTS_SHEET)
            hidden_sheet.sheet_state = "hidden"
            hidden_sheet["A1"] = "Validation Lists (hidden)"
        else:
            hidden_sheet = workbook[VALIDATION_LISTS_SHEET]

        col_idx = hidden_sheet.max_column + 1
        col_letter = column_letters(col_idx - 1)
        for row_idx, value in enumerate(values, start=1):
            hidden_sheet.cell(row=row_idx, column=col_idx, value=value)

        range_name = "ValidationList_" + re.sub(r"[^a-zA-Z0-9_]", "_", field_name)
        range_ref = (
            f"'{VALIDATION_LISTS_SHEET}'!${col_letter}$1:${col_letter}${len(values)}"
        )
        # Replace the definition of a previous export
        if range_name in workbook.defined_names:
            del workbook.defined_names[range_name]
        workbook.defined_names[range_name] = DefinedName(
            name=range_name, attr_text=range_ref
        )
        return range_name

    def _prepare_workbook(
        self, filepath: Path, sheet_name: str
    ) -> tuple[Workbook, Worksheet]:
        """Create or load the workbook and replace the target sheet."""
        workbook = None
        if filepath.exists() and filepath.stat().st_size > 0:
            try:
                workbook = load_workbook(filepath)
            except (OSError, BadZipFile, InvalidFileException, KeyError):
                logger.warning(
                    'Cannot load "%s" as workbook. Creating a new one.', filepath
                )
        if workbook is None:
            workbook = Workbook()
            workbook.remove(workbook.active)

        # Keep the position of a replaced sheet, readers default to the first one.
        index = None
        if sheet_name in workbook.sheetnames:
            index = workbook.sheetnames.index(sheet_name)
            workbook.remove(workbook[sheet_name])

        worksheet = workbook.create_sheet(title=sheet_name, index=index)
        return workbook, worksheet
