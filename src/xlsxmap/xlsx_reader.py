"""
Reading worksheet rows into Pydantic records.

The reader is error tolerant: every cell that cannot be mapped to its field
is recorded as an XLSXErrorField and reading continues. All errors of a file
are raised together at the end of the read as XLSXAggregateReadError.
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta
from enum import Enum
from operator import attrgetter
from pathlib import Path
from typing import Any, NamedTuple

from openpyxl import load_workbook
from openpyxl.utils.datetime import from_excel
from pydantic import BaseModel, ValidationError

from xlsxmap import config
from xlsxmap.config import ReaderSettings

from .xlsx_common import (
    FieldAnalysis,
    LogicalType,
    XLSXAggregateReadError,
    XLSXCellParseError,
    XLSXFieldAnalyzer,
    XLSXFileExtensionError,
    XLSXInvalidCellTypeError,
    XLSXInvalidCellValueError,
    XLSXMissingEssentialHeadersError,
    XLSXReaderError,
    column_letters,
)

logger = logging.getLogger(__name__)


class ErrorKind(Enum):
    TYPE_MISMATCH = "type_mismatch"
    VALIDATION_FAILURE = "validation_failure"
    PARSE_FAILURE = "parse_failure"
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class XLSXErrorField:
    """A single cell (or row) that could not be mapped to its field."""

    kind: ErrorKind
    row_number: int
    field_name: str
    header_name: str
    raw_input: str | None
    message: str
    root_cause: str | None = None

    def __str__(self) -> str:
        return (
            f"Row {self.row_number}, column '{self.header_name}' "
            f"(field '{self.field_name}', input {self.raw_input!r}): "
            f"[{self.kind.value}] {self.message}"
        )


class HeaderEntry(NamedTuple):
    header_name: str
    column_index: int
    field: FieldAnalysis


HeaderMap = dict[str, HeaderEntry]


class CellValueExtractor:
    """Normalizes openpyxl cells to text.

    Works with regular cells, read-only cells, EmptyCell and None.
    """

    def extract(self, cell: Any) -> str:
        value = getattr(cell, "value", None)
        if value is None:
            return ""

        data_type = getattr(cell, "data_type", None)
        if data_type == "f":
            # Formula without cached result (workbook not opened data_only)
            return ""
        if data_type == "e":
            return str(value)
        if isinstance(value, bool):
            return "true" if value else "false"
        if isinstance(value, datetime | date | time):
            return value.isoformat()
        if isinstance(value, timedelta):
            return str(value)
        if isinstance(value, int | float):
            if getattr(cell, "is_date", False):
                return from_excel(value).isoformat()
            return self._format_number(value)
        return str(value)

    def is_date(self, cell: Any) -> bool:
        value = getattr(cell, "value", None)
        if isinstance(value, datetime | date):
            return True
        return isinstance(value, int | float) and getattr(cell, "is_date", False)

    def is_plain_number(self, cell: Any) -> bool:
        """True for numeric cells that are neither boolean nor date formatted."""
        value = getattr(cell, "value", None)
        return (
            isinstance(value, int | float)
            and not isinstance(value, bool)
            and getattr(cell, "data_type", "n") == "n"
            and not getattr(cell, "is_date", False)
        )

    @staticmethod
    def _format_number(value: int | float) -> str:
        text = str(value)
        # 42.0 -> 42
        return text.removesuffix(".0")


class HeaderResolver:
    """Maps the header row of a sheet to model fields by header label."""

    def __init__(self, extractor: CellValueExtractor | None = None):
        self.extractor = extractor or CellValueExtractor()

    def resolve(
        self,
        header_row: Iterable[Any],
        fields: Sequence[FieldAnalysis],
        essential_headers: Iterable[str] = frozenset(),
    ) -> HeaderMap:
        """Build the header map and check that all essential headers exist.

        Raises:
            XLSXMissingEssentialHeadersError: if essential headers are missing.
        """
        fields_by_header = {fa.header_name: fa for fa in fields}
        header_map: HeaderMap = {}

        for column_index, cell in enumerate(header_row):
            label = self.extractor.extract(cell)
            field_analysis = fields_by_header.get(label)
            if field_analysis is None:
                if label:
                    logger.debug(
                        'Ignoring unknown header "%s" in column %s.',
                        label,
                        column_letters(column_index),
                    )
                continue
            if label in header_map:
                logger.warning(
                    'Header "%s" found in columns %s and %s. Using column %s.',
                    label,
                    column_letters(header_map[label].column_index),
                    column_letters(column_index),
                    column_letters(column_index),
                )
            header_map[label] = HeaderEntry(label, column_index, field_analysis)

        missing = set(essential_headers) - header_map.keys()
        if missing:
            raise XLSXMissingEssentialHeadersError(missing)

        logger.debug(
            "Mapped headers: %s",
            ", ".join(
                f"{entry.header_name}={column_letters(entry.column_index)}"
                for entry in header_map.values()
            ),
        )
        return header_map


class RowMapper:
    """Maps one worksheet row to a record, collecting per-cell errors."""

    def __init__(
        self,
        model_class: type[BaseModel],
        header_map: HeaderMap,
        extractor: CellValueExtractor | None = None,
    ):
        self.model_class = model_class
        self.entries = sorted(header_map.values(), key=attrgetter("column_index"))
        self.extractor = extractor or CellValueExtractor()
        self.parsers = {
            LogicalType.TEXT: lambda text, fa: text,
            LogicalType.INTEGER: lambda text, fa: int(text),
            LogicalType.FLOAT: lambda text, fa: float(text),
            LogicalType.DATE: lambda text, fa: datetime.fromisoformat(text).date(),
            LogicalType.DATETIME: lambda text, fa: datetime.fromisoformat(text),
            LogicalType.BOOLEAN: lambda text, fa: self._parse_bool(text),
            LogicalType.ENUM: lambda text, fa: self._parse_enum(text, fa),
        }

    def map_row(
        self, row: Sequence[Any], row_number: int
    ) -> tuple[BaseModel, list[XLSXErrorField]]:
        """Map a row to a record.

        Never raises. If errors are returned, the record is an unvalidated
        instance holding the values that could be mapped.
        """
        values: dict[str, Any] = {}
        raw_inputs: dict[str, str] = {}
        errors: list[XLSXErrorField] = []

        for entry in self.entries:
            field_analysis = entry.field
            cell = row[entry.column_index] if entry.column_index < len(row) else None
            text = ""
            try:
                text = self.extractor.extract(cell)
                if not text:
                    if field_analysis.nullable and not field_analysis.has_default:
                        values[field_analysis.name] = None
                    continue
                self._check_cell_type(cell, field_analysis)
                values[field_analysis.name] = self._parse(text, field_analysis)
                raw_inputs[field_analysis.name] = text
                self._validate_field(values, field_analysis.name)
            except XLSXInvalidCellTypeError as exc:
                errors.append(
                    self._error(ErrorKind.TYPE_MISMATCH, entry, row_number, text, exc)
                )
            except XLSXCellParseError as exc:
                errors.append(
                    self._error(ErrorKind.PARSE_FAILURE, entry, row_number, text, exc)
                )
            except XLSXInvalidCellValueError as exc:
                errors.append(
                    self._error(
                        ErrorKind.VALIDATION_FAILURE, entry, row_number, text, exc
                    )
                )
            except Exception as exc:  # noqa: BLE001
                errors.append(
                    self._error(ErrorKind.UNKNOWN, entry, row_number, text, exc)
                )

        if errors:
            return self.model_class.model_construct(**values), errors
        return self._finalize(values, raw_inputs, row_number)

    def _check_cell_type(self, cell: Any, field_analysis: FieldAnalysis) -> None:
        logical_type = field_analysis.logical_type
        if logical_type is LogicalType.TEXT and (
            self.extractor.is_plain_number(cell) or self.extractor.is_date(cell)
        ):
            msg = "Numeric cell found where text is expected."
            raise XLSXInvalidCellTypeError(msg)
        if logical_type in (
            LogicalType.DATE,
            LogicalType.DATETIME,
        ) and not self.extractor.is_date(cell):
            msg = f"Date cell expected for field of type {logical_type.value}."
            raise XLSXInvalidCellTypeError(msg)

    def _parse(self, text: str, field_analysis: FieldAnalysis) -> Any:
        try:
            return self.parsers[field_analysis.logical_type](text, field_analysis)
        except ValueError as exc:
            msg = f"{exc} Field Type: {_type_name(field_analysis)}, Input Type: str"
            raise XLSXCellParseError(msg) from exc

    @staticmethod
    def _parse_bool(text: str) -> bool:
        lowered = text.strip().lower()
        if lowered not in ("true", "false"):
            msg = f"Invalid boolean value '{text}'."
            raise ValueError(msg)
        return lowered == "true"

    @staticmethod
    def _parse_enum(text: str, field_analysis: FieldAnalysis) -> Enum:
        enum_type = field_analysis.enum_type
        try:
            return enum_type[text]
        except KeyError:
            msg = f"'{text}' is not a member of {enum_type.__name__}."
            raise ValueError(msg) from None

    def _validate_field(self, values: dict[str, Any], field_name: str) -> None:
        """Validate the values mapped so far, reporting this field only."""
        try:
            self.model_class.model_validate(values)
        except ValidationError as exc:
            for error in exc.errors():
                if error["loc"] and error["loc"][0] == field_name:
                    raise XLSXInvalidCellValueError(error["msg"]) from _cause(error)

    def _finalize(
        self, values: dict[str, Any], raw_inputs: dict[str, str], row_number: int
    ) -> tuple[BaseModel, list[XLSXErrorField]]:
        """Validate the complete row, e.g. for required fields without column."""
        try:
            return self.model_class.model_validate(values), []
        except ValidationError as exc:
            headers = {entry.field.name: entry.header_name for entry in self.entries}
            errors = []
            for error in exc.errors():
                field_name = str(error["loc"][0]) if error["loc"] else ""
                cause = _cause(error)
                errors.append(
                    XLSXErrorField(
                        kind=ErrorKind.VALIDATION_FAILURE,
                        row_number=row_number,
                        field_name=field_name,
                        header_name=headers.get(field_name, field_name),
                        raw_input=raw_inputs.get(field_name),
                        message=error["msg"],
                        root_cause=str(cause) if cause else error["type"],
                    )
                )
            return self.model_class.model_construct(**values), errors
        except Exception as exc:  # noqa: BLE001
            error_field = XLSXErrorField(
                kind=ErrorKind.UNKNOWN,
                row_number=row_number,
                field_name="",
                header_name="",
                raw_input=None,
                message=str(exc),
                root_cause=repr(exc),
            )
            return self.model_class.model_construct(**values), [error_field]

    def _error(
        self,
        kind: ErrorKind,
        entry: HeaderEntry,
        row_number: int,
        text: str,
        exc: Exception,
    ) -> XLSXErrorField:
        cause = exc.__cause__ or exc
        return XLSXErrorField(
            kind=kind,
            row_number=row_number,
            field_name=entry.field.name,
            header_name=entry.header_name,
            raw_input=text,
            message=str(exc),
            root_cause=str(cause),
        )


def _cause(error: dict) -> BaseException | None:
    """Return the exception raised by a validator, if any."""
    cause = error.get("ctx", {}).get("error")
    return cause if isinstance(cause, BaseException) else None


def _type_name(field_analysis: FieldAnalysis) -> str:
    base_type = XLSXFieldAnalyzer.unwrap_optional(field_analysis.field_type)
    return getattr(base_type, "__name__", str(base_type))


class SessionState(Enum):
    OPENING = "opening"
    HEADER_RESOLVED = "header_resolved"
    READING = "reading"
    CLOSED = "closed"
    FAILED = "failed"


class XLSXReadSession:
    """Reads all rows of one worksheet into records of a model class.

    The session owns the workbook and closes it on every exit path. Use it
    as a context manager::

        with XLSXReadSession("orders.xlsx", Order) as session:
            orders = session.read()
    """

    def __init__(
        self,
        filepath: Path | str,
        model_class: type[BaseModel],
        essential_headers: Iterable[str] | None = None,
        sheet_name: str | None = None,
        settings: ReaderSettings | None = None,
    ):
        self.filepath = Path(filepath)
        self.model_class = model_class
        self.settings = settings or config.SETTINGS.reader
        if essential_headers is None:
            essential_headers = getattr(model_class, "xlsx_essential_headers", ())
        self.essential_headers = frozenset(essential_headers)
        self.sheet_name = sheet_name or self.settings.sheet_name
        self.extractor = CellValueExtractor()
        self.error_fields: list[XLSXErrorField] = []
        self.state = SessionState.OPENING
        self._workbook = None
        self._used = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()

    def read(self) -> list[BaseModel]:
        """Read all data rows.

        Raises:
            XLSXFileExtensionError: for files with a not allowed extension.
            XLSXReaderError: if the workbook or the sheet cannot be opened.
            XLSXMissingEssentialHeadersError: if essential headers are missing.
            XLSXAggregateReadError: if any cell could not be mapped.
        """
        if self._used:
            msg = "An XLSXReadSession can only be read once."
            raise RuntimeError(msg)
        self._used = True

        records: list[BaseModel] = []
        try:
            worksheet = self._open()
            rows = worksheet.iter_rows(min_row=self.settings.header_row)
            fields = XLSXFieldAnalyzer.analyze_model(self.model_class)
            header_map = HeaderResolver(self.extractor).resolve(
                next(rows, ()), fields, self.essential_headers
            )
            self.state = SessionState.HEADER_RESOLVED

            mapper = RowMapper(self.model_class, header_map, self.extractor)
            self.state = SessionState.READING
            for row_number, row in enumerate(rows, start=self.settings.header_row + 1):
                if self._is_blank(row):
                    continue
                record, errors = mapper.map_row(row, row_number)
                if errors:
                    self.error_fields.extend(errors)
                else:
                    records.append(record)
        except Exception:
            self.state = SessionState.FAILED
            raise
        finally:
            self.close()

        self.state = SessionState.CLOSED
        if self.error_fields:
            logger.error(
                'Reading "%s" failed with %i error(s).',
                self.filepath.name,
                len(self.error_fields),
            )
            raise XLSXAggregateReadError(self.error_fields)

        logger.debug("Read %i records from %s", len(records), self.filepath)
        return records

    def close(self) -> None:
        if self._workbook is not None:
            self._workbook.close()
            self._workbook = None
            logger.debug("Closed workbook %s", self.filepath)

    def _open(self):
        suffix = self.filepath.suffix.lower()
        if suffix not in self.settings.allowed_extensions:
            msg = (
                f'File "{self.filepath.name}" has an unsupported extension. '
                f"Allowed: {', '.join(self.settings.allowed_extensions)}"
            )
            raise XLSXFileExtensionError(msg)

        try:
            self._workbook = load_workbook(
                self.filepath,
                read_only=self.settings.read_only,
                data_only=self.settings.data_only,
            )
        except Exception as exc:  # noqa: BLE001
            msg = f'Cannot open workbook "{self.filepath}": {exc}'
            raise XLSXReaderError(msg) from exc
        logger.debug("Opened workbook %s", self.filepath)

        if self.sheet_name is None:
            return self._workbook.worksheets[0]
        if self.sheet_name not in self._workbook.sheetnames:
            msg = f"Sheet '{self.sheet_name}' not found in workbook"
            raise XLSXReaderError(msg)
        return self._workbook[self.sheet_name]

    def _is_blank(self, row: Sequence[Any]) -> bool:
        return all(not self.extractor.extract(cell) for cell in row)
