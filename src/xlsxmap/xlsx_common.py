"""
Common XLSX functionality shared by the reader and the writer.

This module contains shared infrastructure including:
- Exception classes
- Column metadata (XLSXColumn) and the enums it is built from
- Field analysis producing the per-model descriptor table
- Column letter addressing
"""

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from functools import cache
from types import UnionType
from typing import Annotated, Any, Union, get_args, get_origin

from pydantic import BaseModel

logger = logging.getLogger(__name__)

# Placeholder in formula templates, replaced by the address of the validated cell.
CURRENT_CELL = "CURRENT_CELL"
# Excel's limit for data validation formula length
EXCEL_DV_FORMULA_LIMIT = 255


# Exception classes
class XLSXReaderError(ValueError):
    """Raised when an XLSX file cannot be read into records."""

    def __init__(
        self,
        message: str = "An error occurred while reading an XLSX file.",
        error_fields: tuple = (),
    ):
        self.error_fields = tuple(error_fields)
        super().__init__(message)


class XLSXFileExtensionError(XLSXReaderError):
    """Raised when the file extension is not in the allow-list."""


class XLSXMissingEssentialHeadersError(XLSXReaderError):
    """Raised when the header row lacks headers declared as essential."""

    def __init__(self, missing: set[str] | frozenset[str]):
        self.missing = frozenset(missing)
        super().__init__(
            f"Essential headers are missing: {', '.join(sorted(self.missing))}"
        )


class XLSXAggregateReadError(XLSXReaderError):
    """Raised at the end of a read when any cell could not be mapped."""

    def __init__(self, error_fields):
        error_fields = tuple(error_fields)
        details = "\n".join(str(error_field) for error_field in error_fields)
        super().__init__(
            f"Found {len(error_fields)} invalid cell(s) while reading the XLSX file:\n"
            f"{details}",
            error_fields,
        )


class XLSXValidationConfigError(ValueError):
    """Raised when the validation metadata of a column is incomplete."""


class XLSXValidationListError(XLSXValidationConfigError):
    def __init__(
        self,
        message: str = "List validation requires validation_list or validation_enum.",
    ):
        super().__init__(message)


class XLSXValidationFormulaError(XLSXValidationConfigError):
    def __init__(
        self,
        message: str = "Formula validation requires a non-blank validation_formula.",
    ):
        super().__init__(message)


class XLSXValidationBoundsError(XLSXValidationConfigError):
    """Raised for integer or text length validation with missing or bad bounds."""


class XLSXSerializationError(ValueError):
    """Raised when a value cannot be written to a cell."""

    def __init__(self, field_name: str, value: Any, original_error: Exception):
        self.field_name = field_name
        self.value = value
        self.original_error = original_error
        super().__init__(
            f"Error serializing field '{field_name}' with value '{value}': {original_error}"
        )


# Per-cell errors. The row mapper catches them and records an error field.
class XLSXInvalidCellTypeError(ValueError):
    """Raised when the native cell type does not fit the field type."""


class XLSXCellParseError(ValueError):
    """Raised when cell text cannot be parsed into the field type."""


class XLSXInvalidCellValueError(ValueError):
    """Raised when a parsed value violates a validation rule of the field."""


# Metadata enums
class LogicalType(Enum):
    """Type a cell value is coerced to when reading."""

    TEXT = "text"
    INTEGER = "integer"
    FLOAT = "float"
    DATE = "date"
    DATETIME = "datetime"
    BOOLEAN = "boolean"
    ENUM = "enum"


class ValidationKind(Enum):
    """Kind of spreadsheet data validation attached to a column."""

    ANY = "any"
    LIST = "list"
    FORMULA = "formula"
    INTEGER = "integer"
    TEXT_LENGTH = "text_length"
    NONE = "none"


class ValidationOperator(Enum):
    """Comparison for integer and text length validation (openpyxl names)."""

    BETWEEN = "between"
    NOT_BETWEEN = "notBetween"
    EQUAL = "equal"
    NOT_EQUAL = "notEqual"
    LESS_THAN = "lessThan"
    LESS_THAN_OR_EQUAL = "lessThanOrEqual"
    GREATER_THAN = "greaterThan"
    GREATER_THAN_OR_EQUAL = "greaterThanOrEqual"


class ErrorSeverity(Enum):
    """Behaviour of Excel when a validation fails (openpyxl error styles)."""

    STOP = "stop"
    WARNING = "warning"
    INFO = "information"


_TWO_BOUND_OPERATORS = {ValidationOperator.BETWEEN, ValidationOperator.NOT_BETWEEN}


def _check_bounds(column: "XLSXColumn") -> None:
    """Check formula1/formula2 of integer and text length validations."""
    kind = column.validation_kind.value
    bounds = [column.formula1]
    if column.operator in _TWO_BOUND_OPERATORS:
        bounds.append(column.formula2)

    for bound in bounds:
        if not bound.strip():
            msg = (
                f"Validation '{kind}' with operator '{column.operator.value}' "
                f"requires {len(bounds)} bound(s)."
            )
            raise XLSXValidationBoundsError(msg)
        try:
            number = float(bound)
        except ValueError:
            # Cell references and formulas are passed through to Excel.
            continue
        if not number.is_integer():
            msg = f"Validation '{kind}' requires whole number bounds, got '{bound}'."
            raise XLSXValidationBoundsError(msg)


# Metadata and field analysis
@dataclass(frozen=True)
class XLSXColumn:
    """XLSX column metadata for Pydantic fields.

    Attach it to a field with ``Annotated[<type>, XLSXColumn(...)]``. Fields
    without it are mapped with defaults (header = field name, no validation
    rule besides the "any" prompt).
    """

    header_name: str | None = None
    logical_type: LogicalType | None = None
    validation_kind: ValidationKind = ValidationKind.ANY
    validation_list: tuple[str, ...] = ()
    validation_enum: type[Enum] | None = None
    validation_formula: str = ""
    operator: ValidationOperator = ValidationOperator.BETWEEN
    formula1: str = ""
    formula2: str = ""
    ignore_blank: bool = True
    prompt_title: str = ""
    prompt_text: str = ""
    error_title: str = ""
    error_text: str = ""
    error_severity: ErrorSeverity = ErrorSeverity.WARNING

    def __post_init__(self):
        # Lists are accepted for convenience but stored as tuple (hashable).
        object.__setattr__(
            self, "validation_list", tuple(str(v) for v in self.validation_list)
        )

        if self.validation_kind is ValidationKind.LIST and not (
            self.validation_list or (self.validation_enum and len(self.validation_enum))
        ):
            raise XLSXValidationListError
        if (
            self.validation_kind is ValidationKind.FORMULA
            and not self.validation_formula.strip()
        ):
            raise XLSXValidationFormulaError
        if self.validation_kind in (ValidationKind.INTEGER, ValidationKind.TEXT_LENGTH):
            _check_bounds(self)


@dataclass(frozen=True)
class FieldAnalysis:
    """Descriptor of one model field, derived once per model."""

    name: str
    field_type: Any
    logical_type: LogicalType
    nullable: bool = False
    has_default: bool = False
    enum_type: type[Enum] | None = None
    column: XLSXColumn = field(default_factory=XLSXColumn)

    @property
    def header_name(self) -> str:
        return self.column.header_name or self.name


_LOGICAL_TYPES = {
    str: LogicalType.TEXT,
    int: LogicalType.INTEGER,
    float: LogicalType.FLOAT,
    bool: LogicalType.BOOLEAN,
    date: LogicalType.DATE,
    datetime: LogicalType.DATETIME,
}


class XLSXFieldAnalyzer:
    """Analyzes Pydantic model fields for XLSX processing."""

    @staticmethod
    @cache
    def analyze_model(model: type[BaseModel]) -> tuple[FieldAnalysis, ...]:
        """Build the descriptor table of a model, in field declaration order.

        The result is cached, so the model is only inspected once.
        """
        if not (isinstance(model, type) and issubclass(model, BaseModel)):
            msg = f"Expected Pydantic BaseModel, got {model!r}"
            raise TypeError(msg)

        analyses = tuple(
            XLSXFieldAnalyzer.analyze_field(field_name, field_info)
            for field_name, field_info in model.model_fields.items()
        )

        headers: dict[str, str] = {}
        for field_analysis in analyses:
            other = headers.setdefault(field_analysis.header_name, field_analysis.name)
            if other != field_analysis.name:
                msg = (
                    f'Fields "{other}" and "{field_analysis.name}" of {model.__name__} '
                    f'use the same header "{field_analysis.header_name}".'
                )
                raise ValueError(msg)

        logger.debug(
            "Analyzed %i fields of %s: %s",
            len(analyses),
            model.__name__,
            ", ".join(fa.name for fa in analyses),
        )
        return analyses

    @staticmethod
    def analyze_field(field_name: str, field_info: Any) -> FieldAnalysis:
        """Analyze a single field in a Pydantic model."""
        field_type = field_info.annotation
        column = XLSXFieldAnalyzer.extract_xlsx_column(field_info) or XLSXColumn()
        base_type = XLSXFieldAnalyzer.unwrap_optional(field_type)

        enum_type = None
        if isinstance(base_type, type) and issubclass(base_type, Enum):
            enum_type = base_type

        logical_type = column.logical_type
        if logical_type is None:
            if enum_type is not None:
                logical_type = LogicalType.ENUM
            else:
                logical_type = _LOGICAL_TYPES.get(base_type)
        if logical_type is None:
            msg = (
                f"Cannot map field '{field_name}' of type {field_type} to a column. "
                "Declare a logical_type in its XLSXColumn metadata."
            )
            raise TypeError(msg)
        if logical_type is LogicalType.ENUM and enum_type is None:
            msg = f"Field '{field_name}' is declared as enum but has type {field_type}."
            raise TypeError(msg)

        return FieldAnalysis(
            name=field_name,
            field_type=field_type,
            logical_type=logical_type,
            nullable=XLSXFieldAnalyzer.is_optional_type(field_type),
            has_default=not field_info.is_required(),
            enum_type=enum_type,
            column=column,
        )

    @staticmethod
    def is_optional_type(field_type: Any) -> bool:
        """Check if a type is Optional (Union with None)."""
        # typing.Union[X, None] and the Python 3.10+ syntax X | None
        if get_origin(field_type) in (Union, UnionType):
            args = get_args(field_type)
            return len(args) == 2 and type(None) in args  # noqa: PLR2004
        return False

    @staticmethod
    def unwrap_optional(field_type: Any) -> Any:
        """Return X for Optional[X], otherwise the type itself."""
        if XLSXFieldAnalyzer.is_optional_type(field_type):
            return next(arg for arg in get_args(field_type) if arg is not type(None))
        return field_type

    @staticmethod
    def extract_xlsx_column(field_info: Any) -> XLSXColumn | None:
        """Extract XLSX column metadata from field info."""
        # Pydantic v2 moves Annotated metadata to field_info.metadata
        for metadata_item in getattr(field_info, "metadata", None) or []:
            if isinstance(metadata_item, XLSXColumn):
                return metadata_item

        # Fallback: the annotation may still be Annotated
        annotation = getattr(field_info, "annotation", None)
        if get_origin(annotation) is Annotated:
            for metadata_item in get_args(annotation)[1:]:
                if isinstance(metadata_item, XLSXColumn):
                    return metadata_item

        return None


# Column addressing
def column_letters(index: int) -> str:
    """Convert a zero-based column index to letters (0 -> A, 26 -> AA).

    Bijective base-26 numbering, there is no zero digit.
    """
    if index < 0:
        msg = f"Column index must not be negative, got {index}."
        raise ValueError(msg)

    letters = ""
    while index >= 0:
        index, remainder = divmod(index, 26)
        letters = chr(ord("A") + remainder) + letters
        index -= 1
    return letters


def column_index(letters: str) -> int:
    """Convert column letters to a zero-based column index (AA -> 26).

    Public helper for callers that address columns by letter, the inverse of
    column_letters.
    """
    if not letters or not letters.isascii() or not letters.isalpha():
        msg = f"Invalid column letters '{letters}'."
        raise ValueError(msg)

    index = 0
    for char in letters.upper():
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index - 1
