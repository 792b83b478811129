"""
Synthesis of spreadsheet data validations from column metadata.

The functions here turn the declarative rules of an XLSXColumn into an
XLSXValidationSpec for one concrete column position, and convert such a spec
into an openpyxl DataValidation.
"""

import logging
from dataclasses import dataclass

from openpyxl.worksheet.datavalidation import DataValidation

from .xlsx_common import (
    CURRENT_CELL,
    EXCEL_DV_FORMULA_LIMIT,
    ErrorSeverity,
    ValidationKind,
    ValidationOperator,
    XLSXColumn,
    XLSXValidationFormulaError,
    XLSXValidationListError,
    column_letters,
)

logger = logging.getLogger(__name__)

LIST_ERROR_PREFIX = "One of the following values is required. "

# openpyxl DataValidation types per validation kind (None = any value)
_DV_TYPES = {
    ValidationKind.ANY: None,
    ValidationKind.LIST: "list",
    ValidationKind.FORMULA: "custom",
    ValidationKind.INTEGER: "whole",
    ValidationKind.TEXT_LENGTH: "textLength",
}


@dataclass(frozen=True)
class XLSXValidationSpec:
    """Concrete validation constraint for one column."""

    kind: ValidationKind
    allowed_values: tuple[str, ...] = ()
    formula1: str | None = None
    formula2: str | None = None
    operator: ValidationOperator | None = None
    allow_blank: bool = True
    prompt_title: str = ""
    prompt_text: str = ""
    error_title: str = ""
    error_text: str = ""
    severity: ErrorSeverity = ErrorSeverity.WARNING

    @property
    def has_message(self) -> bool:
        return bool(
            self.prompt_title or self.prompt_text or self.error_title or self.error_text
        )


def resolve_allowed_values(column: XLSXColumn) -> tuple[str, ...]:
    """Return the allowed values of a list validation.

    An explicit validation_list wins over validation_enum, whose member
    names are used otherwise.
    """
    if column.validation_list:
        return column.validation_list
    if column.validation_enum is not None and len(column.validation_enum):
        return tuple(member.name for member in column.validation_enum)
    raise XLSXValidationListError


def resolve_formula(column: XLSXColumn, column_index: int, row_index: int) -> str:
    """Substitute the address of the given cell for every CURRENT_CELL.

    Both indices are zero-based, so column 0 / row 0 is cell A1.
    """
    template = column.validation_formula
    if not template.strip():
        raise XLSXValidationFormulaError
    address = f"{column_letters(column_index)}{row_index + 1}"
    return template.replace(CURRENT_CELL, address)


def resolve_error_text(column: XLSXColumn) -> str:
    if column.validation_kind is ValidationKind.LIST:
        return LIST_ERROR_PREFIX + ", ".join(resolve_allowed_values(column))
    return column.error_text


def resolve_prompt_text(column: XLSXColumn) -> str:
    """Return the input prompt shown when a cell of the column is selected.

    First non-empty of: prompt text, error text, prompt title, error text.
    """
    error_text = resolve_error_text(column)
    for candidate in (column.prompt_text, error_text, column.prompt_title):
        if candidate:
            return candidate
    return error_text


def build_validation_spec(
    column: XLSXColumn, column_index: int, row_index: int
) -> XLSXValidationSpec | None:
    """Build the validation spec of a column whose first data cell is given.

    Returns None for columns without validation (kind NONE).
    """
    kind = column.validation_kind
    if kind is ValidationKind.NONE:
        return None

    allowed_values: tuple[str, ...] = ()
    formula1 = formula2 = None
    operator = None
    if kind is ValidationKind.LIST:
        allowed_values = resolve_allowed_values(column)
    elif kind is ValidationKind.FORMULA:
        formula1 = resolve_formula(column, column_index, row_index)
    elif kind in (ValidationKind.INTEGER, ValidationKind.TEXT_LENGTH):
        operator = column.operator
        formula1 = column.formula1
        if operator in (ValidationOperator.BETWEEN, ValidationOperator.NOT_BETWEEN):
            formula2 = column.formula2

    return XLSXValidationSpec(
        kind=kind,
        allowed_values=allowed_values,
        formula1=formula1,
        formula2=formula2,
        operator=operator,
        allow_blank=column.ignore_blank,
        prompt_title=column.prompt_title,
        prompt_text=resolve_prompt_text(column),
        error_title=column.error_title,
        error_text=resolve_error_text(column),
        severity=column.error_severity,
    )


def inline_list_formula(values: tuple[str, ...]) -> str | None:
    """Return the inline formula of a value list, if Excel can store it.

    Returns None when the list is too long or a value contains a separator
    or quote character.
    """
    if any("," in value or '"' in value for value in values):
        return None
    formula = f'"{",".join(values)}"'
    if len(formula) > EXCEL_DV_FORMULA_LIMIT:
        return None
    return formula


def _fit_message(text: str) -> str | None:
    """Cut a prompt or error message to Excel's length limit."""
    if not text:
        return None
    if len(text) > EXCEL_DV_FORMULA_LIMIT:
        logger.debug("Shortening validation message: %s", text)
        return text[: EXCEL_DV_FORMULA_LIMIT - 3] + "..."
    return text


def to_data_validation(
    spec: XLSXValidationSpec, list_formula: str | None = None
) -> DataValidation:
    """Convert a validation spec into an openpyxl DataValidation.

    Args:
        spec: The validation spec.
        list_formula: Formula to use for list validations instead of the
            inline value list, e.g. a named range on a hidden sheet.
    """
    formula1 = spec.formula1
    if spec.kind is ValidationKind.LIST:
        formula1 = list_formula or inline_list_formula(spec.allowed_values)
        if formula1 is None:
            msg = (
                "Allowed values cannot be stored as inline list "
                f"(max. {EXCEL_DV_FORMULA_LIMIT} characters, no commas or quotes). "
                "Pass a range reference as list_formula."
            )
            raise XLSXValidationListError(msg)
    elif spec.kind is ValidationKind.FORMULA and formula1 is not None:
        formula1 = formula1.removeprefix("=")

    return DataValidation(
        type=_DV_TYPES[spec.kind],
        operator=spec.operator.value if spec.operator else None,
        formula1=formula1,
        formula2=spec.formula2,
        allow_blank=spec.allow_blank,
        showErrorMessage=True,
        showInputMessage=True,
        errorStyle=spec.severity.value,
        errorTitle=_fit_message(spec.error_title),
        error=_fit_message(spec.error_text),
        promptTitle=_fit_message(spec.prompt_title),
        prompt=_fit_message(spec.prompt_text),
    )
