"""
Schema validation of parsed CSV rows.

Turns a ``RawRow`` into a frozen ``EquipmentRow`` or, when any field
breaks a rule, into one ``RowError`` per failing field. Pydantic collects
every field error in one pass, so nothing short-circuits.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field

import structlog
from pydantic import ValidationError as PydanticValidationError

from ..models.history import ErrorCode, RowError
from ..models.import_row import EquipmentRow, RawRow
from ..utils.exceptions import RowValidationError

logger = structlog.get_logger(__name__)


@dataclass
class ValidationReport:
    """Outcome of validating a batch of rows."""

    valid: list[EquipmentRow] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    checked: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.errors

    @property
    def failed_rows(self) -> int:
        return len({error.row for error in self.errors})


class SchemaValidator:
    """Validates raw rows against the EquipmentRow schema."""

    def validate(self, raw: RawRow) -> EquipmentRow | list[RowError]:
        """
        Validate one row.

        Args:
            raw: Parsed CSV row

        Returns:
            The validated row, or the list of field errors
        """
        try:
            return EquipmentRow.model_validate({**raw.values, "row_number": raw.row_number})
        except PydanticValidationError as e:
            errors = [self._to_row_error(raw.row_number, err) for err in e.errors()]
            logger.debug(
                "Row failed validation",
                row=raw.row_number,
                fields=[error.field for error in errors],
            )
            return errors

    def check(self, raw: RawRow) -> EquipmentRow:
        """
        Validate one row inside the import pipeline.

        Raises:
            RowValidationError: Carrying every field error of the row
        """
        result = self.validate(raw)
        if isinstance(result, EquipmentRow):
            return result
        raise RowValidationError(raw.row_number, result)

    def validate_all(self, rows: Iterable[RawRow]) -> ValidationReport:
        """Validate a batch without touching storage."""
        report = ValidationReport()
        for raw in rows:
            report.checked += 1
            result = self.validate(raw)
            if isinstance(result, EquipmentRow):
                report.valid.append(result)
            else:
                report.errors.extend(result)
        return report

    @staticmethod
    def _to_row_error(row_number: int, err: dict) -> RowError:
        loc = err.get("loc") or ("general",)
        value = err.get("input")
        return RowError(
            row=row_number,
            field=str(loc[0]),
            code=ErrorCode.VALIDATION_FAILED.value,
            message=err["msg"],
            value=None if value is None or value == "" else str(value),
        )
