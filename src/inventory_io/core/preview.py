"""Import template and pre-upload preview."""

import csv
import io
from dataclasses import dataclass, field
from typing import Any

import structlog

from ..constants import IMPORT_COLUMNS, PREVIEW_ROW_LIMIT
from ..models.history import ErrorCode, RowError
from ..validation.validator import SchemaValidator
from .parser import CSVParser

logger = structlog.get_logger(__name__)

TEMPLATE_ROWS: tuple[dict[str, str], ...] = (
    {
        "site_name": "Main Factory",
        "cell_name": "Assembly Line 1",
        "cell_type": "production",
        "equipment_name": "Robot Controller 1",
        "equipment_type": "controller",
        "tag_id": "PLC-001",
        "description": "Main assembly robot controller",
        "make": "Allen-Bradley",
        "model": "ControlLogix 5580",
        "ip_address": "192.168.1.10",
        "firmware_version": "v20.13",
        "tags": "robot,assembly,critical",
    },
    {
        "site_name": "Main Factory",
        "cell_name": "Assembly Line 1",
        "cell_type": "production",
        "equipment_name": "Conveyor Controller",
        "equipment_type": "controller",
        "tag_id": "PLC-002",
        "description": "Conveyor belt speed controller",
        "make": "Siemens",
        "model": "S7-1500",
        "ip_address": "192.168.1.11",
        "firmware_version": "v4.5.1",
        "tags": "conveyor,transport",
    },
)


@dataclass
class ImportPreview:
    """
    First rows of an upload with their validation errors.

    Attributes:
        headers: Header row as read from the file
        rows: Raw values of the first ``limit`` rows
        errors: Header errors plus validation errors of the shown rows
        total_rows: Data rows in the whole file
    """

    headers: list[str]
    rows: list[dict[str, Any]] = field(default_factory=list)
    errors: list[RowError] = field(default_factory=list)
    total_rows: int = 0

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, Any]:
        return {
            "headers": self.headers,
            "rows": self.rows,
            "errors": [e.to_dict() for e in self.errors],
            "total_rows": self.total_rows,
            "is_valid": self.is_valid,
        }


def generate_template() -> bytes:
    """Return an import template: every column, two sample rows, all cells quoted."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(IMPORT_COLUMNS), quoting=csv.QUOTE_ALL)
    writer.writeheader()
    writer.writerows(TEMPLATE_ROWS)
    return buffer.getvalue().encode("utf-8")


def build_preview(content: bytes | str, limit: int = PREVIEW_ROW_LIMIT) -> ImportPreview:
    """
    Parse an upload and validate its first rows without touching storage.

    Args:
        content: File content
        limit: Number of rows to show

    Returns:
        ImportPreview

    Raises:
        CSVValidationError: If the file cannot be read as CSV
    """
    parser = CSVParser(content)
    rows = parser.parse()
    preview = ImportPreview(headers=list(parser.headers), total_rows=len(rows))

    if parser.missing_columns:
        preview.errors.append(
            RowError(
                row=None,
                field="headers",
                code=ErrorCode.VALIDATION_FAILED.value,
                message=f"Missing required columns: {', '.join(parser.missing_columns)}",
            )
        )

    shown = rows[:limit]
    preview.rows.extend(dict(raw.values) for raw in shown)
    preview.errors.extend(SchemaValidator().validate_all(shown).errors)

    logger.info(
        "Preview built",
        total_rows=preview.total_rows,
        shown=len(preview.rows),
        errors=len(preview.errors),
    )
    return preview
