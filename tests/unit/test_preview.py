"""Unit tests for the import template and preview."""

import csv
import io

import pytest

from src.inventory_io.constants import IMPORT_COLUMNS
from src.inventory_io.core.parser import parse_csv
from src.inventory_io.core.preview import build_preview, generate_template
from src.inventory_io.utils.exceptions import CSVValidationError
from src.inventory_io.validation.validator import SchemaValidator
from tests.helpers import make_csv, make_values


class TestTemplate:
    def test_columns_and_sample_rows(self):
        content = generate_template().decode("utf-8")

        rows = list(csv.DictReader(io.StringIO(content)))

        assert tuple(rows[0]) == IMPORT_COLUMNS
        assert len(rows) == 2
        assert rows[0]["site_name"] == "Main Factory"
        assert content.startswith('"site_name","cell_name"')

    def test_template_rows_are_valid(self):
        validator = SchemaValidator()
        report = validator.validate_all(parse_csv(generate_template()))

        assert report.is_valid
        assert len(report.valid) == 2


class TestPreview:
    def test_valid_file(self, sample_csv):
        preview = build_preview(sample_csv)

        assert preview.is_valid
        assert preview.total_rows == 2
        assert preview.headers == list(IMPORT_COLUMNS)
        assert preview.rows[1]["tag_id"] == "PLC-002"

    def test_limit(self):
        content = make_csv([make_values(tag_id=f"T-{n}") for n in range(25)])

        preview = build_preview(content)

        assert preview.total_rows == 25
        assert len(preview.rows) == 10

    def test_errors_only_for_shown_rows(self):
        rows = [make_values() for _ in range(12)]
        rows[2]["tag_id"] = None
        rows[11]["make"] = None

        preview = build_preview(make_csv(rows))

        assert [(e.row, e.field) for e in preview.errors] == [(3, "tag_id")]

    def test_missing_columns(self):
        content = make_csv([make_values()], columns=("site_name", "cell_name", "tag_id"))

        preview = build_preview(content)

        header_error = preview.errors[0]
        assert header_error.row is None
        assert header_error.field == "headers"
        assert header_error.message == (
            "Missing required columns: equipment_name, description, make, model"
        )
        assert preview.is_valid is False

    def test_to_dict(self, sample_csv):
        data = build_preview(sample_csv).to_dict()
        assert data["is_valid"] is True
        assert data["errors"] == []

    def test_unreadable_file(self):
        with pytest.raises(CSVValidationError):
            build_preview(b"")
