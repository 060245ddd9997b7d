"""Unit tests for the CSV parser."""

from pathlib import Path

import pytest

from src.inventory_io.core.parser import CSVParser, parse_csv
from src.inventory_io.utils.exceptions import CSVValidationError

HEADER = (
    "site_name,cell_name,cell_type,equipment_name,equipment_type,tag_id,"
    "description,make,model,ip_address,firmware_version,tags"
)


class TestCSVParser:
    """Test parsing of import files."""

    def test_parse_rows(self):
        content = (
            HEADER
            + "\nMain Factory,Line 1,production,Robot 1,robot,R-1,Arm,ABB,IRB 6700,10.0.0.1,v1,\"a,b\"\n"
        ).encode()

        rows = parse_csv(content)

        assert len(rows) == 1
        assert rows[0].row_number == 1
        assert rows[0].get("site_name") == "Main Factory"
        assert rows[0].get("tags") == "a,b"
        assert rows[0].get("firmware_version") == "v1"

    def test_empty_cells_become_none(self):
        content = (HEADER + "\nMain,Line 1,,Robot 1,,R-1,Arm,ABB,IRB,,,\n").encode()

        [row] = parse_csv(content)

        assert row.get("cell_type") is None
        assert row.get("ip_address") is None

    def test_whitespace_stripped(self):
        content = ("  site_name , cell_name \n  Main Factory ,  Line 1 \n").encode()
        parser = CSVParser(content)

        [row] = parser.parse()

        assert parser.headers == ["site_name", "cell_name"]
        assert row.values == {"site_name": "Main Factory", "cell_name": "Line 1"}

    def test_blank_lines_skipped_without_consuming_numbers(self):
        content = ("\n\nsite_name,cell_name\nA,B\n\n ,  \nC,D\n").encode()

        rows = parse_csv(content)

        assert [r.row_number for r in rows] == [1, 2]
        assert rows[1].get("site_name") == "C"

    def test_short_row_padded_long_row_truncated(self):
        content = ("site_name,cell_name,make\nA\nB,C,D,E,F\n").encode()

        rows = parse_csv(content)

        assert rows[0].values == {"site_name": "A", "cell_name": None, "make": None}
        assert rows[1].values == {"site_name": "B", "cell_name": "C", "make": "D"}

    def test_utf8_bom_tolerated(self):
        content = "\ufeffsite_name,cell_name\nUsine Münster,Zelle 1\n".encode()
        parser = CSVParser(content)

        [row] = parser.parse()

        assert parser.headers[0] == "site_name"
        assert row.get("site_name") == "Usine Münster"

    def test_str_source(self):
        rows = CSVParser("site_name\nA\n").parse()
        assert rows[0].get("site_name") == "A"

    def test_path_source(self, tmp_path: Path):
        csv_file = tmp_path / "equipment.csv"
        csv_file.write_text("site_name\nA\n")
        parser = CSVParser(csv_file)

        parser.parse()

        assert parser.filename == "equipment.csv"
        assert parser.rows_parsed == 1

    def test_missing_path(self, tmp_path: Path):
        with pytest.raises(FileNotFoundError):
            CSVParser(tmp_path / "missing.csv").parse()

    def test_missing_columns_reported(self):
        parser = CSVParser("site_name,cell_name,make\nA,B,C\n")
        parser.parse()

        assert parser.missing_columns == ["equipment_name", "tag_id", "description", "model"]

    def test_extra_columns_kept(self):
        [row] = parse_csv("site_name,notes\nA,hello\n")
        assert row.get("notes") == "hello"


class TestCSVParserErrors:
    """Test file-level failures."""

    def test_empty_file(self):
        with pytest.raises(CSVValidationError, match="empty"):
            parse_csv(b"")

    def test_only_blank_lines(self):
        with pytest.raises(CSVValidationError):
            parse_csv(b"\n \n\n")

    def test_not_utf8(self):
        with pytest.raises(CSVValidationError, match="not valid UTF-8"):
            parse_csv("site_name\nMünster\n".encode("latin-1"))

    def test_duplicate_headers(self):
        with pytest.raises(CSVValidationError, match="Duplicate column names: site_name"):
            parse_csv(b"site_name,site_name\nA,B\n")

    def test_header_only(self):
        assert parse_csv(HEADER.encode()) == []
