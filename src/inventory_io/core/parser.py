"""CSV parser for equipment import files.

Overview:
--------
The CSVParser decodes an import file and turns each data line into a
``RawRow``: a 1-based data row number plus the stripped cell values keyed
by header name. Schema rules are not applied here; that is the job of the
``SchemaValidator``, which reports every field error of a row instead of
stopping at the first broken line.

CSV Format:
----------
UTF-8 (a byte-order mark is tolerated), header on the first non-empty line:
```
site_name,cell_name,cell_type,equipment_name,equipment_type,tag_id,...
Main Factory,Assembly Line 1,production,Robot Controller 1,controller,PLC-001,...
```

- Header names are matched exactly after trimming whitespace.
- Unknown extra columns are kept in ``RawRow.values`` and ignored later.
- Missing columns are reported by ``missing_columns``; rows still parse so
  every row gets its own "is required" error.
- Blank lines are skipped and do not consume a row number.
- Short lines are padded with empty cells, long lines are truncated.

Error Handling:
--------------
- FileNotFoundError: CSV file doesn't exist
- CSVValidationError: File is not UTF-8, has no header, or the csv module
  rejects its quoting
"""

import csv
import io
from pathlib import Path

import structlog

from ..constants import REQUIRED_COLUMNS
from ..models.import_row import RawRow
from ..utils.exceptions import CSVValidationError

logger = structlog.get_logger(__name__)


class CSVParser:
    """
    Parse CSV import content into RawRow objects.

    Features:
    - Column order doesn't matter (cells are keyed by header)
    - Whitespace is stripped from headers and cells
    - Empty cells become None
    """

    def __init__(self, source: bytes | str | Path, filename: str | None = None) -> None:
        """
        Initialize parser.

        Args:
            source: Raw file bytes, decoded text, or a path to read
            filename: Name used in logs (defaults to the path name)
        """
        self.source = source
        if filename is None and isinstance(source, Path):
            filename = source.name
        self.filename = filename or "upload.csv"
        self.headers: list[str] = []
        self.rows_parsed = 0

    @property
    def missing_columns(self) -> list[str]:
        """Required columns absent from the header, in canonical order."""
        return [column for column in REQUIRED_COLUMNS if column not in self.headers]

    def parse(self) -> list[RawRow]:
        """
        Parse the whole file.

        Returns:
            Data rows in file order

        Raises:
            CSVValidationError: If the content cannot be decoded or read as CSV
            FileNotFoundError: If a path source doesn't exist
        """
        text = self._read_text()
        logger.info("Starting CSV parse", filename=self.filename)

        reader = csv.reader(io.StringIO(text, newline=""))
        rows: list[RawRow] = []
        self.headers = []
        header_seen = False

        try:
            for record in reader:
                if not record or all(not cell.strip() for cell in record):
                    continue

                if not header_seen:
                    self.headers = [h.strip() for h in record]
                    header_seen = True
                    self._check_headers(reader.line_num)
                    continue

                if len(record) != len(self.headers):
                    logger.debug(
                        "Column count mismatch",
                        line=reader.line_num,
                        expected=len(self.headers),
                        actual=len(record),
                    )
                padded = record[: len(self.headers)]
                padded += [""] * (len(self.headers) - len(padded))

                values = {
                    header: (cell.strip() or None)
                    for header, cell in zip(self.headers, padded, strict=True)
                    if header
                }
                rows.append(RawRow(row_number=len(rows) + 1, values=values))
        except csv.Error as e:
            raise CSVValidationError(
                f"Malformed CSV: {e}", line_number=reader.line_num, original_error=e
            ) from e

        if not header_seen:
            raise CSVValidationError("CSV file is empty or has no header row")

        self.rows_parsed = len(rows)
        logger.info(
            "CSV parse complete",
            filename=self.filename,
            rows=len(rows),
            missing_columns=self.missing_columns,
        )
        return rows

    def _read_text(self) -> str:
        data = self.source
        if isinstance(data, Path):
            if not data.exists():
                raise FileNotFoundError(f"CSV file not found: {data}")
            data = data.read_bytes()
        if isinstance(data, str):
            return data.removeprefix("\ufeff")
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError as e:
            raise CSVValidationError(
                f"File is not valid UTF-8 (byte {e.start})", original_error=e
            ) from e

    def _check_headers(self, line_number: int) -> None:
        duplicates = {h for h in self.headers if h and self.headers.count(h) > 1}
        if duplicates:
            raise CSVValidationError(
                f"Duplicate column names: {', '.join(sorted(duplicates))}",
                line_number=line_number,
            )
        if self.missing_columns:
            logger.warning(
                "Required columns missing from header",
                filename=self.filename,
                missing=self.missing_columns,
            )


def parse_csv(source: bytes | str | Path, filename: str | None = None) -> list[RawRow]:
    """Parse content in one call."""
    return CSVParser(source, filename).parse()
