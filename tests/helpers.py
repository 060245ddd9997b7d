"""Row and CSV builders shared by the unit and integration tests."""

import csv
import io
from typing import Any

from src.inventory_io.constants import IMPORT_COLUMNS
from src.inventory_io.models.import_row import EquipmentRow, RawRow


def make_values(**overrides: Any) -> dict[str, Any]:
    """Column values of a valid row; keyword overrides replace or add columns."""
    values: dict[str, Any] = {
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
        "tags": "robot,assembly",
    }
    values.update(overrides)
    return values


def make_raw(row_number: int = 1, **overrides: Any) -> RawRow:
    return RawRow(row_number=row_number, values=make_values(**overrides))


def make_row(row_number: int = 1, **overrides: Any) -> EquipmentRow:
    return EquipmentRow.model_validate({**make_values(**overrides), "row_number": row_number})


def make_csv(rows: list[dict[str, Any]], columns: tuple[str, ...] = IMPORT_COLUMNS) -> bytes:
    """Render rows as CSV bytes with a header line."""
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=list(columns), extrasaction="ignore")
    writer.writeheader()
    writer.writerows(rows)
    return buffer.getvalue().encode("utf-8")


def numbered_rows(count: int, start: int = 1, **overrides: Any) -> list[RawRow]:
    """``count`` valid rows with distinct tag ids and 10.x.y.z addresses."""
    rows = []
    for n in range(start, start + count):
        rows.append(
            make_raw(
                n,
                equipment_name=f"Sensor {n}",
                tag_id=f"TAG-{n:05d}",
                ip_address=f"10.{n // 65536}.{(n // 256) % 256}.{n % 256}",
                **overrides,
            )
        )
    return rows
