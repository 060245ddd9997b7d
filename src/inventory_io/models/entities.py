"""Inventory hierarchy entities: Site -> Cell -> Equipment."""

import json
import sqlite3
from dataclasses import dataclass, field


@dataclass
class Site:
    id: str
    name: str
    created_at: str
    updated_at: str
    created_by: str | None = None
    updated_by: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Site":
        return cls(
            id=row["id"],
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
        )


@dataclass
class Cell:
    id: str
    site_id: str
    name: str
    created_at: str
    updated_at: str
    cell_type: str | None = None
    created_by: str | None = None
    updated_by: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Cell":
        return cls(
            id=row["id"],
            site_id=row["site_id"],
            name=row["name"],
            cell_type=row["cell_type"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
        )


@dataclass
class Equipment:
    id: str
    cell_id: str
    name: str
    tag_id: str
    description: str
    make: str
    model: str
    created_at: str
    updated_at: str
    equipment_type: str | None = None
    ip_address: str | None = None
    firmware_version: str | None = None
    tags: list[str] = field(default_factory=list)
    created_by: str | None = None
    updated_by: str | None = None

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "Equipment":
        return cls(
            id=row["id"],
            cell_id=row["cell_id"],
            name=row["name"],
            equipment_type=row["equipment_type"],
            tag_id=row["tag_id"],
            description=row["description"],
            make=row["make"],
            model=row["model"],
            ip_address=row["ip_address"],
            firmware_version=row["firmware_version"],
            tags=json.loads(row["tags"]) if row["tags"] else [],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            created_by=row["created_by"],
            updated_by=row["updated_by"],
        )


@dataclass
class EquipmentRecord:
    """Equipment joined with its cell and site, as read by the exporter."""

    equipment: Equipment
    cell: Cell
    site: Site

    @property
    def hierarchy_path(self) -> str:
        return f"{self.site.name}/{self.cell.name}/{self.equipment.name}"

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> "EquipmentRecord":
        """Build from a joined row whose cell/site columns are prefixed c_/s_."""
        cell = Cell(
            id=row["c_id"],
            site_id=row["c_site_id"],
            name=row["c_name"],
            cell_type=row["c_cell_type"],
            created_at=row["c_created_at"],
            updated_at=row["c_updated_at"],
            created_by=row["c_created_by"],
            updated_by=row["c_updated_by"],
        )
        site = Site(
            id=row["s_id"],
            name=row["s_name"],
            created_at=row["s_created_at"],
            updated_at=row["s_updated_at"],
            created_by=row["s_created_by"],
            updated_by=row["s_updated_by"],
        )
        return cls(equipment=Equipment.from_row(row), cell=cell, site=site)
