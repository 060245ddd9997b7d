"""Inventory tables: sites, cells and equipment.

Database Schema:
---------------
```
sites (
    id          TEXT PRIMARY KEY,       -- uuid4
    name        TEXT NOT NULL,
    name_key    TEXT NOT NULL UNIQUE,   -- casefolded name, case-insensitive uniqueness
    created_at, updated_at, created_by, updated_by
)
cells (
    id          TEXT PRIMARY KEY,
    site_id     TEXT NOT NULL REFERENCES sites(id) ON DELETE RESTRICT,
    name        TEXT NOT NULL,
    name_key    TEXT NOT NULL,          -- UNIQUE (site_id, name_key)
    cell_type   TEXT,
    created_at, updated_at, created_by, updated_by
)
equipment (
    id               TEXT PRIMARY KEY,
    cell_id          TEXT NOT NULL REFERENCES cells(id) ON DELETE RESTRICT,
    name, equipment_type, tag_id, description, make, model,
    ip_address       TEXT UNIQUE,       -- canonical text form, NULL allowed
    firmware_version TEXT,
    tags             TEXT,              -- JSON array
    created_at, updated_at, created_by, updated_by
)
```

The UNIQUE constraints are the backstop for the resolver's lookup-or-create
and for the duplicate detector; violations surface as
``StorageConflictError``.
"""

import json
import uuid
from collections.abc import Sequence
from typing import Any

import structlog

from ..models.entities import Cell, Equipment, EquipmentRecord, Site
from ..models.history import EntityType
from ..models.options import ExportFilters
from .database import Database, format_timestamp, utc_timestamp

logger = structlog.get_logger(__name__)

SCHEMA = """
CREATE TABLE IF NOT EXISTS sites (
    id TEXT PRIMARY KEY,
    name TEXT NOT NULL,
    name_key TEXT NOT NULL UNIQUE,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    created_by TEXT,
    updated_by TEXT
);

CREATE TABLE IF NOT EXISTS cells (
    id TEXT PRIMARY KEY,
    site_id TEXT NOT NULL REFERENCES sites(id) ON DELETE RESTRICT,
    name TEXT NOT NULL,
    name_key TEXT NOT NULL,
    cell_type TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    created_by TEXT,
    updated_by TEXT,
    UNIQUE (site_id, name_key)
);

CREATE TABLE IF NOT EXISTS equipment (
    id TEXT PRIMARY KEY,
    cell_id TEXT NOT NULL REFERENCES cells(id) ON DELETE RESTRICT,
    name TEXT NOT NULL,
    equipment_type TEXT,
    tag_id TEXT NOT NULL,
    description TEXT NOT NULL,
    make TEXT NOT NULL,
    model TEXT NOT NULL,
    ip_address TEXT UNIQUE,
    firmware_version TEXT,
    tags TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL,
    created_by TEXT,
    updated_by TEXT
);

CREATE INDEX IF NOT EXISTS idx_cells_site_id ON cells(site_id);
CREATE INDEX IF NOT EXISTS idx_equipment_cell_id ON equipment(cell_id);
"""

_TABLES = {
    EntityType.SITE: "sites",
    EntityType.CELL: "cells",
    EntityType.EQUIPMENT: "equipment",
}

# Equipment columns a merge may write
EQUIPMENT_COLUMNS = (
    "name",
    "equipment_type",
    "tag_id",
    "description",
    "make",
    "model",
    "ip_address",
    "firmware_version",
    "tags",
)


def name_key(name: str) -> str:
    """Normalize a hierarchy name for case-insensitive matching."""
    return name.strip().casefold()


def _encode_tags(tags: Sequence[str] | None) -> str | None:
    return json.dumps(list(tags)) if tags else None


class InventoryStore:
    """
    CRUD access to the site -> cell -> equipment hierarchy.

    Writes do not open their own transaction; callers group them in
    ``Database.transaction()`` so a row's writes commit or roll back
    together.
    """

    def __init__(self, database: Database) -> None:
        self.db = database
        self.db.executescript(SCHEMA, operation="inventory_schema")

    # ------------------------------------------------------------------
    # Sites and cells
    # ------------------------------------------------------------------

    def find_sites_by_name(self, name: str) -> list[Site]:
        rows = self.db.query_all(
            "SELECT * FROM sites WHERE name_key = ?", (name_key(name),), operation="find_site"
        )
        return [Site.from_row(row) for row in rows]

    def insert_site(self, name: str, actor_id: str | None) -> Site:
        now = utc_timestamp()
        site = Site(
            id=str(uuid.uuid4()),
            name=name,
            created_at=now,
            updated_at=now,
            created_by=actor_id,
            updated_by=actor_id,
        )
        self.db.execute(
            """
            INSERT INTO sites (id, name, name_key, created_at, updated_at, created_by, updated_by)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (site.id, name, name_key(name), now, now, actor_id, actor_id),
            operation="insert_site",
        )
        logger.debug("Site created", site_id=site.id, name=name)
        return site

    def get_site(self, site_id: str) -> Site | None:
        row = self.db.query_one("SELECT * FROM sites WHERE id = ?", (site_id,), "get_site")
        return Site.from_row(row) if row else None

    def find_cells_by_name(self, site_id: str, name: str) -> list[Cell]:
        rows = self.db.query_all(
            "SELECT * FROM cells WHERE site_id = ? AND name_key = ?",
            (site_id, name_key(name)),
            operation="find_cell",
        )
        return [Cell.from_row(row) for row in rows]

    def insert_cell(
        self, site_id: str, name: str, cell_type: str | None, actor_id: str | None
    ) -> Cell:
        now = utc_timestamp()
        cell = Cell(
            id=str(uuid.uuid4()),
            site_id=site_id,
            name=name,
            cell_type=cell_type,
            created_at=now,
            updated_at=now,
            created_by=actor_id,
            updated_by=actor_id,
        )
        self.db.execute(
            """
            INSERT INTO cells (
                id, site_id, name, name_key, cell_type,
                created_at, updated_at, created_by, updated_by
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (cell.id, site_id, name, name_key(name), cell_type, now, now, actor_id, actor_id),
            operation="insert_cell",
        )
        logger.debug("Cell created", cell_id=cell.id, site_id=site_id, name=name)
        return cell

    def get_cell(self, cell_id: str) -> Cell | None:
        row = self.db.query_one("SELECT * FROM cells WHERE id = ?", (cell_id,), "get_cell")
        return Cell.from_row(row) if row else None

    # ------------------------------------------------------------------
    # Equipment
    # ------------------------------------------------------------------

    def find_equipment_by_ip(self, ip_address: str) -> Equipment | None:
        row = self.db.query_one(
            "SELECT * FROM equipment WHERE ip_address = ?", (ip_address,), "find_equipment_by_ip"
        )
        return Equipment.from_row(row) if row else None

    def get_equipment(self, equipment_id: str) -> Equipment | None:
        row = self.db.query_one(
            "SELECT * FROM equipment WHERE id = ?", (equipment_id,), "get_equipment"
        )
        return Equipment.from_row(row) if row else None

    def insert_equipment(
        self, cell_id: str, fields: dict[str, Any], actor_id: str | None
    ) -> Equipment:
        """
        Insert one equipment record.

        Args:
            cell_id: Owning cell
            fields: Values for EQUIPMENT_COLUMNS (missing keys become NULL)
            actor_id: Recorded as created_by/updated_by

        Returns:
            The stored equipment
        """
        now = utc_timestamp()
        equipment_id = str(uuid.uuid4())
        values = [fields.get(column) for column in EQUIPMENT_COLUMNS]
        values[EQUIPMENT_COLUMNS.index("tags")] = _encode_tags(fields.get("tags"))

        columns = ", ".join(EQUIPMENT_COLUMNS)
        placeholders = ", ".join("?" for _ in EQUIPMENT_COLUMNS)
        self.db.execute(
            f"""
            INSERT INTO equipment (
                id, cell_id, {columns}, created_at, updated_at, created_by, updated_by
            ) VALUES (?, ?, {placeholders}, ?, ?, ?, ?)
            """,
            (equipment_id, cell_id, *values, now, now, actor_id, actor_id),
            operation="insert_equipment",
        )
        logger.debug("Equipment created", equipment_id=equipment_id, cell_id=cell_id)
        return Equipment(
            id=equipment_id,
            cell_id=cell_id,
            name=fields["name"],
            equipment_type=fields.get("equipment_type"),
            tag_id=fields["tag_id"],
            description=fields["description"],
            make=fields["make"],
            model=fields["model"],
            ip_address=fields.get("ip_address"),
            firmware_version=fields.get("firmware_version"),
            tags=list(fields.get("tags") or []),
            created_at=now,
            updated_at=now,
            created_by=actor_id,
            updated_by=actor_id,
        )

    def update_equipment(
        self, equipment_id: str, changes: dict[str, Any], actor_id: str | None
    ) -> None:
        """
        Overwrite the given columns of one equipment record.

        Args:
            equipment_id: Record to update
            changes: Column -> new value; only ``cell_id`` and EQUIPMENT_COLUMNS
            actor_id: Recorded as updated_by
        """
        allowed = {"cell_id", *EQUIPMENT_COLUMNS}
        unknown = set(changes) - allowed
        if unknown:
            raise ValueError(f"Cannot update equipment columns: {sorted(unknown)}")

        values = dict(changes)
        if "tags" in values:
            values["tags"] = _encode_tags(values["tags"])
        values["updated_at"] = utc_timestamp()
        values["updated_by"] = actor_id

        assignments = ", ".join(f"{column} = ?" for column in values)
        self.db.execute(
            f"UPDATE equipment SET {assignments} WHERE id = ?",
            (*values.values(), equipment_id),
            operation="update_equipment",
        )

    # ------------------------------------------------------------------
    # Generic
    # ------------------------------------------------------------------

    def delete_entity(self, entity_type: EntityType, entity_id: str) -> bool:
        """
        Delete one entity by id.

        Returns:
            False if the entity did not exist

        Raises:
            StorageConflictError: If other rows still reference the entity
        """
        table = _TABLES[EntityType(entity_type)]
        cursor = self.db.execute(
            f"DELETE FROM {table} WHERE id = ?", (entity_id,), operation=f"delete_{entity_type}"
        )
        return cursor.rowcount > 0

    def entity_exists(self, entity_type: EntityType, entity_id: str) -> bool:
        table = _TABLES[EntityType(entity_type)]
        row = self.db.query_one(f"SELECT 1 FROM {table} WHERE id = ?", (entity_id,), "exists")
        return row is not None

    def counts(self) -> dict[str, int]:
        """Row counts per inventory table."""
        return {
            table: self.db.query_one(f"SELECT COUNT(*) FROM {table}", (), "count")[0]
            for table in _TABLES.values()
        }

    def fetch_equipment_page(
        self, filters: ExportFilters, after_rowid: int, limit: int
    ) -> list[tuple[int, EquipmentRecord]]:
        """
        Fetch one keyset page of equipment joined with cell and site.

        Only the id, type and date filters are applied here; address and
        tag filters are applied by the caller.

        Args:
            filters: Export filters
            after_rowid: Last rowid of the previous page (0 for the first)
            limit: Maximum records to return

        Returns:
            (rowid, record) pairs ordered by rowid
        """
        clauses = ["e.rowid > ?"]
        params: list[Any] = [after_rowid]

        def add_in(column: str, values: Any) -> None:
            if values is None:
                return
            items = sorted(v.value if hasattr(v, "value") else v for v in values)
            clauses.append(f"{column} IN ({', '.join('?' for _ in items)})")
            params.extend(items)

        add_in("s.id", filters.site_ids)
        add_in("c.id", filters.cell_ids)
        add_in("e.id", filters.equipment_ids)
        add_in("c.cell_type", filters.cell_types)
        add_in("e.equipment_type", filters.equipment_types)

        if filters.date_range:
            start = format_timestamp(filters.date_range.start)
            end = format_timestamp(filters.date_range.end)
            clauses.append(
                "((e.created_at BETWEEN ? AND ?) OR (e.updated_at BETWEEN ? AND ?))"
            )
            params.extend([start, end, start, end])

        where = " AND ".join(clauses)
        params.append(limit)
        rows = self.db.query_all(
            f"""
            SELECT e.rowid AS e_rowid, e.*,
                c.id AS c_id, c.site_id AS c_site_id, c.name AS c_name,
                c.cell_type AS c_cell_type, c.created_at AS c_created_at,
                c.updated_at AS c_updated_at, c.created_by AS c_created_by,
                c.updated_by AS c_updated_by,
                s.id AS s_id, s.name AS s_name, s.created_at AS s_created_at,
                s.updated_at AS s_updated_at, s.created_by AS s_created_by,
                s.updated_by AS s_updated_by
            FROM equipment e
            JOIN cells c ON c.id = e.cell_id
            JOIN sites s ON s.id = c.site_id
            WHERE {where}
            ORDER BY e.rowid
            LIMIT ?
            """,
            params,
            operation="export_page",
        )
        return [(row["e_rowid"], EquipmentRecord.from_row(row)) for row in rows]
