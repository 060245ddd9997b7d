"""Data models for the inventory import/export pipeline."""

from .entities import Cell, Equipment, EquipmentRecord, Site
from .history import (
    EntityAction,
    EntityType,
    ErrorCode,
    HistoryPage,
    ImportHistory,
    ImportStatus,
    LedgerEntity,
    RollbackResult,
    RowError,
)
from .import_row import CellType, EquipmentRow, EquipmentType, RawRow
from .options import (
    DateRange,
    ExportFilters,
    ExportFormat,
    ExportOptions,
    HistoryQuery,
    ImportOptions,
    MergeStrategy,
)

__all__ = [
    # Rows
    "RawRow",
    "EquipmentRow",
    "CellType",
    "EquipmentType",
    # Entities
    "Site",
    "Cell",
    "Equipment",
    "EquipmentRecord",
    # Options
    "ImportOptions",
    "MergeStrategy",
    "ExportFilters",
    "ExportFormat",
    "ExportOptions",
    "DateRange",
    "HistoryQuery",
    # History
    "ImportStatus",
    "ErrorCode",
    "EntityType",
    "EntityAction",
    "RowError",
    "LedgerEntity",
    "ImportHistory",
    "HistoryPage",
    "RollbackResult",
]
