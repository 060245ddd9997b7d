"""Configuration constants for the inventory import/export pipeline.

Named constants for column layouts, field limits and job thresholds, kept
in one place so the parser, validator, exporter and CLI agree.
"""

# -----------------------------------------------------------------------------
# CSV Layout
# -----------------------------------------------------------------------------

# Column order of the import file (and of the flat CSV export)
IMPORT_COLUMNS: tuple[str, ...] = (
    "site_name",
    "cell_name",
    "cell_type",
    "equipment_name",
    "equipment_type",
    "tag_id",
    "description",
    "make",
    "model",
    "ip_address",
    "firmware_version",
    "tags",
)

# Columns every import file must carry
REQUIRED_COLUMNS: tuple[str, ...] = (
    "site_name",
    "cell_name",
    "equipment_name",
    "tag_id",
    "description",
    "make",
    "model",
)

# Human-readable labels used in validation messages
FIELD_LABELS: dict[str, str] = {
    "site_name": "Site name",
    "cell_name": "Cell name",
    "cell_type": "Cell type",
    "equipment_name": "Equipment name",
    "equipment_type": "Equipment type",
    "tag_id": "Tag ID",
    "description": "Description",
    "make": "Make",
    "model": "Model",
    "ip_address": "IP address",
    "firmware_version": "Firmware version",
    "tags": "Tags",
}

# Characters accepted between entries of the tags column
TAG_DELIMITERS: tuple[str, ...] = (",", ";")


# -----------------------------------------------------------------------------
# Field Limits
# -----------------------------------------------------------------------------

NAME_MAX_LENGTH: int = 100
FIRMWARE_MAX_LENGTH: int = 50


# -----------------------------------------------------------------------------
# Job Thresholds
# -----------------------------------------------------------------------------

# Files with at least this many rows are processed as a background task
BACKGROUND_ROW_THRESHOLD: int = 1000

# Progress notifications are sent every N processed rows
PROGRESS_INTERVAL: int = 100

# Rows shown by the import preview
PREVIEW_ROW_LIMIT: int = 10

# Seconds a storage call waits on a locked database before failing
DEFAULT_STORAGE_TIMEOUT: float = 5.0


# -----------------------------------------------------------------------------
# Pagination Limits
# -----------------------------------------------------------------------------

DEFAULT_HISTORY_PAGE_SIZE: int = 20
MAX_HISTORY_PAGE_SIZE: int = 100

# Equipment rows fetched per storage page during export
DEFAULT_EXPORT_PAGE_SIZE: int = 500


# -----------------------------------------------------------------------------
# Export Layout
# -----------------------------------------------------------------------------

HIERARCHY_COLUMNS: tuple[str, ...] = ("site_id", "cell_id", "equipment_id", "hierarchy_path")
AUDIT_COLUMNS: tuple[str, ...] = ("created_at", "updated_at", "created_by", "updated_by")

CONTENT_TYPES: dict[str, str] = {
    "csv": "text/csv; charset=utf-8",
    "json": "application/json",
}
