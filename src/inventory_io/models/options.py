"""Caller-supplied options for imports, exports and history queries."""

from datetime import datetime, timezone
from enum import Enum
from ipaddress import IPv4Network, IPv6Network, ip_network

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..constants import DEFAULT_HISTORY_PAGE_SIZE, MAX_HISTORY_PAGE_SIZE
from .history import ImportStatus
from .import_row import CellType, EquipmentType


def as_utc(value: datetime | None) -> datetime | None:
    """Naive datetimes are taken as UTC so they compare with aware ones."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class MergeStrategy(str, Enum):
    """What to do when a row's IP address already belongs to existing equipment."""

    SKIP = "skip"  # Fail the row with DuplicateIp, write nothing
    UPDATE = "update"  # Overwrite with the row's non-empty fields
    REPLACE = "replace"  # Overwrite every field, clearing empty optionals


class ExportFormat(str, Enum):
    """Output formats for inventory exports."""

    CSV = "csv"
    JSON = "json"


class ImportOptions(BaseModel):
    """
    Options for one import job.

    Snapshotted into the history record when the job starts.
    """

    model_config = ConfigDict(frozen=True)

    create_missing: bool = False
    merge_strategy: MergeStrategy = MergeStrategy.SKIP
    validate_only: bool = False
    actor_id: str = "system"

    def snapshot(self) -> dict:
        return self.model_dump(mode="json")


class DateRange(BaseModel):
    """Inclusive date range on created_at/updated_at."""

    model_config = ConfigDict(frozen=True)

    start: datetime
    end: datetime

    @field_validator("start", "end", mode="after")
    @classmethod
    def assume_utc(cls, v: datetime) -> datetime:
        return as_utc(v)

    @model_validator(mode="after")
    def check_order(self) -> "DateRange":
        if self.end < self.start:
            raise ValueError("End date must be on or after start date")
        return self


class ExportFilters(BaseModel):
    """
    Filters for an inventory export.

    Categories are combined with AND; values inside one set are combined
    with OR. An unset filter matches everything.
    """

    model_config = ConfigDict(frozen=True)

    site_ids: frozenset[str] | None = None
    cell_ids: frozenset[str] | None = None
    equipment_ids: frozenset[str] | None = None
    cell_types: frozenset[CellType] | None = None
    equipment_types: frozenset[EquipmentType] | None = None
    date_range: DateRange | None = None
    ip_range: str | None = None
    tags: frozenset[str] | None = None

    @field_validator(
        "site_ids", "cell_ids", "equipment_ids", "cell_types", "equipment_types", "tags",
        mode="before",
    )
    @classmethod
    def empty_set_is_unset(cls, v):
        # An empty list from a form means "no filter", not "match nothing"
        if v is None or len(v) == 0:
            return None
        return v

    @field_validator("cell_types", "equipment_types", mode="before")
    @classmethod
    def lowercase_types(cls, v):
        if v is None:
            return v
        return [item.lower() if isinstance(item, str) else item for item in v]

    @field_validator("ip_range")
    @classmethod
    def validate_ip_range(cls, v: str | None) -> str | None:
        """Accept an IPv4 or IPv6 CIDR; host bits must be zero."""
        if v is None:
            return v
        try:
            return str(ip_network(v.strip(), strict=True))
        except ValueError as e:
            raise ValueError(f"Invalid CIDR range: {v}") from e

    @property
    def network(self) -> IPv4Network | IPv6Network | None:
        return ip_network(self.ip_range) if self.ip_range else None


class ExportOptions(BaseModel):
    """Output shape of an inventory export."""

    model_config = ConfigDict(frozen=True)

    format: ExportFormat = ExportFormat.CSV
    include_hierarchy: bool = True
    include_tags: bool = True
    include_audit_info: bool = False


class HistoryQuery(BaseModel):
    """Paging and filters for the import history listing."""

    model_config = ConfigDict(frozen=True)

    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=DEFAULT_HISTORY_PAGE_SIZE, ge=1, le=MAX_HISTORY_PAGE_SIZE)
    status: ImportStatus | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    actor_id: str | None = None

    @field_validator("start_date", "end_date", mode="after")
    @classmethod
    def assume_utc(cls, v: datetime | None) -> datetime | None:
        return as_utc(v)

    @model_validator(mode="after")
    def check_dates(self) -> "HistoryQuery":
        if self.start_date and self.end_date and self.end_date <= self.start_date:
            raise ValueError("End date must be after start date")
        return self

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.page_size
