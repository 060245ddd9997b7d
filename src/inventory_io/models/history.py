"""Import history ledger types."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


class ImportStatus(str, Enum):
    """Lifecycle of an import job."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"

    @property
    def is_terminal(self) -> bool:
        return self in (ImportStatus.COMPLETED, ImportStatus.FAILED, ImportStatus.ROLLED_BACK)


class ErrorCode(str, Enum):
    """Codes attached to ledger error entries."""

    VALIDATION_FAILED = "ValidationFailed"
    MISSING_PARENT = "MissingParent"
    AMBIGUOUS_PARENT = "AmbiguousParent"
    DUPLICATE_IP = "DuplicateIp"
    STORAGE_ERROR = "StorageError"
    STORAGE_TIMEOUT = "StorageTimeout"
    CANCELLED = "Cancelled"
    JOB_FAILED = "JobFailed"


class EntityType(str, Enum):
    SITE = "site"
    CELL = "cell"
    EQUIPMENT = "equipment"


class EntityAction(str, Enum):
    """What an import row did to an entity."""

    CREATED = "created"
    UPDATED = "updated"
    REPLACED = "replaced"


@dataclass(frozen=True)
class RowError:
    """
    One error entry of an import job.

    Attributes:
        row: 1-based data row number, None for job-level errors
        field: Column the error refers to ("general" or "headers" otherwise)
        code: One of ErrorCode
        message: Human-readable description
        value: Offending cell value, if any
    """

    row: int | None
    field: str
    code: str
    message: str
    value: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "field": self.field,
            "code": self.code,
            "message": self.message,
            "value": self.value,
        }


@dataclass(frozen=True)
class LedgerEntity:
    """An entity touched by an import row."""

    row: int | None
    entity_type: EntityType
    entity_id: str
    action: EntityAction

    def to_dict(self) -> dict[str, Any]:
        return {
            "row": self.row,
            "entity_type": self.entity_type.value,
            "entity_id": self.entity_id,
            "action": self.action.value,
        }


@dataclass
class ImportHistory:
    """
    Persisted record of one import job.

    Counters are updated row by row; ``errors`` and ``entities`` keep the
    order in which rows appended them.
    """

    id: str
    actor_id: str
    filename: str
    total_rows: int
    status: ImportStatus
    started_at: datetime
    options: dict[str, Any] = field(default_factory=dict)
    successful_rows: int = 0
    failed_rows: int = 0
    inserted_rows: int = 0
    updated_rows: int = 0
    replaced_rows: int = 0
    skipped_rows: int = 0
    errors: list[RowError] = field(default_factory=list)
    entities: list[LedgerEntity] = field(default_factory=list)
    failure_reason: str | None = None
    cancel_requested: bool = False
    completed_at: datetime | None = None
    rolled_back_at: datetime | None = None
    rolled_back_by: str | None = None

    @property
    def processed_rows(self) -> int:
        return self.successful_rows + self.failed_rows

    @property
    def created_entity_ids(self) -> list[str]:
        """Ids of entities created by this job, in creation order."""
        return [e.entity_id for e in self.entities if e.action == EntityAction.CREATED]

    @property
    def rollback_available(self) -> bool:
        return self.status == ImportStatus.COMPLETED

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return (self.completed_at - self.started_at).total_seconds()

    def to_dict(self, include_details: bool = True) -> dict[str, Any]:
        """
        Serialize for JSON output.

        Args:
            include_details: Include the errors and entities lists

        Returns:
            Dictionary with ISO formatted timestamps
        """
        data: dict[str, Any] = {
            "id": self.id,
            "actor_id": self.actor_id,
            "filename": self.filename,
            "status": self.status.value,
            "total_rows": self.total_rows,
            "processed_rows": self.processed_rows,
            "successful_rows": self.successful_rows,
            "failed_rows": self.failed_rows,
            "inserted_rows": self.inserted_rows,
            "updated_rows": self.updated_rows,
            "replaced_rows": self.replaced_rows,
            "skipped_rows": self.skipped_rows,
            "options": self.options,
            "failure_reason": self.failure_reason,
            "cancel_requested": self.cancel_requested,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "rolled_back_at": self.rolled_back_at.isoformat() if self.rolled_back_at else None,
            "rolled_back_by": self.rolled_back_by,
            "duration_seconds": self.duration_seconds,
            "rollback_available": self.rollback_available,
        }
        if include_details:
            data["errors"] = [e.to_dict() for e in self.errors]
            data["entities"] = [e.to_dict() for e in self.entities]
            data["created_entity_ids"] = self.created_entity_ids
        return data


@dataclass
class HistoryPage:
    """One page of the import history listing."""

    items: list[ImportHistory]
    total: int
    page: int
    page_size: int

    @property
    def total_pages(self) -> int:
        return (self.total + self.page_size - 1) // self.page_size if self.page_size else 0


@dataclass
class RollbackResult:
    """
    Outcome of rolling back an import job.

    Attributes:
        job_id: The rolled back job
        deleted: Entity ids removed, in deletion order
        retained: Entity ids kept because other data still references them
        missing: Entity ids already gone before the rollback
        already_rolled_back: True when the call was a no-op
    """

    job_id: str
    deleted: list[str] = field(default_factory=list)
    retained: list[str] = field(default_factory=list)
    missing: list[str] = field(default_factory=list)
    already_rolled_back: bool = False

    @property
    def deleted_count(self) -> int:
        return len(self.deleted)
