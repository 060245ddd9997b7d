"""Merge strategies for rows whose address is already in the inventory.

Decision Table:
--------------
```
duplicate status   strategy   outcome
none               any        inserted(new id)
conflict           skip       skipped (row fails with DuplicateIp)
conflict           update     updated(existing id): non-empty row fields only
conflict           replace    replaced(existing id): every field, empties cleared
```

Each row is decided on its own, so one file can insert, skip and update
different rows.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any

import structlog

from ..models.import_row import EquipmentRow
from ..models.options import MergeStrategy
from ..persistence.store import EQUIPMENT_COLUMNS, InventoryStore
from .detector import DuplicateStatus
from .resolver import Resolution

logger = structlog.get_logger(__name__)


class MergeAction(str, Enum):
    INSERTED = "inserted"
    SKIPPED = "skipped"
    UPDATED = "updated"
    REPLACED = "replaced"


@dataclass(frozen=True)
class MergeOutcome:
    """What the merge did; ``equipment_id`` is None for skipped rows and plans."""

    action: MergeAction
    equipment_id: str | None = None


class MergeEngine:
    """Apply a merge strategy to one row."""

    def __init__(self, store: InventoryStore) -> None:
        self.store = store

    @staticmethod
    def plan(status: DuplicateStatus, strategy: MergeStrategy) -> MergeAction:
        """Decide the action without writing anything."""
        if not status.is_conflict:
            return MergeAction.INSERTED
        if strategy == MergeStrategy.UPDATE:
            return MergeAction.UPDATED
        if strategy == MergeStrategy.REPLACE:
            return MergeAction.REPLACED
        return MergeAction.SKIPPED

    def merge(
        self,
        status: DuplicateStatus,
        row: EquipmentRow,
        strategy: MergeStrategy,
        resolution: Resolution,
        actor_id: str | None,
    ) -> MergeOutcome:
        """
        Write the row according to the strategy.

        Args:
            status: Duplicate status of the row's address
            row: Validated row
            strategy: Merge strategy of the job
            resolution: Site/cell the row resolved to
            actor_id: Recorded in the audit columns

        Returns:
            MergeOutcome

        Raises:
            StorageConflictError: The address was taken between detect and write
        """
        action = self.plan(status, strategy)

        if action == MergeAction.INSERTED:
            equipment = self.store.insert_equipment(
                resolution.cell_id, row.equipment_fields(), actor_id
            )
            return MergeOutcome(action, equipment.id)

        if action == MergeAction.SKIPPED:
            logger.debug("Duplicate skipped", row=row.row_number, existing_id=status.existing_id)
            return MergeOutcome(action)

        if status.existing_id is None:
            raise ValueError(f"Row {row.row_number}: cannot {strategy.value} without an existing id")

        if action == MergeAction.UPDATED:
            changes = self._partial_changes(row)
        else:
            changes = self._full_changes(row)
        changes["cell_id"] = resolution.cell_id

        self.store.update_equipment(status.existing_id, changes, actor_id)
        logger.debug(
            "Existing equipment merged",
            row=row.row_number,
            equipment_id=status.existing_id,
            action=action.value,
            fields=sorted(changes),
        )
        return MergeOutcome(action, status.existing_id)

    @staticmethod
    def _partial_changes(row: EquipmentRow) -> dict[str, Any]:
        # Empty cells keep the stored value
        return {
            column: value
            for column, value in row.equipment_fields().items()
            if value not in (None, "", ())
        }

    @staticmethod
    def _full_changes(row: EquipmentRow) -> dict[str, Any]:
        fields = row.equipment_fields()
        return {column: (fields.get(column) or None) for column in EQUIPMENT_COLUMNS}
