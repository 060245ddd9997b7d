"""Rollback Manager - undo the creations of a completed import job.

Purpose:
-------
An import job records, in row order, every entity it created. Rollback
deletes exactly those entities and nothing else, then moves the job to
``rolled_back``.

Entity Inversion:
----------------
Ledger action   ->  Rollback
created         ->  DELETE
updated         ->  kept (prior values were never snapshotted)
replaced        ->  kept (prior values were never snapshotted)

Ordering:
--------
Deletes run newest first, so a row's equipment goes before the cell and
site created for it (the hierarchy uses ``ON DELETE RESTRICT``).

Retained Parents:
----------------
A site or cell created by this job may since have gained children from
other jobs or from manual edits. Deleting it would require touching data
the job does not own, so it is kept and reported in
``RollbackResult.retained``. Each delete runs in its own savepoint so one
retained parent does not undo the other deletes.

Usage:
-----
```python
manager = RollbackManager(database, store, ledger)
result = manager.rollback(job_id, actor_id="alice")
```
"""

from typing import Any

import structlog

from ..models.history import EntityAction, ImportStatus, RollbackResult
from ..persistence.database import Database
from ..persistence.ledger import ImportLedger
from ..persistence.store import InventoryStore
from ..utils.exceptions import RollbackStateError, StorageConflictError

logger = structlog.get_logger(__name__)


class RollbackManager:
    """
    Delete the entities created by one import job.

    Features:
    - Only ``completed`` jobs can be rolled back
    - Rolling back a ``rolled_back`` job is a no-op
    - Whole rollback (deletes plus status change) commits atomically
    """

    def __init__(self, database: Database, store: InventoryStore, ledger: ImportLedger) -> None:
        """
        Initialize Rollback Manager.

        Args:
            database: Shared database (for the rollback transaction)
            store: Inventory storage
            ledger: Import history ledger
        """
        self.db = database
        self.store = store
        self.ledger = ledger

    def rollback(self, job_id: str, actor_id: str) -> RollbackResult:
        """
        Roll back a completed job.

        Args:
            job_id: Job to roll back
            actor_id: Recorded as rolled_back_by

        Returns:
            RollbackResult listing deleted, retained and missing ids

        Raises:
            JobNotFoundError: Unknown job
            RollbackStateError: Job is not completed (or rolled back)
            LedgerError: Status change could not be written; nothing is deleted
        """
        result = RollbackResult(job_id=job_id)

        with self.db.transaction():
            history = self.ledger.get(job_id)

            if history.status == ImportStatus.ROLLED_BACK:
                logger.info("Job already rolled back", job_id=job_id)
                result.already_rolled_back = True
                return result
            if history.status != ImportStatus.COMPLETED:
                raise RollbackStateError(job_id, history.status.value)

            created = [e for e in history.entities if e.action == EntityAction.CREATED]
            logger.info("Rolling back import", job_id=job_id, entities=len(created))

            for entity in reversed(created):
                try:
                    with self.db.transaction():
                        deleted = self.store.delete_entity(entity.entity_type, entity.entity_id)
                except StorageConflictError as e:
                    logger.warning(
                        "Entity still referenced, retained",
                        entity_type=entity.entity_type.value,
                        entity_id=entity.entity_id,
                        error=str(e),
                    )
                    result.retained.append(entity.entity_id)
                    continue

                if deleted:
                    result.deleted.append(entity.entity_id)
                else:
                    result.missing.append(entity.entity_id)

            self.ledger.mark_rolled_back(job_id, actor_id)

        logger.info(
            "Rollback completed",
            job_id=job_id,
            deleted=len(result.deleted),
            retained=len(result.retained),
            missing=len(result.missing),
        )
        return result

    def get_rollback_manifest(self, job_id: str) -> dict[str, Any]:
        """
        Describe what a rollback would delete, without deleting anything.

        Args:
            job_id: Job to inspect

        Returns:
            Manifest dictionary
        """
        history = self.ledger.get(job_id)
        created = [e for e in history.entities if e.action == EntityAction.CREATED]
        kept = [e for e in history.entities if e.action != EntityAction.CREATED]

        by_type: dict[str, int] = {}
        for entity in created:
            by_type[entity.entity_type.value] = by_type.get(entity.entity_type.value, 0) + 1

        return {
            "job_id": job_id,
            "status": history.status.value,
            "rollback_available": history.rollback_available,
            "total_deletes": len(created),
            "deletes_by_type": by_type,
            "delete_order": [e.to_dict() for e in reversed(created)],
            "not_reverted": len(kept),
        }
