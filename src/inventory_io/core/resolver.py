"""Site/cell name resolver with a job-scoped cache.

Resolution Order:
----------------
1. Site: case-insensitive exact name match; created when missing and
   ``create_missing`` is on.
2. Cell: same, scoped to the resolved site. A newly created cell takes the
   row's ``cell_type``.

Job-Scoped Cache:
----------------
Each import job gets its own resolver. Names it has already resolved or
created are kept in plain dicts keyed by the normalized name, so two rows
naming the same new site produce one site. Nothing is shared between jobs
and ``reset()`` empties the cache.

A row's hierarchy writes roll back when a later step of the same row fails.
``row_scope()`` tracks the keys added while resolving the current row and
evicts them on failure so later rows don't reuse ids that no longer exist.
This mirrors the pending-create bookkeeping used when an operation fails:
registering a create is only kept once the write is confirmed.

Uniqueness Races:
----------------
The storage layer enforces unique names. If another writer creates the
same site or cell between our lookup and our insert, the insert fails with
``StorageConflictError``; the whole lookup-or-create is retried once, which
now finds the other writer's row.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt

from ..models.import_row import EquipmentRow
from ..persistence.store import InventoryStore, name_key
from ..utils.exceptions import AmbiguousParentError, MissingParentError, StorageConflictError

logger = structlog.get_logger(__name__)

PLANNED_PREFIX = "planned-"

_retry_once_on_conflict = retry(
    retry=retry_if_exception_type(StorageConflictError),
    stop=stop_after_attempt(2),
    reraise=True,
)


@dataclass
class CacheStats:
    """Statistics for resolver cache performance."""

    cache_hits: int = 0
    cache_misses: int = 0
    total_queries: int = 0

    def cache_hit(self) -> None:
        self.cache_hits += 1
        self.total_queries += 1

    def cache_miss(self) -> None:
        self.cache_misses += 1
        self.total_queries += 1

    def hit_rate(self) -> float:
        """
        Calculate cache hit rate.

        Returns:
            float: Hit rate as a decimal (0.0 to 1.0).
        """
        if self.total_queries == 0:
            return 0.0
        return self.cache_hits / self.total_queries


@dataclass(frozen=True)
class Resolution:
    """
    Where a row lives in the hierarchy.

    Attributes:
        site_id: Resolved or created site (placeholder in dry-run)
        cell_id: Resolved or created cell (placeholder in dry-run)
        site_created: The site was created for this row
        cell_created: The cell was created for this row
        planned: At least one id is a dry-run placeholder
    """

    site_id: str
    cell_id: str
    site_created: bool = False
    cell_created: bool = False
    planned: bool = False


def is_planned(entity_id: str) -> bool:
    return entity_id.startswith(PLANNED_PREFIX)


class HierarchyResolver:
    """
    Resolve (site, cell) names to ids, creating missing parents on request.

    One instance per job.
    """

    def __init__(self, store: InventoryStore, actor_id: str | None = None) -> None:
        """
        Initialize resolver.

        Args:
            store: Inventory storage
            actor_id: Recorded as creator of any site or cell this job creates
        """
        self.store = store
        self.actor_id = actor_id
        self._sites: dict[str, str] = {}
        self._cells: dict[tuple[str, str], str] = {}
        self._row_keys: list[tuple[dict[Any, str], Any]] | None = None
        self.stats = CacheStats()

    def reset(self) -> None:
        """Clear the cache, e.g. before reusing the resolver for another job."""
        self._sites.clear()
        self._cells.clear()
        self.stats = CacheStats()

    @contextmanager
    def row_scope(self) -> Iterator[None]:
        """Evict cache entries added inside the block if the block raises."""
        self._row_keys = []
        try:
            yield
        except BaseException:
            for cache, key in self._row_keys:
                cache.pop(key, None)
            if self._row_keys:
                logger.debug("Evicted cache entries of failed row", count=len(self._row_keys))
            raise
        finally:
            self._row_keys = None

    def resolve(self, row: EquipmentRow, create_missing: bool, dry_run: bool = False) -> Resolution:
        """
        Resolve the row's site and cell.

        Args:
            row: Validated import row
            create_missing: Create a site/cell that does not exist yet
            dry_run: Plan creations with placeholder ids instead of writing

        Returns:
            Resolution with the ids and what was created

        Raises:
            MissingParentError: Parent absent and create_missing is off
            AmbiguousParentError: More than one parent matches the name
            StorageConflictError: Creation still conflicts after the retry
        """
        site_id, site_created = self._resolve_site(row.site_name, create_missing, dry_run)
        cell_type = row.cell_type.value if row.cell_type else None
        cell_id, cell_created = self._resolve_cell(
            site_id, row.cell_name, cell_type, create_missing, dry_run
        )
        return Resolution(
            site_id=site_id,
            cell_id=cell_id,
            site_created=site_created,
            cell_created=cell_created,
            planned=is_planned(site_id) or is_planned(cell_id),
        )

    def _resolve_site(self, name: str, create_missing: bool, dry_run: bool) -> tuple[str, bool]:
        key = name_key(name)
        cached = self._sites.get(key)
        if cached is not None:
            self.stats.cache_hit()
            return cached, False

        self.stats.cache_miss()
        site_id, created = self._find_or_create_site(name, create_missing, dry_run)
        self._remember(self._sites, key, site_id)
        return site_id, created

    def _resolve_cell(
        self,
        site_id: str,
        name: str,
        cell_type: str | None,
        create_missing: bool,
        dry_run: bool,
    ) -> tuple[str, bool]:
        key = (site_id, name_key(name))
        cached = self._cells.get(key)
        if cached is not None:
            self.stats.cache_hit()
            return cached, False

        self.stats.cache_miss()
        cell_id, created = self._find_or_create_cell(
            site_id, name, cell_type, create_missing, dry_run
        )
        self._remember(self._cells, key, cell_id)
        return cell_id, created

    @_retry_once_on_conflict
    def _find_or_create_site(
        self, name: str, create_missing: bool, dry_run: bool
    ) -> tuple[str, bool]:
        matches = self.store.find_sites_by_name(name)
        if len(matches) > 1:
            raise AmbiguousParentError("site_name", name, "Site", len(matches))
        if matches:
            return matches[0].id, False
        if not create_missing:
            raise MissingParentError("site_name", name, "Site")
        if dry_run:
            return f"{PLANNED_PREFIX}site:{name_key(name)}", True

        site = self.store.insert_site(name, self.actor_id)
        logger.info("Created missing site", site_id=site.id, name=name)
        return site.id, True

    @_retry_once_on_conflict
    def _find_or_create_cell(
        self,
        site_id: str,
        name: str,
        cell_type: str | None,
        create_missing: bool,
        dry_run: bool,
    ) -> tuple[str, bool]:
        # A planned site has no cells yet
        matches = [] if is_planned(site_id) else self.store.find_cells_by_name(site_id, name)
        if len(matches) > 1:
            raise AmbiguousParentError("cell_name", name, "Cell", len(matches))
        if matches:
            return matches[0].id, False
        if not create_missing:
            raise MissingParentError("cell_name", name, "Cell")
        if dry_run:
            return f"{PLANNED_PREFIX}cell:{site_id}/{name_key(name)}", True

        cell = self.store.insert_cell(site_id, name, cell_type, self.actor_id)
        logger.info("Created missing cell", cell_id=cell.id, site_id=site_id, name=name)
        return cell.id, True

    def _remember(self, cache: dict[Any, str], key: Any, entity_id: str) -> None:
        cache[key] = entity_id
        if self._row_keys is not None:
            self._row_keys.append((cache, key))
