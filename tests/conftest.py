"""Pytest configuration and shared fixtures.

Fixtures are organized by category:
- Infrastructure fixtures: in-memory database, store, ledger, orchestrator
- Data fixtures: sample CSV content

Row and CSV builders live in ``tests/helpers.py``.
"""

from collections.abc import Iterator

import pytest

from src.inventory_io.config import ImporterConfig
from src.inventory_io.execution.orchestrator import ImportOrchestrator
from src.inventory_io.observability.metrics import MetricsCollector
from src.inventory_io.persistence.database import Database
from src.inventory_io.persistence.ledger import ImportLedger
from src.inventory_io.persistence.store import InventoryStore
from tests.helpers import make_csv, make_values

# =============================================================================
# Data Fixtures
# =============================================================================


@pytest.fixture
def sample_csv() -> bytes:
    """Two valid rows in one new site/cell."""
    return make_csv(
        [
            make_values(),
            make_values(
                equipment_name="Conveyor Controller",
                tag_id="PLC-002",
                ip_address="192.168.1.11",
                tags="conveyor",
            ),
        ]
    )


# =============================================================================
# Infrastructure Fixtures
# =============================================================================


@pytest.fixture
def database() -> Iterator[Database]:
    """Fresh in-memory database per test."""
    db = Database(":memory:")
    yield db
    db.close()


@pytest.fixture
def store(database: Database) -> InventoryStore:
    return InventoryStore(database)


@pytest.fixture
def ledger(database: Database) -> ImportLedger:
    return ImportLedger(database)


@pytest.fixture
def config() -> ImporterConfig:
    return ImporterConfig()


@pytest.fixture
def metrics() -> MetricsCollector:
    return MetricsCollector()


@pytest.fixture
def orchestrator(
    database: Database, config: ImporterConfig, metrics: MetricsCollector
) -> ImportOrchestrator:
    return ImportOrchestrator(database, config, metrics=metrics)


@pytest.fixture
def seeded_cell(store: InventoryStore, database: Database) -> tuple[str, str]:
    """An existing site/cell pair: (site_id, cell_id)."""
    with database.transaction():
        site = store.insert_site("Main Factory", "seed")
        cell = store.insert_cell(site.id, "Assembly Line 1", "production", "seed")
    return site.id, cell.id
