"""End-to-end tests: import, export, re-import and roll back against a database file."""

import csv
import io
import json

import pytest

from src.inventory_io.config import ImporterConfig, StorageConfig
from src.inventory_io.execution.progress import CallbackProgressSink
from src.inventory_io.models.history import ImportStatus
from src.inventory_io.models.options import (
    ExportFilters,
    ExportFormat,
    ExportOptions,
    HistoryQuery,
    MergeStrategy,
)
from src.inventory_io.service import InventoryService
from tests.helpers import make_csv, make_values, numbered_rows


@pytest.fixture
def config(tmp_path):
    config = ImporterConfig(storage=StorageConfig(database_path=str(tmp_path / "inventory.db")))
    config.policy.background_threshold = 50
    config.policy.progress_interval = 25
    return config


@pytest.fixture
def service(config):
    with InventoryService(config) as service:
        yield service


def export_rows(service, filters=None):
    body = b"".join(service.export(filters)).decode("utf-8")
    return list(csv.DictReader(io.StringIO(body)))


@pytest.mark.asyncio
async def test_import_export_reimport_rollback(service, sample_csv):
    # Initial import creates the hierarchy
    options = service.default_options("alice", create_missing=True)
    first = await (await service.start_import(sample_csv, "plant.csv", options)).wait()

    assert first.status == ImportStatus.COMPLETED
    assert first.inserted_rows == 2
    rows = export_rows(service)
    assert [r["tag_id"] for r in rows] == ["PLC-001", "PLC-002"]
    assert rows[0]["hierarchy_path"] == "Main Factory/Assembly Line 1/Robot Controller 1"

    # The exported file can be edited and imported back as an update
    rows[0]["model"] = "ControlLogix 5590"
    edited = make_csv(rows)
    options = service.default_options("bob", merge_strategy=MergeStrategy.UPDATE)
    second = await (await service.start_import(edited, "edited.csv", options)).wait()

    assert second.updated_rows == 2
    assert second.created_entity_ids == []
    assert export_rows(service)[0]["model"] == "ControlLogix 5590"

    # A third file adds one device to a new cell
    extra = make_csv([make_values(cell_name="Packaging", ip_address="192.168.1.50", tag_id="P-1")])
    third = await (
        await service.start_import(extra, "extra.csv", service.default_options("carol", create_missing=True))
    ).wait()
    assert len(third.created_entity_ids) == 2

    # Rolling back the first job keeps the hierarchy that the third job still uses
    result = service.rollback(first.id, "admin")

    assert result.deleted_count == 3
    assert result.retained == first.created_entity_ids[:1]
    remaining = export_rows(service)
    assert [r["tag_id"] for r in remaining] == ["P-1"]

    page = service.history(HistoryQuery(page_size=10))
    assert page.total == 3
    assert [job.status for job in page.items] == [
        ImportStatus.COMPLETED,
        ImportStatus.COMPLETED,
        ImportStatus.ROLLED_BACK,
    ]


@pytest.mark.asyncio
async def test_background_import_with_progress(config):
    events = []
    with InventoryService(config, progress_sink=CallbackProgressSink(events.append)) as service:
        content = make_csv([row.values for row in numbered_rows(120)])
        options = service.default_options("alice", create_missing=True)

        handle = await service.start_import(content, "big.csv", options)
        assert handle.is_background
        assert handle.status == ImportStatus.PROCESSING

        history = await handle.wait()
        await service.wait_for_jobs()

        assert history.status == ImportStatus.COMPLETED
        assert history.successful_rows == 120
        assert [e.processed_rows for e in events] == [25, 50, 75, 100, 120]
        assert events[-1].finished

        stream = service.open_export(
            ExportFilters(ip_range="10.0.0.0/26"), ExportOptions(format=ExportFormat.JSON)
        )
        data = json.loads(stream.read_all())
        assert len(data) == 63


@pytest.mark.asyncio
async def test_records_survive_reopen(config, sample_csv):
    with InventoryService(config) as service:
        options = service.default_options("alice", create_missing=True)
        job = await (await service.start_import(sample_csv, "plant.csv", options)).wait()

    with InventoryService(config) as reopened:
        assert reopened.get_job(job.id).successful_rows == 2
        assert len(export_rows(reopened)) == 2
