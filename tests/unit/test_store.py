"""Unit tests for the inventory store."""

import pytest

from src.inventory_io.models.history import EntityType
from src.inventory_io.models.options import DateRange, ExportFilters
from src.inventory_io.persistence.database import parse_timestamp
from src.inventory_io.persistence.store import name_key
from src.inventory_io.utils.exceptions import StorageConflictError
from tests.helpers import make_row


def add_equipment(store, database, cell_id, **overrides):
    with database.transaction():
        return store.insert_equipment(cell_id, make_row(**overrides).equipment_fields(), "tester")


class TestNames:
    def test_name_key(self):
        assert name_key("  Main FACTORY ") == "main factory"

    def test_site_lookup_case_insensitive(self, store, seeded_cell):
        site_id, _ = seeded_cell
        [site] = store.find_sites_by_name("MAIN factory")
        assert site.id == site_id
        assert site.name == "Main Factory"

    def test_site_name_unique_case_insensitive(self, store, database, seeded_cell):
        with pytest.raises(StorageConflictError):
            with database.transaction():
                store.insert_site("main factory", "tester")

    def test_cell_scoped_to_site(self, store, database, seeded_cell):
        site_id, cell_id = seeded_cell
        with database.transaction():
            other = store.insert_site("Second Plant", "tester")
            store.insert_cell(other.id, "Assembly Line 1", None, "tester")

        [cell] = store.find_cells_by_name(site_id, "assembly line 1")
        assert cell.id == cell_id
        assert cell.cell_type == "production"


class TestEquipment:
    def test_insert_and_get(self, store, database, seeded_cell):
        _, cell_id = seeded_cell
        created = add_equipment(store, database, cell_id)

        loaded = store.get_equipment(created.id)

        assert loaded == created
        assert loaded.tags == ["robot", "assembly"]
        assert loaded.created_by == "tester"

    def test_find_by_ip(self, store, database, seeded_cell):
        _, cell_id = seeded_cell
        created = add_equipment(store, database, cell_id, ip_address="10.1.1.1")

        assert store.find_equipment_by_ip("10.1.1.1").id == created.id
        assert store.find_equipment_by_ip("10.1.1.2") is None

    def test_ip_unique(self, store, database, seeded_cell):
        _, cell_id = seeded_cell
        add_equipment(store, database, cell_id, ip_address="10.1.1.1")

        with pytest.raises(StorageConflictError):
            add_equipment(store, database, cell_id, ip_address="10.1.1.1", tag_id="T-2")

    def test_null_ips_do_not_conflict(self, store, database, seeded_cell):
        _, cell_id = seeded_cell
        add_equipment(store, database, cell_id, ip_address=None)
        add_equipment(store, database, cell_id, ip_address=None, tag_id="T-2")

        assert store.counts()["equipment"] == 2

    def test_update(self, store, database, seeded_cell):
        _, cell_id = seeded_cell
        created = add_equipment(store, database, cell_id)

        with database.transaction():
            store.update_equipment(created.id, {"model": "New", "tags": ["x"]}, "editor")

        loaded = store.get_equipment(created.id)
        assert loaded.model == "New"
        assert loaded.tags == ["x"]
        assert loaded.make == created.make
        assert loaded.updated_by == "editor"
        assert loaded.created_by == "tester"

    def test_update_rejects_unknown_columns(self, store):
        with pytest.raises(ValueError, match="created_by"):
            store.update_equipment("x", {"created_by": "me"}, "editor")


class TestDelete:
    def test_delete(self, store, database, seeded_cell):
        _, cell_id = seeded_cell
        created = add_equipment(store, database, cell_id)

        with database.transaction():
            assert store.delete_entity(EntityType.EQUIPMENT, created.id) is True
            assert store.delete_entity(EntityType.EQUIPMENT, created.id) is False
        assert store.entity_exists(EntityType.EQUIPMENT, created.id) is False

    def test_delete_parent_with_children_restricted(self, store, database, seeded_cell):
        site_id, _ = seeded_cell

        with pytest.raises(StorageConflictError):
            with database.transaction():
                store.delete_entity(EntityType.SITE, site_id)
        assert store.entity_exists(EntityType.SITE, site_id)


class TestFetchEquipmentPage:
    """Test the export query."""

    @pytest.fixture
    def inventory(self, store, database, seeded_cell):
        site_id, cell_id = seeded_cell
        with database.transaction():
            warehouse = store.insert_cell(site_id, "Storage", "warehouse", "tester")
        ids = [
            add_equipment(store, database, cell_id, tag_id="A", ip_address="10.0.0.1").id,
            add_equipment(
                store, database, warehouse.id, tag_id="B", ip_address="10.0.0.2", equipment_type="plc"
            ).id,
            add_equipment(store, database, cell_id, tag_id="C", ip_address="10.0.0.3").id,
        ]
        return {"site_id": site_id, "cell_id": cell_id, "warehouse_id": warehouse.id, "ids": ids}

    def test_joined_record(self, store, inventory):
        [(rowid, record), *_] = store.fetch_equipment_page(ExportFilters(), 0, 10)

        assert rowid > 0
        assert record.site.name == "Main Factory"
        assert record.cell.name == "Assembly Line 1"
        assert record.hierarchy_path == "Main Factory/Assembly Line 1/Robot Controller 1"

    def test_keyset_paging(self, store, inventory):
        first = store.fetch_equipment_page(ExportFilters(), 0, 2)
        second = store.fetch_equipment_page(ExportFilters(), first[-1][0], 2)

        ids = [r.equipment.id for _, r in first + second]
        assert ids == inventory["ids"]

    def test_cell_type_filter(self, store, inventory):
        page = store.fetch_equipment_page(ExportFilters(cell_types=["WAREHOUSE"]), 0, 10)
        assert [r.equipment.tag_id for _, r in page] == ["B"]

    def test_id_filters_and_combined(self, store, inventory):
        filters = ExportFilters(cell_ids=[inventory["cell_id"]], equipment_types=["controller"])
        page = store.fetch_equipment_page(filters, 0, 10)
        assert [r.equipment.tag_id for _, r in page] == ["A", "C"]

    def test_date_range(self, store, inventory):
        [(_, record), *_] = store.fetch_equipment_page(ExportFilters(), 0, 1)

        created = parse_timestamp(record.equipment.created_at)
        exact = ExportFilters(date_range=DateRange(start=created, end=created))
        before = ExportFilters(
            date_range=DateRange(start=created.replace(year=2000), end=created.replace(year=2001))
        )

        assert record.equipment.id in [
            r.equipment.id for _, r in store.fetch_equipment_page(exact, 0, 10)
        ]
        assert store.fetch_equipment_page(before, 0, 10) == []

    def test_date_range_mixed_naive_and_aware(self, store, inventory):
        [(_, record), *_] = store.fetch_equipment_page(ExportFilters(), 0, 1)
        created = parse_timestamp(record.equipment.created_at)

        window = DateRange(start=created, end=created.replace(tzinfo=None))

        assert window.end == created
        page = store.fetch_equipment_page(ExportFilters(date_range=window), 0, 10)
        assert record.equipment.id in [r.equipment.id for _, r in page]
        with pytest.raises(ValueError, match="End date must be on or after start date"):
            DateRange(start=created, end=created.replace(tzinfo=None, year=2000))

    def test_counts(self, store, inventory):
        assert store.counts() == {"sites": 1, "cells": 2, "equipment": 3}
