"""Unit tests for the inventory exporter."""

import csv
import io
import json

import pytest

from src.inventory_io.core.exporter import ExportBuilder
from src.inventory_io.models.options import ExportFilters, ExportFormat, ExportOptions
from src.inventory_io.observability.metrics import MetricsCollector
from tests.helpers import make_row


@pytest.fixture
def inventory(store, database, seeded_cell):
    """Four devices across two cells, one of them IPv6 and one without an address."""
    site_id, cell_id = seeded_cell
    with database.transaction():
        packaging = store.insert_cell(site_id, "Packaging", "packaging", "seed")
        rows = [
            (cell_id, make_row(tag_id="A", ip_address="192.168.1.20", tags="robot,Critical")),
            (cell_id, make_row(tag_id="B", ip_address="192.168.2.1", tags="sensor")),
            (packaging.id, make_row(tag_id="C", ip_address="2001:db8::5", tags=None)),
            (packaging.id, make_row(tag_id="D", ip_address=None, equipment_name="=HYPERLINK(1)")),
        ]
        for target, row in rows:
            store.insert_equipment(target, row.equipment_fields(), "seed")
    return {"cell_id": cell_id, "packaging_id": packaging.id}


@pytest.fixture
def exporter(store):
    return ExportBuilder(store, page_size=2, metrics=MetricsCollector())


def read_csv(exporter, filters=None, options=None):
    body = b"".join(exporter.export(filters, options)).decode("utf-8")
    return list(csv.DictReader(io.StringIO(body)))


def tag_ids(records):
    return sorted(r.equipment.tag_id for r in records)


class TestFiltering:
    """Test which records are exported."""

    def test_all_records_across_pages(self, exporter, inventory):
        assert tag_ids(exporter.iter_records()) == ["A", "B", "C", "D"]

    def test_cidr_excludes_other_block(self, exporter, inventory):
        records = list(exporter.iter_records(ExportFilters(ip_range="192.168.1.0/24")))

        assert tag_ids(records) == ["A"]
        assert "192.168.2.1" not in [r.equipment.ip_address for r in records]

    def test_cidr_ipv6(self, exporter, inventory):
        assert tag_ids(exporter.iter_records(ExportFilters(ip_range="2001:db8::/32"))) == ["C"]

    def test_invalid_cidr(self):
        with pytest.raises(ValueError, match="Invalid CIDR range"):
            ExportFilters(ip_range="192.168.1.1/24")

    def test_tags_any_case_insensitive(self, exporter, inventory):
        filters = ExportFilters(tags=["critical", "SENSOR"])
        assert tag_ids(exporter.iter_records(filters)) == ["A", "B"]

    def test_empty_sets_mean_no_filter(self, exporter, inventory):
        filters = ExportFilters(tags=[], cell_ids=[])
        assert filters.tags is None
        assert tag_ids(exporter.iter_records(filters)) == ["A", "B", "C", "D"]

    def test_filters_combined_with_and(self, exporter, inventory):
        filters = ExportFilters(cell_types=["production"], ip_range="192.168.0.0/16", tags=["sensor"])
        assert tag_ids(exporter.iter_records(filters)) == ["B"]

    def test_cell_ids(self, exporter, inventory):
        filters = ExportFilters(cell_ids=[inventory["packaging_id"]])
        assert tag_ids(exporter.iter_records(filters)) == ["C", "D"]


class TestCSV:
    def test_default_columns(self, exporter, inventory):
        rows = read_csv(exporter)

        assert list(rows[0]) == [
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
            "site_id",
            "cell_id",
            "equipment_id",
            "hierarchy_path",
        ]
        assert rows[0]["tags"] == "robot,Critical"
        assert rows[0]["hierarchy_path"] == "Main Factory/Assembly Line 1/Robot Controller 1"
        assert exporter.exported_count == 4

    def test_optional_columns(self, exporter, inventory):
        options = ExportOptions(include_hierarchy=False, include_tags=False, include_audit_info=True)

        rows = read_csv(exporter, options=options)

        assert "tags" not in rows[0]
        assert "hierarchy_path" not in rows[0]
        assert rows[0]["created_by"] == "seed"
        assert rows[0]["created_at"].endswith("Z")

    def test_formulas_escaped(self, exporter, inventory):
        rows = read_csv(exporter, ExportFilters(tags=None, cell_ids=[inventory["packaging_id"]]))
        names = {r["tag_id"]: r["equipment_name"] for r in rows}
        assert names["D"] == "'=HYPERLINK(1)"

    def test_formulas_allowed(self, store, inventory):
        exporter = ExportBuilder(store, allow_formulas=True, metrics=MetricsCollector())
        rows = read_csv(exporter)
        assert "=HYPERLINK(1)" in [r["equipment_name"] for r in rows]

    def test_empty_export_has_header(self, exporter):
        body = b"".join(exporter.export()).decode("utf-8")
        assert body.startswith("site_name,cell_name")
        assert exporter.exported_count == 0

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("safe", "safe"),
            ("=1+1", "'=1+1"),
            ("+1", "'+1"),
            ("-1", "'-1"),
            ("@SUM(A1)", "'@SUM(A1)"),
            ("\tx", "'\tx"),
        ],
    )
    def test_sanitize_csv_field(self, exporter, value, expected):
        assert exporter._sanitize_csv_field(value) == expected


class TestJSON:
    def test_nested_objects(self, exporter, inventory):
        options = ExportOptions(format=ExportFormat.JSON)

        data = json.loads(b"".join(exporter.export(None, options)))

        assert len(data) == 4
        first = data[0]
        assert first["tag_id"] == "A"
        assert first["tags"] == ["robot", "Critical"]
        assert first["cell"]["name"] == "Assembly Line 1"
        assert first["cell"]["site"]["name"] == "Main Factory"
        assert first["cell"]["site"]["id"]
        assert "created_at" not in first

    def test_audit_on_every_level(self, exporter, inventory):
        options = ExportOptions(format=ExportFormat.JSON, include_audit_info=True, include_tags=False)

        [item] = json.loads(
            b"".join(exporter.export(ExportFilters(ip_range="192.168.1.0/24"), options))
        )

        assert item["created_by"] == "seed"
        assert item["cell"]["created_by"] == "seed"
        assert item["cell"]["site"]["created_by"] == "seed"
        assert "tags" not in item

    def test_empty_array(self, exporter):
        body = b"".join(exporter.export(options=ExportOptions(format=ExportFormat.JSON)))
        assert json.loads(body) == []


class TestStream:
    def test_open_stream(self, exporter, inventory):
        stream = exporter.open_stream(options=ExportOptions(format=ExportFormat.JSON))

        assert stream.content_type == "application/json"
        assert stream.filename.startswith("equipment-export-")
        assert stream.filename.endswith(".json")
        assert len(json.loads(stream.read_all())) == 4

    def test_metrics_counted(self, store, inventory):
        metrics = MetricsCollector()
        exporter = ExportBuilder(store, metrics=metrics)

        b"".join(exporter.export())

        assert metrics.get_summary()["counters"]["export_records_total[format=csv]"] == 4

    def test_invalid_page_size(self, store):
        with pytest.raises(ValueError):
            ExportBuilder(store, page_size=0)
