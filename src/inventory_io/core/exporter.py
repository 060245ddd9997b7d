"""Export module for streaming filtered inventory as CSV or JSON.

Filtering:
---------
All filter categories are combined with AND, values inside one category
with OR. Id sets, type sets and the date range are pushed into the storage
query; the CIDR range and tag filters are checked per record because the
addresses and tags are stored as text.

Paging:
------
Records are fetched ``page_size`` at a time by keyset (equipment rowid), so
an export never holds more than one page of records in memory and
equipment inserted behind the cursor during a long export is not repeated.

Output:
------
CSV is flat and starts with the import columns so the file can be imported
again. Tags, hierarchy ids and audit columns are appended on request. JSON
is one array of equipment objects, each nesting its cell, which nests its
site.
"""

import csv
import io
import json
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, timezone
from ipaddress import ip_address
from typing import Any

import structlog

from ..constants import (
    AUDIT_COLUMNS,
    CONTENT_TYPES,
    DEFAULT_EXPORT_PAGE_SIZE,
    HIERARCHY_COLUMNS,
    IMPORT_COLUMNS,
)
from ..models.entities import EquipmentRecord
from ..models.options import ExportFilters, ExportFormat, ExportOptions
from ..observability.metrics import MetricsCollector, get_global_collector
from ..persistence.store import InventoryStore

logger = structlog.get_logger(__name__)


@dataclass
class ExportStream:
    """A ready-to-send export: content type, suggested file name and body chunks."""

    content_type: str
    filename: str
    chunks: Iterator[bytes]

    def read_all(self) -> bytes:
        return b"".join(self.chunks)


class ExportBuilder:
    """
    Export inventory records to CSV or JSON.

    Each call to ``export`` is an independent generator; ``exported_count``
    holds the number of records written by the most recent one.
    """

    def __init__(
        self,
        store: InventoryStore,
        page_size: int = DEFAULT_EXPORT_PAGE_SIZE,
        allow_formulas: bool = False,
        metrics: MetricsCollector | None = None,
    ) -> None:
        """
        Initialize exporter.

        Args:
            store: Inventory storage
            page_size: Records fetched per storage query
            allow_formulas: Whether to allow CSV formulas (default: False)
            metrics: Collector for export counters
        """
        if page_size < 1:
            raise ValueError("page_size must be at least 1")
        self.store = store
        self.page_size = page_size
        self.allow_formulas = allow_formulas
        self.metrics = metrics or get_global_collector()
        self.exported_count = 0

    def iter_records(self, filters: ExportFilters | None = None) -> Iterator[EquipmentRecord]:
        """Yield matching records page by page."""
        filters = filters or ExportFilters()
        network = filters.network
        wanted_tags = {t.casefold() for t in filters.tags} if filters.tags is not None else None

        after_rowid = 0
        while True:
            page = self.store.fetch_equipment_page(filters, after_rowid, self.page_size)
            if not page:
                return
            after_rowid = page[-1][0]

            for _, record in page:
                if network is not None and not self._in_network(record, network):
                    continue
                if wanted_tags is not None and not self._has_any_tag(record, wanted_tags):
                    continue
                yield record

            if len(page) < self.page_size:
                return

    def export(
        self, filters: ExportFilters | None = None, options: ExportOptions | None = None
    ) -> Iterator[bytes]:
        """
        Stream the export as UTF-8 byte chunks.

        Args:
            filters: Which records to export (default: all)
            options: Output format and optional columns

        Yields:
            Encoded chunks, roughly one per record
        """
        options = options or ExportOptions()
        self.exported_count = 0
        logger.info(
            "Starting export",
            format=options.format.value,
            filters=(filters or ExportFilters()).model_dump(mode="json", exclude_none=True),
        )

        records = self.iter_records(filters)
        if options.format == ExportFormat.JSON:
            chunks = self._json_chunks(records, options)
        else:
            chunks = self._csv_chunks(records, options)

        for chunk in chunks:
            yield chunk.encode("utf-8")

        self.metrics.count_export(options.format.value, self.exported_count)
        logger.info("Export completed", format=options.format.value, records=self.exported_count)

    def open_stream(
        self, filters: ExportFilters | None = None, options: ExportOptions | None = None
    ) -> ExportStream:
        """Wrap ``export`` with a content type and a suggested file name."""
        options = options or ExportOptions()
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
        return ExportStream(
            content_type=CONTENT_TYPES[options.format.value],
            filename=f"equipment-export-{stamp}.{options.format.value}",
            chunks=self.export(filters, options),
        )

    def get_csv_columns(self, options: ExportOptions) -> list[str]:
        """
        Get CSV columns for the given options.

        Returns:
            List of column names in correct order
        """
        columns = [c for c in IMPORT_COLUMNS if options.include_tags or c != "tags"]
        if options.include_hierarchy:
            columns.extend(HIERARCHY_COLUMNS)
        if options.include_audit_info:
            columns.extend(AUDIT_COLUMNS)
        return columns

    def _csv_chunks(self, records: Iterator[EquipmentRecord], options: ExportOptions) -> Iterator[str]:
        columns = self.get_csv_columns(options)
        buffer = io.StringIO()
        writer = csv.DictWriter(buffer, fieldnames=columns, extrasaction="ignore")

        writer.writeheader()
        yield self._drain(buffer)

        for record in records:
            row = self._flatten(record)
            if not self.allow_formulas:
                row = {
                    k: self._sanitize_csv_field(v) if isinstance(v, str) else v
                    for k, v in row.items()
                }
            writer.writerow(row)
            self.exported_count += 1
            yield self._drain(buffer)

    def _json_chunks(
        self, records: Iterator[EquipmentRecord], options: ExportOptions
    ) -> Iterator[str]:
        yield "["
        for record in records:
            prefix = "\n  " if self.exported_count == 0 else ",\n  "
            self.exported_count += 1
            yield prefix + json.dumps(self._nest(record, options))
        yield "\n]\n" if self.exported_count else "]\n"

    def _flatten(self, record: EquipmentRecord) -> dict[str, Any]:
        equipment, cell, site = record.equipment, record.cell, record.site
        return {
            "site_name": site.name,
            "cell_name": cell.name,
            "cell_type": cell.cell_type or "",
            "equipment_name": equipment.name,
            "equipment_type": equipment.equipment_type or "",
            "tag_id": equipment.tag_id,
            "description": equipment.description,
            "make": equipment.make,
            "model": equipment.model,
            "ip_address": equipment.ip_address or "",
            "firmware_version": equipment.firmware_version or "",
            "tags": ",".join(equipment.tags),
            "site_id": site.id,
            "cell_id": cell.id,
            "equipment_id": equipment.id,
            "hierarchy_path": record.hierarchy_path,
            "created_at": equipment.created_at,
            "updated_at": equipment.updated_at,
            "created_by": equipment.created_by or "",
            "updated_by": equipment.updated_by or "",
        }

    def _nest(self, record: EquipmentRecord, options: ExportOptions) -> dict[str, Any]:
        equipment, cell, site = record.equipment, record.cell, record.site

        site_obj: dict[str, Any] = {"id": site.id, "name": site.name}
        cell_obj: dict[str, Any] = {"id": cell.id, "name": cell.name, "cell_type": cell.cell_type}
        item: dict[str, Any] = {
            "id": equipment.id,
            "name": equipment.name,
            "equipment_type": equipment.equipment_type,
            "tag_id": equipment.tag_id,
            "description": equipment.description,
            "make": equipment.make,
            "model": equipment.model,
            "ip_address": equipment.ip_address,
            "firmware_version": equipment.firmware_version,
        }
        if options.include_tags:
            item["tags"] = list(equipment.tags)
        if options.include_hierarchy:
            item["hierarchy_path"] = record.hierarchy_path
        if options.include_audit_info:
            for obj, entity in ((item, equipment), (cell_obj, cell), (site_obj, site)):
                for column in AUDIT_COLUMNS:
                    obj[column] = getattr(entity, column)

        cell_obj["site"] = site_obj
        item["cell"] = cell_obj
        return item

    @staticmethod
    def _in_network(record: EquipmentRecord, network: Any) -> bool:
        if not record.equipment.ip_address:
            return False
        address = ip_address(record.equipment.ip_address)
        return address.version == network.version and address in network

    @staticmethod
    def _has_any_tag(record: EquipmentRecord, wanted: set[str]) -> bool:
        return any(tag.casefold() in wanted for tag in record.equipment.tags)

    @staticmethod
    def _drain(buffer: io.StringIO) -> str:
        text = buffer.getvalue()
        buffer.seek(0)
        buffer.truncate(0)
        return text

    def _sanitize_csv_field(self, value: str) -> str:
        """
        Prevent CSV injection by escaping formula characters.

        Ref: https://owasp.org/www-community/attacks/CSV_Injection

        Args:
            value: The field value to sanitize

        Returns:
            Sanitized value (prefixed with ' if dangerous)
        """
        if value.startswith(("=", "@", "+", "-", "\t", "\r")):
            return "'" + value
        return value
