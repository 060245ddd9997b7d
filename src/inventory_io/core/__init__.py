"""Core import/export pipeline components."""

from .detector import DuplicateDetector, DuplicateKind, DuplicateStatus
from .exporter import ExportBuilder, ExportStream
from .merge import MergeAction, MergeEngine, MergeOutcome
from .parser import CSVParser, parse_csv
from .preview import ImportPreview, build_preview, generate_template
from .resolver import HierarchyResolver, Resolution

__all__ = [
    "CSVParser",
    "parse_csv",
    "HierarchyResolver",
    "Resolution",
    "DuplicateDetector",
    "DuplicateKind",
    "DuplicateStatus",
    "MergeEngine",
    "MergeAction",
    "MergeOutcome",
    "ExportBuilder",
    "ExportStream",
    "ImportPreview",
    "build_preview",
    "generate_template",
]
