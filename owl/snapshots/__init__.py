"""Snapshot files: streaming CSV I/O, typed loaders/writers and exporters."""

from .export import export_dashboards, export_metrics, export_rules
from .loaders import (
    DASHBOARDS_COLUMNS,
    METRICS_COLUMNS,
    RULES_COLUMNS,
    load_dashboards,
    load_metrics,
    load_rules,
    write_dashboards,
    write_metrics,
    write_rules,
)
from .tabular import DEFAULT_BATCH_SIZE, SnapshotReader, SnapshotWriter

__all__ = [
    "DASHBOARDS_COLUMNS",
    "DEFAULT_BATCH_SIZE",
    "METRICS_COLUMNS",
    "RULES_COLUMNS",
    "SnapshotReader",
    "SnapshotWriter",
    "export_dashboards",
    "export_metrics",
    "export_rules",
    "load_dashboards",
    "load_metrics",
    "load_rules",
    "write_dashboards",
    "write_metrics",
    "write_rules",
]
