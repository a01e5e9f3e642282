"""Fetch monitoring artifacts from a backend and write them as snapshots."""

from __future__ import annotations

import logging
from datetime import timedelta
from typing import Optional

from ..adapters import DashboardsBackend, MetricsBackend, RulesBackend
from .loaders import write_dashboards, write_metrics, write_rules
from .tabular import DEFAULT_BATCH_SIZE, PathLike

logger = logging.getLogger(__name__)


async def export_rules(
    backend: RulesBackend, output: PathLike, batch_size: int = DEFAULT_BATCH_SIZE
) -> int:
    """Write every rule of ``backend`` to ``output``; returns the row count."""
    rules = await backend.rules()
    written = await write_rules(output, rules, batch_size)
    logger.info("export.rules.complete", extra={"output": str(output), "rows": written})
    return written


async def export_metrics(
    backend: MetricsBackend,
    output: PathLike,
    since: Optional[timedelta] = None,
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Write the metric names of ``backend`` to ``output``; returns the row count."""
    names = await backend.metric_names(since)
    written = await write_metrics(output, names, batch_size)
    logger.info(
        "export.metrics.complete",
        extra={"output": str(output), "rows": written, "since": str(since)},
    )
    return written


async def export_dashboards(
    backend: DashboardsBackend, output: PathLike, batch_size: int = DEFAULT_BATCH_SIZE
) -> int:
    """Write every dashboard of ``backend`` to ``output``; returns the row count."""
    boards = await backend.dashboards()
    written = await write_dashboards(output, boards, batch_size)
    logger.info(
        "export.dashboards.complete", extra={"output": str(output), "rows": written}
    )
    return written
