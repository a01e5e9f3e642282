"""Backend adapter interfaces.

Exporters depend on these protocols rather than on the concrete HTTP
adapters, so tests can hand them any object with the right coroutines.
"""

from __future__ import annotations

from datetime import timedelta
from typing import List, Optional, Protocol

from ..domain.models import Board, MetricName, Rule


class RulesBackend(Protocol):
    """A source of Prometheus rules."""

    async def rules(self) -> List[Rule]:
        """Return every recording and alerting rule."""
        raise NotImplementedError


class MetricsBackend(Protocol):
    """A source of known metric names."""

    async def metric_names(self, since: Optional[timedelta] = None) -> List[MetricName]:
        """Return metric names, optionally restricted to a recent window."""
        raise NotImplementedError


class DashboardsBackend(Protocol):
    """A source of Grafana dashboards."""

    async def dashboards(self) -> List[Board]:
        """Return every dashboard with its panels."""
        raise NotImplementedError
