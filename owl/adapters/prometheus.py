"""Prometheus HTTP API adapter.

Reads the two collections owl needs from a Prometheus server:

- ``GET /api/v1/rules``: every recording and alerting rule, per group.
- ``GET /api/v1/label/__name__/values``: every metric name, optionally
  restricted to series seen since a point in time.
"""

from __future__ import annotations

import logging
import re
import time
from datetime import timedelta
from typing import Any, Dict, List, Mapping, Optional

from ..domain.models import MetricName, Rule, RuleKind
from ..domain.promql import METRIC_NAME_LABEL
from ..errors import BackendError
from .base import JSONAdapter

logger = logging.getLogger(__name__)

RULES_PATH = "/api/v1/rules"
METRIC_NAMES_PATH = f"/api/v1/label/{METRIC_NAME_LABEL}/values"

_RULE_TYPES = {"recording": RuleKind.RECORDING, "alerting": RuleKind.ALERTING}

_DURATION_PART = re.compile(r"(\d+(?:\.\d+)?)(ms|s|m|h|d)")
_DURATION_UNITS = {
    "ms": timedelta(milliseconds=1),
    "s": timedelta(seconds=1),
    "m": timedelta(minutes=1),
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
}


def parse_since(value: str) -> timedelta:
    """Parse a duration such as ``"720h"``, ``"1h30m"`` or ``"7d"``.

    Raises
    ------
    ValueError
        If ``value`` is empty or contains anything but number/unit pairs.
    """
    text = value.strip()
    if not text:
        raise ValueError("empty duration")
    total = timedelta()
    pos = 0
    for match in _DURATION_PART.finditer(text):
        if match.start() != pos:
            break
        total += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
        pos = match.end()
    if pos != len(text):
        raise ValueError(f"invalid duration {value!r}")
    return total


def format_labels(labels: Optional[Mapping[str, Any]]) -> str:
    """Flatten a label set to ``key=value`` pairs, sorted by key."""
    if not labels:
        return ""
    return ",".join(f"{key}={labels[key]}" for key in sorted(labels))


def _data(payload: Any, path: str) -> Any:
    if not isinstance(payload, dict) or payload.get("status") != "success":
        error = payload.get("error") if isinstance(payload, dict) else None
        raise BackendError("prometheus", path, error or "response status is not success")
    return payload.get("data")


class PrometheusAdapter(JSONAdapter):
    """Adapter for the Prometheus HTTP API.

    Parameters are those of :class:`~owl.adapters.base.JSONAdapter`.
    """

    name = "prometheus"

    async def rules(self) -> List[Rule]:
        """Fetch every recording and alerting rule, in group order.

        Rules of any other type are skipped.
        """
        data = _data(await self._get_json(RULES_PATH), RULES_PATH) or {}
        rules: List[Rule] = []
        skipped = 0
        for group in data.get("groups") or []:
            for raw in group.get("rules") or []:
                kind = _RULE_TYPES.get(raw.get("type", ""))
                if kind is None:
                    skipped += 1
                    continue
                rules.append(
                    Rule(
                        group=group.get("name", ""),
                        kind=kind,
                        name=raw.get("name", ""),
                        query=raw.get("query", ""),
                        labels=format_labels(raw.get("labels")),
                        eval_duration_seconds=raw.get("evaluationTime") or 0.0,
                        last_evaluation=raw.get("lastEvaluation") or "",
                    )
                )
        logger.info(
            "prometheus.rules.fetched",
            extra={"rules": len(rules), "skipped": skipped},
        )
        return rules

    async def metric_names(self, since: Optional[timedelta] = None) -> List[MetricName]:
        """Fetch every metric name known to the server.

        Parameters
        ----------
        since: Optional[timedelta]
            When given, only names of series seen within this window are
            returned.
        """
        params: Dict[str, Any] = {}
        if since is not None:
            params["start"] = f"{time.time() - since.total_seconds():.3f}"
        data = _data(
            await self._get_json(METRIC_NAMES_PATH, params or None), METRIC_NAMES_PATH
        )
        names = [str(name) for name in data or []]
        logger.info("prometheus.metrics.fetched", extra={"metrics": len(names)})
        return names
