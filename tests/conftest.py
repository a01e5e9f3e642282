"""Pytest configuration for test suite.

Ensures the project root is on ``sys.path`` so imports like ``import owl``
resolve correctly regardless of the working directory pytest chooses, and
provides small snapshot files written into ``tmp_path``.
"""

from __future__ import annotations

import csv
import json
import sys
from pathlib import Path
from typing import Callable, Iterable, List, Sequence

import pytest


def _ensure_project_root_on_syspath() -> None:
    project_root = Path(__file__).resolve().parents[1]
    project_root_str = str(project_root)
    if project_root_str not in sys.path:
        # Prepend to prefer local sources over site-packages
        sys.path.insert(0, project_root_str)


_ensure_project_root_on_syspath()


def write_csv(path: Path, header: Sequence[str], rows: Iterable[Sequence[str]]) -> Path:
    with open(path, "w", newline="", encoding="utf-8") as f:
        w = csv.writer(f)
        w.writerow(header)
        w.writerows(rows)
    return path


def panels_json(*exprs: List[str]) -> str:
    """Encode one panel per argument, each holding the given target exprs."""
    return json.dumps(
        [
            {"id": i + 1, "title": f"p{i + 1}", "type": "timeseries",
             "targets": [{"expr": e} for e in targets]}
            for i, targets in enumerate(exprs)
        ]
    )


RULES_HEADER = ("group", "type", "name", "query", "labels", "evalTime", "lastEval")


@pytest.fixture
def metrics_csv(tmp_path: Path) -> Callable[..., Path]:
    def make(*names: str, filename: str = "metrics.csv") -> Path:
        return write_csv(tmp_path / filename, ["name"], [[n] for n in names])

    return make


@pytest.fixture
def rules_csv(tmp_path: Path) -> Callable[..., Path]:
    """Rows are ``(group, type, name, query)`` or full seven-column tuples."""

    def make(*rows: Sequence[str], filename: str = "rules.csv") -> Path:
        full = [
            list(r) if len(r) == 7 else [*r, "", "0.001", "2024-01-01T00:00:00Z"]
            for r in rows
        ]
        return write_csv(tmp_path / filename, RULES_HEADER, full)

    return make


@pytest.fixture
def dashboards_csv(tmp_path: Path) -> Callable[..., Path]:
    """Rows are ``(uid, title, panels_json)``."""

    def make(*rows: Sequence[str], filename: str = "dashboards.csv") -> Path:
        return write_csv(tmp_path / filename, ["uid", "title", "panels"], rows)

    return make
