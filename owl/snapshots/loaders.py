"""Typed loaders and writers for the three snapshot kinds.

========================  ==================================================
File                      Columns
========================  ==================================================
``metrics.csv``           ``name``
``rules.csv``             ``group,type,name,query,labels,evalTime,lastEval``
``dashboards.csv``        ``uid,title,panels`` (``panels`` is a JSON array)
========================  ==================================================

Every loader accepts either a snapshot path or an in-memory collection that
was already fetched from a backend; the latter is passed through untouched.
Loaders return a :class:`~owl.utils.partial_results.Loaded` value holding the
collection and the rows skipped as malformed.
"""

from __future__ import annotations

import logging
import math
from pathlib import Path
from typing import FrozenSet, Iterable, List, Optional, Sequence, Union

from pydantic import TypeAdapter, ValidationError

from ..domain.models import Board, MetricName, Panel, Rule, RuleKind
from ..errors import SnapshotFormatError
from ..utils.partial_results import Loaded
from .tabular import DEFAULT_BATCH_SIZE, PathLike, Record, SnapshotReader, SnapshotWriter

logger = logging.getLogger(__name__)

METRICS_COLUMNS = ("name",)
RULES_COLUMNS = ("group", "type", "name", "query", "labels", "evalTime", "lastEval")
DASHBOARDS_COLUMNS = ("uid", "title", "panels")

MetricsSource = Union[PathLike, Iterable[MetricName]]
RulesSource = Union[PathLike, Iterable[Rule]]
DashboardsSource = Union[PathLike, Iterable[Board]]

_PANELS: TypeAdapter[Optional[List[Panel]]] = TypeAdapter(Optional[List[Panel]])


def _is_path(source: object) -> bool:
    return isinstance(source, (str, Path))


def _require_columns(record: Record, path: Path, columns: Sequence[str]) -> List[str]:
    if len(record.fields) < len(columns):
        raise SnapshotFormatError(
            "decode row",
            path,
            f"expected {len(columns)} columns ({','.join(columns)}), "
            f"got {len(record.fields)}",
            line=record.line,
        )
    return record.fields


async def load_metrics(source: MetricsSource) -> Loaded[FrozenSet[MetricName]]:
    """Load the known-metrics set."""
    if not _is_path(source):
        return Loaded(frozenset(source))  # type: ignore[arg-type]

    names = set()
    async with SnapshotReader(source) as reader:  # type: ignore[arg-type]
        async for record in reader.rows():
            fields = _require_columns(record, reader.path, METRICS_COLUMNS)
            names.add(fields[0])

    logger.info(
        "snapshot.metrics.loaded",
        extra={"path": str(source), "metrics": len(names), "skipped": len(reader.errors)},
    )
    return Loaded(frozenset(names), reader.errors)


def decode_rule(record: Record, path: Path) -> Rule:
    """Decode one ``rules.csv`` row.

    Raises
    ------
    SnapshotFormatError
        If the row is short, ``type`` is unknown or ``evalTime`` is not a number.
    """
    fields = _require_columns(record, path, RULES_COLUMNS)
    group, kind, name, query, labels, eval_time, last_eval = fields[: len(RULES_COLUMNS)]
    try:
        rule_kind = RuleKind(kind)
    except ValueError as exc:
        raise SnapshotFormatError(
            "parse rule type", path, f"unknown rule type {kind!r}", line=record.line
        ) from exc
    try:
        duration = float(eval_time)
    except ValueError as exc:
        raise SnapshotFormatError(
            "parse eval-duration",
            path,
            f"invalid evalTime {eval_time!r}",
            line=record.line,
        ) from exc
    if not math.isfinite(duration) or duration < 0:
        raise SnapshotFormatError(
            "parse eval-duration",
            path,
            f"evalTime out of range: {eval_time!r}",
            line=record.line,
        )
    return Rule(
        group=group,
        kind=rule_kind,
        name=name,
        query=query,
        labels=labels,
        eval_duration_seconds=duration,
        last_evaluation=last_eval,
    )


async def load_rules(source: RulesSource) -> Loaded[List[Rule]]:
    """Load rules in file order."""
    if not _is_path(source):
        return Loaded(list(source))  # type: ignore[arg-type]

    rules: List[Rule] = []
    async with SnapshotReader(source) as reader:  # type: ignore[arg-type]
        async for record in reader.rows():
            rules.append(decode_rule(record, reader.path))

    logger.info(
        "snapshot.rules.loaded",
        extra={"path": str(source), "rules": len(rules), "skipped": len(reader.errors)},
    )
    return Loaded(rules, reader.errors)


def decode_board(record: Record, path: Path) -> Board:
    """Decode one ``dashboards.csv`` row, including its JSON panel list.

    A panel list that fails to decode is fatal: a partially decoded
    dashboard cannot be analyzed.
    """
    fields = _require_columns(record, path, DASHBOARDS_COLUMNS)
    uid, title, raw_panels = fields[: len(DASHBOARDS_COLUMNS)]
    try:
        panels = _PANELS.validate_json(raw_panels) or []
    except ValidationError as exc:
        raise SnapshotFormatError(
            "decode panels",
            path,
            f"dashboard {uid!r}: {exc.error_count()} error(s): {exc.errors()[0]['msg']}",
            line=record.line,
        ) from exc
    return Board(uid=uid, title=title, panels=panels)


async def load_dashboards(source: DashboardsSource) -> Loaded[List[Board]]:
    """Load dashboards in file order."""
    if not _is_path(source):
        return Loaded(list(source))  # type: ignore[arg-type]

    boards: List[Board] = []
    async with SnapshotReader(source) as reader:  # type: ignore[arg-type]
        async for record in reader.rows():
            boards.append(decode_board(record, reader.path))

    logger.info(
        "snapshot.dashboards.loaded",
        extra={"path": str(source), "dashboards": len(boards), "skipped": len(reader.errors)},
    )
    return Loaded(boards, reader.errors)


async def write_metrics(
    path: PathLike,
    names: Iterable[MetricName],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Write ``metrics.csv``; returns the number of data rows written."""
    async with SnapshotWriter(path, METRICS_COLUMNS, batch_size) as writer:
        for name in names:
            await writer.write_row((name,))
    return writer.rows_written


def encode_rule(rule: Rule) -> List[str]:
    return [
        rule.group,
        rule.kind.value,
        rule.name,
        rule.query,
        rule.labels,
        repr(rule.eval_duration_seconds),
        rule.last_evaluation,
    ]


async def write_rules(
    path: PathLike,
    rules: Iterable[Rule],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Write ``rules.csv``; returns the number of data rows written."""
    async with SnapshotWriter(path, RULES_COLUMNS, batch_size) as writer:
        for rule in rules:
            await writer.write_row(encode_rule(rule))
    return writer.rows_written


def encode_board(board: Board) -> List[str]:
    panels = _PANELS.dump_json(board.panels, exclude_none=True).decode("utf-8")
    return [board.uid, board.title, panels]


async def write_dashboards(
    path: PathLike,
    boards: Iterable[Board],
    batch_size: int = DEFAULT_BATCH_SIZE,
) -> int:
    """Write ``dashboards.csv``; returns the number of data rows written."""
    async with SnapshotWriter(path, DASHBOARDS_COLUMNS, batch_size) as writer:
        for board in boards:
            await writer.write_row(encode_board(board))
    return writer.rows_written
