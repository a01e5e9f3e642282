"""Cross-reference analyses over rules, metrics and dashboards.

Every analysis loads only the snapshots it needs through
:func:`~owl.utils.partial_results.gather_snapshots`, then runs a bounded scan
or ranking in memory. Results are deterministic: set-valued fields are
returned sorted, and rankings have explicit tie-breaks.

PromQL parse failures never abort an analysis. The offending expression
contributes no identifiers and a ``parse_error`` entry is appended to the
result's ``parse_errors``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from datetime import timedelta
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Set,
    TypeVar,
)

from ..config.models import AnalysisConfig
from ..domain.models import (
    Board,
    IdleDashboard,
    IdleDashboardsResult,
    IdleMetricsResult,
    MetricName,
    MetricUsage,
    Rule,
    RuleMissingMetrics,
    RulesMissingMetricsResult,
    SlowestRulesResult,
    SlowRule,
    TopUsedResult,
)
from ..domain.promql import IdentifierExtractor
from ..errors import DeadlineExceeded, QueryParseError
from ..snapshots.loaders import load_dashboards, load_metrics, load_rules
from ..utils.partial_results import (
    FailureInfo,
    Loaded,
    PartialResult,
    failure_from_exception,
    gather_snapshots,
)

logger = logging.getLogger(__name__)

R = TypeVar("R")

_LOADERS: Dict[str, Callable[[Any], Awaitable[Loaded[Any]]]] = {
    "metrics": load_metrics,
    "rules": load_rules,
    "dashboards": load_dashboards,
}


def clamp_limit(limit: int, candidates: int) -> int:
    """Return ``limit`` bounded to ``[0, candidates]``."""
    return max(0, min(limit, candidates))


def distinct_rule_names(
    rules: Iterable[Rule], recording_only: bool = False
) -> FrozenSet[str]:
    """Names that satisfy a dashboard reference in place of a scraped metric."""
    names: Set[str] = set()
    for rule in rules:
        if recording_only and not rule.produces_series:
            continue
        names.add(rule.name)
    return frozenset(names)


class Reconciler:
    """Run the five reconciliation analyses.

    Parameters
    ----------
    config: AnalysisConfig
        Snapshot paths, result limit, deadline and rule-name policy.
    extractor: Optional[IdentifierExtractor]
        Identifier extractor; a default one is built when omitted.
    metrics, rules, dashboards:
        Optional in-memory collections, already fetched from a backend. Each
        one given replaces the corresponding snapshot file of ``config``.
    """

    def __init__(
        self,
        config: AnalysisConfig,
        extractor: Optional[IdentifierExtractor] = None,
        *,
        metrics: Optional[Iterable[MetricName]] = None,
        rules: Optional[Iterable[Rule]] = None,
        dashboards: Optional[Iterable[Board]] = None,
    ) -> None:
        self._cfg = config
        self._extractor = extractor or IdentifierExtractor()
        self._sources: Dict[str, Any] = {
            "metrics": config.metrics_file if metrics is None else frozenset(metrics),
            "rules": config.rules_file if rules is None else list(rules),
            "dashboards": config.dashboards_file if dashboards is None else list(dashboards),
        }

    @property
    def config(self) -> AnalysisConfig:
        return self._cfg

    # ---------------- plumbing ----------------

    async def _run(self, operation: str, analysis: Awaitable[R]) -> R:
        """Await ``analysis``, bounded by the configured deadline if any."""
        timeout = self._cfg.timeout_seconds
        if timeout is None:
            result = await analysis
        else:
            try:
                async with asyncio.timeout(timeout):
                    result = await analysis
            except TimeoutError as exc:
                logger.error(
                    f"analysis.{operation}.deadline",
                    extra={"timeout_seconds": timeout},
                )
                raise DeadlineExceeded(operation, timeout) from exc
        self._extractor.log_cache_stats()
        return result

    async def _load(self, *names: str) -> PartialResult:
        return await gather_snapshots(
            {name: _LOADERS[name](self._sources[name]) for name in names},
            operation_type="_".join(names),
        )

    def _identifiers(
        self, query: str, identifier: str, errors: List[FailureInfo]
    ) -> FrozenSet[MetricName]:
        try:
            return self._extractor.extract(query)
        except QueryParseError as exc:
            errors.append(failure_from_exception(identifier, exc))
            logger.debug(
                "analysis.parse_error",
                extra={"identifier": identifier, "error": exc.detail},
            )
            return frozenset()

    def _board_identifiers(
        self, board: Board, errors: List[FailureInfo]
    ) -> Iterable[FrozenSet[MetricName]]:
        """Yield the identifier set of each non-empty panel target of ``board``."""
        for panel in board.panels:
            where = f"dashboard:{board.uid}/panel:{panel.id}"
            for expr in panel.expressions():
                yield self._identifiers(expr, where, errors)

    # ---------------- analyses ----------------

    async def rules_missing_metrics(self) -> RulesMissingMetricsResult:
        """Find rules whose queries reference metrics that are not scraped.

        The scan stops as soon as ``limit`` rules have been reported; the
        remaining rules are not evaluated.
        """
        return await self._run("rules_missing_metrics", self._rules_missing_metrics())

    async def _rules_missing_metrics(self) -> RulesMissingMetricsResult:
        loaded = await self._load("metrics", "rules")
        metrics: FrozenSet[MetricName] = loaded["metrics"]
        rules: List[Rule] = loaded["rules"]
        errors = list(loaded.failures)

        limit = clamp_limit(self._cfg.limit, len(rules))
        found: List[RuleMissingMetrics] = []
        for rule in rules:
            if len(found) >= limit:
                break
            used = self._identifiers(rule.query, f"rule:{rule.group}/{rule.name}", errors)
            missing = sorted(used - metrics)
            if missing:
                found.append(RuleMissingMetrics(rule=rule, missing_metrics=missing))

        logger.info(
            "analysis.rules_missing_metrics.complete",
            extra={"found": len(found), "parse_errors": len(errors)},
        )
        return RulesMissingMetricsResult(rules=found, parse_errors=errors)

    async def idle_dashboards(self) -> IdleDashboardsResult:
        """Find dashboards referencing metrics that neither exist nor are recorded.

        A reference is satisfied by a known metric or by a rule name. With
        ``recording_rules_only`` set, alert names no longer satisfy it.
        """
        return await self._run("idle_dashboards", self._idle_dashboards())

    async def _idle_dashboards(self) -> IdleDashboardsResult:
        loaded = await self._load("metrics", "rules", "dashboards")
        metrics: FrozenSet[MetricName] = loaded["metrics"]
        boards: List[Board] = loaded["dashboards"]
        rule_names = distinct_rule_names(loaded["rules"], self._cfg.recording_rules_only)
        errors = list(loaded.failures)

        limit = clamp_limit(self._cfg.limit, len(boards))
        idle: List[IdleDashboard] = []
        seen: Set[str] = set()
        for board in boards:
            if len(idle) >= limit:
                break
            # Repeated rows of one uid are the same dashboard; the first wins.
            if board.uid in seen:
                continue
            seen.add(board.uid)
            missing: Set[MetricName] = set()
            for names in self._board_identifiers(board, errors):
                missing.update(
                    name for name in names if name not in metrics and name not in rule_names
                )
            if missing:
                idle.append(
                    IdleDashboard(
                        uid=board.uid, title=board.title, missing_metrics=sorted(missing)
                    )
                )

        logger.info(
            "analysis.idle_dashboards.complete",
            extra={"found": len(idle), "parse_errors": len(errors)},
        )
        return IdleDashboardsResult(dashboards=idle, parse_errors=errors)

    async def idle_metrics(self) -> IdleMetricsResult:
        """List known metrics that no rule and no dashboard references, by name."""
        return await self._run("idle_metrics", self._idle_metrics())

    async def _idle_metrics(self) -> IdleMetricsResult:
        loaded = await self._load("metrics", "rules", "dashboards")
        metrics: FrozenSet[MetricName] = loaded["metrics"]
        errors = list(loaded.failures)

        used: Set[MetricName] = set()
        for rule in loaded["rules"]:
            used |= self._identifiers(rule.query, f"rule:{rule.group}/{rule.name}", errors)
        for board in loaded["dashboards"]:
            for names in self._board_identifiers(board, errors):
                used |= names

        idle = sorted(metrics - used)
        idle = idle[: clamp_limit(self._cfg.limit, len(idle))]
        logger.info(
            "analysis.idle_metrics.complete",
            extra={"known": len(metrics), "used": len(used), "found": len(idle)},
        )
        return IdleMetricsResult(idle_metrics=idle, parse_errors=errors)

    async def top_used_metrics(self) -> TopUsedResult:
        """Rank metrics by the number of panel targets referencing them.

        Ordered by count descending, then metric name ascending.
        """
        return await self._run("top_used_metrics", self._top_used_metrics())

    async def _top_used_metrics(self) -> TopUsedResult:
        loaded = await self._load("dashboards")
        errors = list(loaded.failures)

        counts: Counter[MetricName] = Counter()
        for board in loaded["dashboards"]:
            for names in self._board_identifiers(board, errors):
                counts.update(names)

        ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        usages = [
            MetricUsage(metric=metric, count=count)
            for metric, count in ranked[: clamp_limit(self._cfg.limit, len(ranked))]
        ]
        logger.info(
            "analysis.top_used_metrics.complete",
            extra={"distinct": len(counts), "returned": len(usages)},
        )
        return TopUsedResult(usages=usages, parse_errors=errors)

    async def slowest_rules(self) -> SlowestRulesResult:
        """Rank rules by evaluation duration descending, then name ascending."""
        return await self._run("slowest_rules", self._slowest_rules())

    async def _slowest_rules(self) -> SlowestRulesResult:
        loaded = await self._load("rules")
        rules: List[Rule] = loaded["rules"]

        ranked = sorted(rules, key=lambda rule: (-rule.eval_duration_seconds, rule.name))
        slow = [
            SlowRule(rule=rule, eval_duration=timedelta(seconds=rule.eval_duration_seconds))
            for rule in ranked[: clamp_limit(self._cfg.limit, len(ranked))]
        ]
        logger.info(
            "analysis.slowest_rules.complete",
            extra={"rules": len(rules), "returned": len(slow)},
        )
        return SlowestRulesResult(rules=slow, parse_errors=list(loaded.failures))

