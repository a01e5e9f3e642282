"""Canonical data model for rules, dashboards and analysis results.

These Pydantic models represent the monitoring artifacts that snapshot loaders
produce and the reconciler consumes. Metric names are kept as plain strings:
equality is exact, and nothing is normalized.
"""

from __future__ import annotations

from datetime import timedelta
from enum import Enum
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..utils.partial_results import FailureInfo

MetricName = str


class RuleKind(str, Enum):
    """Closed set of Prometheus rule kinds, valued as written in ``rules.csv``."""

    RECORDING = "record"
    ALERTING = "alert"


class Rule(BaseModel):
    """A Prometheus recording or alerting rule.

    Attributes
    ----------
    group: str
        Name of the rule group the rule belongs to.
    kind: RuleKind
        Recording rules materialize new series; alerting rules do not.
    name: str
        Recorded series name or alert name.
    query: str
        PromQL expression evaluated by the rule.
    labels: str
        Rule labels flattened as ``key=value`` pairs joined by commas.
    eval_duration_seconds: float
        Duration of the last evaluation, in seconds.
    last_evaluation: str
        Timestamp of the last evaluation, as text.
    """

    model_config = ConfigDict(frozen=True)

    group: str
    kind: RuleKind
    name: str
    query: str
    labels: str = ""
    eval_duration_seconds: float = Field(0.0, ge=0, allow_inf_nan=False)
    last_evaluation: str = ""

    @property
    def produces_series(self) -> bool:
        """Whether the rule writes a series that can be queried by its name."""
        if self.kind is RuleKind.RECORDING:
            return True
        if self.kind is RuleKind.ALERTING:
            return False
        raise ValueError(f"unknown rule kind: {self.kind!r}")


class Target(BaseModel):
    """One query bound to a dashboard panel. An empty ``expr`` means no query."""

    model_config = ConfigDict(extra="ignore")

    expr: str = ""
    datasource: Optional[Any] = None


class Panel(BaseModel):
    """Dashboard panel with its ordered query targets."""

    model_config = ConfigDict(extra="ignore")

    id: Optional[int] = None
    title: str = ""
    type: str = ""
    targets: List[Target] = Field(default_factory=list)

    @field_validator("targets", mode="before")
    @classmethod
    def _null_targets(cls, value: Any) -> Any:
        return [] if value is None else value

    def expressions(self) -> List[str]:
        """Return the non-empty target expressions, in order."""
        return [target.expr for target in self.targets if target.expr]


class Board(BaseModel):
    """Grafana dashboard. Two boards with the same ``uid`` are the same dashboard."""

    uid: str
    title: str = ""
    panels: List[Panel] = Field(default_factory=list)

    @field_validator("panels", mode="before")
    @classmethod
    def _null_panels(cls, value: Any) -> Any:
        return [] if value is None else value

    def expressions(self) -> List[str]:
        """Return every non-empty panel target expression, in panel order."""
        exprs: List[str] = []
        for panel in self.panels:
            exprs.extend(panel.expressions())
        return exprs


class RuleMissingMetrics(BaseModel):
    """A rule whose query references metrics absent from the known set."""

    rule: Rule
    missing_metrics: List[MetricName]


class IdleDashboard(BaseModel):
    """A dashboard referencing metrics that neither exist nor are recorded."""

    uid: str
    title: str
    missing_metrics: List[MetricName]


class MetricUsage(BaseModel):
    """Number of panel-target expressions referencing a metric."""

    metric: MetricName
    count: int


class SlowRule(BaseModel):
    """A rule ranked by its evaluation duration."""

    rule: Rule
    eval_duration: timedelta


class RulesMissingMetricsResult(BaseModel):
    rules: List[RuleMissingMetrics] = Field(default_factory=list)
    parse_errors: List[FailureInfo] = Field(default_factory=list)


class IdleDashboardsResult(BaseModel):
    dashboards: List[IdleDashboard] = Field(default_factory=list)
    parse_errors: List[FailureInfo] = Field(default_factory=list)


class IdleMetricsResult(BaseModel):
    idle_metrics: List[MetricName] = Field(default_factory=list)
    parse_errors: List[FailureInfo] = Field(default_factory=list)


class TopUsedResult(BaseModel):
    usages: List[MetricUsage] = Field(default_factory=list)
    parse_errors: List[FailureInfo] = Field(default_factory=list)


class SlowestRulesResult(BaseModel):
    rules: List[SlowRule] = Field(default_factory=list)
    parse_errors: List[FailureInfo] = Field(default_factory=list)
