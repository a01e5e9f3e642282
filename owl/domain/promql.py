"""Metric identifier extraction from PromQL expressions.

Dashboard-authored queries are full of Grafana template variables
(``$__rate_interval``, ``[$window]``...) that are not valid PromQL. Before
parsing, :class:`TemplateSubstitutions` rewrites them into fixed literal
durations. The rewrite is lossy: it only needs to make the expression
parseable, not to preserve its meaning.

The parsed tree is then walked for vector selectors. A selector contributes
its metric name; an unnamed selector contributes only when it pins
``__name__`` with an exact-equality matcher on a valid metric name.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from functools import cached_property
from typing import Any, FrozenSet, Iterator, Optional, Tuple

import promql_parser

from ..errors import QueryParseError
from ..utils.cache import Cache

logger = logging.getLogger(__name__)

METRIC_NAME_LABEL = "__name__"
VALID_METRIC_NAME = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")

DEFAULT_PLACEHOLDERS: Tuple[Tuple[str, str], ...] = (
    ("$__interval", "5m"),
    ("$interval", "5m"),
    ("$resolution", "5s"),
    ("$__rate_interval", "15s"),
    ("$rate_interval", "15s"),
    ("$__range", "1d"),
    ("${__range_s:glob}", "30"),
    ("${__range_s}", "30"),
    ("$__interval_ms", "300000"),
    ("$__range_s", "86400"),
    ("$__range_ms", "86400000"),
)

# Child attributes of promql_parser expression nodes that hold sub-expressions.
_CHILD_ATTRS = ("expr", "lhs", "rhs", "param", "vector_selector")


@dataclass(frozen=True)
class TemplateSubstitutions:
    """Immutable rewrite table applied to a query before parsing.

    Attributes
    ----------
    placeholders: Tuple[Tuple[str, str], ...]
        ``(placeholder, literal)`` pairs. When placeholders overlap, the
        longest one wins.
    range_literal: str
        Replacement for bracketed range placeholders such as ``[$window]``.
    subquery_literal: str
        Replacement for bracketed subquery placeholders such as ``[$a:$b]``.
    """

    placeholders: Tuple[Tuple[str, str], ...] = DEFAULT_PLACEHOLDERS
    range_literal: str = "[5m]"
    subquery_literal: str = "[5m:1m]"

    @cached_property
    def _placeholder_re(self) -> "re.Pattern[str]":
        keys = sorted((key for key, _ in self.placeholders), key=len, reverse=True)
        return re.compile("|".join(re.escape(key) for key in keys))

    @cached_property
    def _literals(self) -> dict:
        return dict(self.placeholders)

    def apply(self, query: str) -> str:
        """Return ``query`` with every known template placeholder replaced."""
        if self.placeholders:
            query = self._placeholder_re.sub(
                lambda m: self._literals[m.group(0)], query
            )
        query = _RANGE_PLACEHOLDER.sub(lambda _: self.range_literal, query)
        return _SUBQUERY_PLACEHOLDER.sub(lambda _: self.subquery_literal, query)


_RANGE_PLACEHOLDER = re.compile(r"\[\$?\w+?]")
_SUBQUERY_PLACEHOLDER = re.compile(r"\[\$?\w+:\$?\w+?]")

DEFAULT_SUBSTITUTIONS = TemplateSubstitutions()


class IdentifierExtractor:
    """Extract the set of metric identifiers referenced by a PromQL query.

    Parameters
    ----------
    substitutions: TemplateSubstitutions
        Template rewrite table applied before parsing.
    cache_size: int
        Number of distinct queries whose results are memoized. ``0`` disables
        the cache.
    """

    def __init__(
        self,
        substitutions: TemplateSubstitutions = DEFAULT_SUBSTITUTIONS,
        cache_size: int = 4096,
    ) -> None:
        self._substitutions = substitutions
        self._cache: Cache[str, FrozenSet[str]] = Cache(maxsize=cache_size)

    @property
    def substitutions(self) -> TemplateSubstitutions:
        return self._substitutions

    def extract(self, query: str) -> FrozenSet[str]:
        """Return the metric names referenced by ``query``.

        Raises
        ------
        QueryParseError
            If the substituted query is not valid PromQL.
        """
        return self._cache.get_or_compute(query, self._extract)

    def _extract(self, query: str) -> FrozenSet[str]:
        substituted = self._substitutions.apply(query)
        try:
            expr = promql_parser.parse(substituted)
        except ValueError as exc:
            raise QueryParseError(query, str(exc)) from exc

        names = set()
        for selector in _vector_selectors(expr):
            name = _selector_metric_name(selector)
            if name:
                names.add(name)
        return frozenset(names)

    def log_cache_stats(self) -> None:
        logger.debug(
            "promql.extract.cache",
            extra={
                "hits": self._cache.hits,
                "misses": self._cache.misses,
                "size": len(self._cache),
            },
        )


def _vector_selectors(root: Any) -> Iterator[Any]:
    """Yield every vector selector node of a parsed expression tree."""
    stack = [root]
    while stack:
        node = stack.pop()
        if node is None:
            continue
        if isinstance(node, promql_parser.VectorSelector):
            yield node
            continue
        for attr in _CHILD_ATTRS:
            child = getattr(node, attr, None)
            if child is not None:
                stack.append(child)
        stack.extend(getattr(node, "args", None) or ())


def _selector_metric_name(selector: Any) -> Optional[str]:
    if selector.name:
        return selector.name
    matchers = getattr(selector.matchers, "matchers", selector.matchers)
    for matcher in matchers or ():
        if (
            matcher.name == METRIC_NAME_LABEL
            and _is_equality(matcher.op)
            and VALID_METRIC_NAME.match(matcher.value)
        ):
            return matcher.value
    return None


def _is_equality(op: Any) -> bool:
    # MatchOp members are rebuilt on each attribute access; compare their names.
    return str(op) == str(promql_parser.MatchOp.Equal)
