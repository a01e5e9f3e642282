"""Tests for metric identifier extraction from PromQL."""

from __future__ import annotations

import pytest

from owl.domain.promql import (
    DEFAULT_SUBSTITUTIONS,
    IdentifierExtractor,
    TemplateSubstitutions,
)
from owl.errors import QueryParseError


@pytest.fixture
def extractor() -> IdentifierExtractor:
    return IdentifierExtractor()


def test_plain_selector(extractor: IdentifierExtractor) -> None:
    assert extractor.extract("up") == frozenset({"up"})


def test_binary_expression_collects_both_sides(extractor: IdentifierExtractor) -> None:
    assert extractor.extract("rate(disk_io[5m]) + cpu_usage") == {"disk_io", "cpu_usage"}


def test_nested_aggregation_and_functions(extractor: IdentifierExtractor) -> None:
    query = (
        "histogram_quantile(0.99, sum by (le) (rate(http_request_duration_seconds_bucket[5m])))"
        " / ignoring(code) sum(rate(http_requests_total[5m]))"
    )
    assert extractor.extract(query) == {
        "http_request_duration_seconds_bucket",
        "http_requests_total",
    }


def test_aggregation_parameter_is_walked(extractor: IdentifierExtractor) -> None:
    assert extractor.extract("quantile(scalar(q), node_load1)") == {"q", "node_load1"}


def test_subquery_and_offset(extractor: IdentifierExtractor) -> None:
    assert extractor.extract("max_over_time(rate(errors_total[1m])[10m:1m] offset 5m)") == {
        "errors_total"
    }


def test_grafana_rate_interval_is_substituted(extractor: IdentifierExtractor) -> None:
    assert extractor.extract("rate(foo[$__rate_interval])") == {"foo"}


def test_bracketed_custom_variable_is_substituted(extractor: IdentifierExtractor) -> None:
    assert extractor.extract("increase(bar_total[$window])") == {"bar_total"}


def test_subquery_variables_are_substituted(extractor: IdentifierExtractor) -> None:
    assert extractor.extract("max_over_time(baz[$range:$step])") == {"baz"}


def test_unnamed_selector_with_name_equality(extractor: IdentifierExtractor) -> None:
    assert extractor.extract('{__name__="node_cpu_seconds_total", mode="idle"}') == {
        "node_cpu_seconds_total"
    }


def test_unnamed_selector_with_name_regex_contributes_nothing(
    extractor: IdentifierExtractor,
) -> None:
    assert extractor.extract('{__name__=~"node_.*"}') == frozenset()


def test_unnamed_selector_with_invalid_name_contributes_nothing(
    extractor: IdentifierExtractor,
) -> None:
    assert extractor.extract('{__name__="not-a-metric"}') == frozenset()


def test_literals_only(extractor: IdentifierExtractor) -> None:
    assert extractor.extract("1 + 2") == frozenset()


def test_invalid_query_raises_parse_error(extractor: IdentifierExtractor) -> None:
    with pytest.raises(QueryParseError) as info:
        extractor.extract("sum(rate(foo[5m])")
    assert info.value.query == "sum(rate(foo[5m])"


def test_extract_is_memoized(extractor: IdentifierExtractor) -> None:
    first = extractor.extract("up")
    second = extractor.extract("up")
    assert first == second
    assert extractor._cache.hits == 1
    assert extractor._cache.misses == 1


def test_parse_errors_are_not_memoized(extractor: IdentifierExtractor) -> None:
    for _ in range(2):
        with pytest.raises(QueryParseError):
            extractor.extract("foo{")
    assert extractor._cache.misses == 2


def test_substitutions_prefer_longest_placeholder() -> None:
    assert DEFAULT_SUBSTITUTIONS.apply("x * $__interval_ms") == "x * 300000"
    assert DEFAULT_SUBSTITUTIONS.apply("x[$__interval]") == "x[5m]"


def test_custom_substitutions_are_used() -> None:
    subs = TemplateSubstitutions(placeholders=(("$cluster_window", "1h"),))
    extractor = IdentifierExtractor(subs, cache_size=0)
    assert extractor.substitutions is subs
    assert extractor.extract("rate(x_total[$cluster_window])") == {"x_total"}
    assert len(extractor._cache) == 0
