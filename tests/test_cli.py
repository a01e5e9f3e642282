"""Tests for the ``owl`` command-line interface."""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import httpx
import pytest
from conftest import panels_json

import owl.analysis.reconciler as reconciler_module
from owl import cli
from owl.adapters.prometheus import PrometheusAdapter


def _lines(out: str):
    return [json.loads(line) for line in out.splitlines() if line.strip()]


def test_rules_idle_prints_json_lines(metrics_csv, rules_csv, capsys) -> None:
    code = cli.main(
        [
            "rules", "idle",
            "--metrics-file", str(metrics_csv("cpu_usage", "mem_usage")),
            "--rules-file", str(rules_csv(
                ("g", "record", "r1", "rate(disk_io[5m]) + cpu_usage"),
                ("g", "record", "r2", "mem_usage"),
            )),
        ]
    )
    assert code == cli.EXIT_OK
    items = _lines(capsys.readouterr().out)
    assert len(items) == 1
    assert items[0]["rule"]["name"] == "r1"
    assert items[0]["missing_metrics"] == ["disk_io"]


def test_top_metrics_respects_limit(dashboards_csv, capsys) -> None:
    path = dashboards_csv(("a", "A", panels_json(["x", "y"], ["x"])))
    code = cli.main(["dashboards", "top-metrics", "--dashboards-file", str(path), "--limit", "1"])
    assert code == cli.EXIT_OK
    assert _lines(capsys.readouterr().out) == [{"metric": "x", "count": 2}]


def test_metrics_idle_prints_names(metrics_csv, rules_csv, dashboards_csv, capsys) -> None:
    code = cli.main(
        [
            "metrics", "idle",
            "--metrics-file", str(metrics_csv("up", "unused")),
            "--rules-file", str(rules_csv(("g", "record", "r", "up"))),
            "--dashboards-file", str(dashboards_csv(("a", "A", "[]"))),
        ]
    )
    assert code == cli.EXIT_OK
    assert _lines(capsys.readouterr().out) == [{"metric": "unused"}]


def test_fatal_snapshot_error_exits_1(metrics_csv, rules_csv, dashboards_csv, capsys) -> None:
    code = cli.main(
        [
            "metrics", "idle",
            "--metrics-file", str(metrics_csv("up")),
            "--rules-file", str(rules_csv(("g", "record", "r", "up"))),
            "--dashboards-file", str(dashboards_csv(("a", "A", "{nope"))),
        ]
    )
    assert code == cli.EXIT_FAILURE
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "decode panels" in captured.err


def test_missing_snapshot_exits_1(tmp_path: Path) -> None:
    code = cli.main(["rules", "slowest", "--rules-file", str(tmp_path / "absent.csv")])
    assert code == cli.EXIT_FAILURE


def test_deadline_exits_2(monkeypatch, tmp_path: Path) -> None:
    async def never(_source):
        await asyncio.sleep(10)

    monkeypatch.setitem(reconciler_module._LOADERS, "rules", never)
    code = cli.main(
        ["rules", "slowest", "--rules-file", str(tmp_path / "r.csv"), "--timeout", "0.05"]
    )
    assert code == cli.EXIT_DEADLINE


def test_invalid_since_is_a_usage_error() -> None:
    with pytest.raises(SystemExit) as info:
        cli.main(["metrics", "export", "--since", "soon"])
    assert info.value.code == 2


def test_negative_limit_is_a_usage_error() -> None:
    with pytest.raises(SystemExit):
        cli.main(["rules", "slowest", "--limit", "-1"])


def test_config_file_supplies_analysis_defaults(rules_csv, tmp_path: Path, capsys) -> None:
    rules = rules_csv(
        ("g", "record", "a", "up", "", "0.1", ""),
        ("g", "record", "b", "up", "", "0.3", ""),
        ("g", "record", "c", "up", "", "0.2", ""),
    )
    config = tmp_path / "owl.json"
    config.write_text(json.dumps({"analysis": {"rules_file": str(rules), "limit": 2}}))
    assert cli.main(["--config", str(config), "rules", "slowest"]) == cli.EXIT_OK
    assert [i["rule"]["name"] for i in _lines(capsys.readouterr().out)] == ["b", "c"]


def test_invalid_config_file_exits_1(tmp_path: Path) -> None:
    config = tmp_path / "owl.json"
    config.write_text(json.dumps({"analysis": {"limit": "many"}}))
    assert cli.main(["--config", str(config), "rules", "slowest"]) == cli.EXIT_FAILURE


def test_rules_export_writes_snapshot(monkeypatch, tmp_path: Path) -> None:
    payload = {
        "status": "success",
        "data": {"groups": [{"name": "g", "rules": [
            {"type": "recording", "name": "a:sum", "query": "sum(a)",
             "labels": {"x": "1"}, "evaluationTime": 0.5,
             "lastEvaluation": "2024-05-01T10:00:00Z"},
        ]}]},
    }
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json=payload)

    class _MockPrometheus(PrometheusAdapter):
        def __init__(self, endpoint, *args, **kwargs):
            super().__init__(endpoint, *args, **kwargs)
            self.inject_http_client_for_testing(
                httpx.AsyncClient(base_url=endpoint, transport=httpx.MockTransport(handler))
            )

    monkeypatch.setattr(cli, "PrometheusAdapter", _MockPrometheus)
    out = tmp_path / "rules.csv"
    code = cli.main(["rules", "export", "-o", str(out), "--addr", "http://prom.test/"])
    assert code == cli.EXIT_OK
    assert seen == ["http://prom.test/api/v1/rules"]
    assert out.read_text(encoding="utf-8").splitlines() == [
        "group,type,name,query,labels,evalTime,lastEval",
        "g,record,a:sum,sum(a),x=1,0.5,2024-05-01T10:00:00Z",
    ]


def test_export_http_failure_exits_1(monkeypatch, tmp_path: Path) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, text="boom")

    class _MockPrometheus(PrometheusAdapter):
        def __init__(self, endpoint, *args, **kwargs):
            super().__init__(endpoint, *args, **kwargs)
            self.inject_http_client_for_testing(
                httpx.AsyncClient(base_url=endpoint, transport=httpx.MockTransport(handler))
            )

    monkeypatch.setattr(cli, "PrometheusAdapter", _MockPrometheus)
    code = cli.main(["metrics", "export", "-o", str(tmp_path / "m.csv"), "--addr", "http://p/"])
    assert code == cli.EXIT_FAILURE
