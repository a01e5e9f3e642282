"""Command-line interface for owl.

Usage
-----
    owl rules export -o rules.csv --addr https://prometheus.example/
    owl metrics export -o metrics.csv --since 720h
    owl dashboards export -o dashboards.csv --svc-token $TOKEN
    owl rules idle --limit 20
    owl dashboards top-metrics --timeout 30

Analysis results are written to stdout, one JSON object per line. Logs go to
stderr. Exit status is 1 on a fatal error and 2 when a deadline expires.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from pydantic import BaseModel, ValidationError

from .__version__ import __version__
from .adapters.grafana import GrafanaAdapter
from .adapters.prometheus import PrometheusAdapter, parse_since
from .analysis import Reconciler
from .config.models import AnalysisConfig, AppConfig, EnvSettings, SourceConfig
from .errors import DeadlineExceeded, OwlError
from .observability import setup_logging
from .snapshots.export import export_dashboards, export_metrics, export_rules
from .utils.partial_results import FailureInfo, format_failure_summary

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_DEADLINE = 2

# (group, command) -> (Reconciler method, result field holding the items)
ANALYSES: Dict[Tuple[str, str], Tuple[str, str]] = {
    ("rules", "idle"): ("rules_missing_metrics", "rules"),
    ("rules", "slowest"): ("slowest_rules", "rules"),
    ("metrics", "idle"): ("idle_metrics", "idle_metrics"),
    ("dashboards", "idle"): ("idle_dashboards", "dashboards"),
    ("dashboards", "top-metrics"): ("top_used_metrics", "usages"),
}

_ANALYSIS_FILES: Dict[Tuple[str, str], Tuple[str, ...]] = {
    ("rules", "idle"): ("rules", "metrics"),
    ("rules", "slowest"): ("rules",),
    ("metrics", "idle"): ("rules", "metrics", "dashboards"),
    ("dashboards", "idle"): ("rules", "metrics", "dashboards"),
    ("dashboards", "top-metrics"): ("dashboards",),
}


def _add_analysis_flags(parser: argparse.ArgumentParser, files: Tuple[str, ...]) -> None:
    for kind in files:
        parser.add_argument(
            f"--{kind}-file",
            dest=f"{kind}_file",
            type=Path,
            help=f"{kind} snapshot (default {kind}.csv)",
        )
    parser.add_argument("--limit", type=int, help="Maximum number of results (default 10)")
    parser.add_argument(
        "--timeout",
        type=float,
        help="Deadline in seconds for the whole analysis",
    )


def _add_export_flags(parser: argparse.ArgumentParser, default_output: str) -> None:
    parser.add_argument("-o", "--output", default=default_output, type=Path)
    parser.add_argument("--addr", help="Backend base URL")


def build_parser() -> argparse.ArgumentParser:
    """Build the ``owl <group> <command>`` argument parser."""
    parser = argparse.ArgumentParser(prog="owl", description="Observability CLI")
    parser.add_argument("--version", action="version", version=f"owl {__version__}")
    parser.add_argument("--config", type=Path, help="Path to JSON app config")
    parser.add_argument(
        "--log-level",
        dest="log_level",
        choices=["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"],
        type=str.upper,
        help="Logging level (overrides environment)",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase verbosity (once sets DEBUG)",
    )
    groups = parser.add_subparsers(dest="group", required=True)

    rules = groups.add_parser("rules", help="Prometheus rules")
    rules_cmds = rules.add_subparsers(dest="command", required=True)
    _add_export_flags(
        rules_cmds.add_parser("export", help="Export Prometheus rules to a CSV file"),
        "rules.csv",
    )

    metrics = groups.add_parser("metrics", help="Prometheus metric names")
    metrics_cmds = metrics.add_subparsers(dest="command", required=True)
    metrics_export = metrics_cmds.add_parser(
        "export", help="Export Prometheus metric names to a CSV file"
    )
    _add_export_flags(metrics_export, "metrics.csv")
    metrics_export.add_argument(
        "--since", default="720h", help="Only metrics seen within this window"
    )

    dashboards = groups.add_parser("dashboards", help="Grafana dashboards")
    dashboards_cmds = dashboards.add_subparsers(dest="command", required=True)
    dashboards_export = dashboards_cmds.add_parser(
        "export", help="Export Grafana dashboards to a CSV file"
    )
    _add_export_flags(dashboards_export, "dashboards.csv")
    dashboards_export.add_argument(
        "--svc-token", dest="svc_token", help="Grafana service account token"
    )

    helps = {
        ("rules", "idle"): "Find rules that reference missing metrics",
        ("rules", "slowest"): "Find the slowest rules by evaluation duration",
        ("metrics", "idle"): "Find metrics not used by any rule or dashboard",
        ("dashboards", "idle"): "Find dashboards that reference missing metrics",
        ("dashboards", "top-metrics"): "Rank metrics by dashboard usage",
    }
    subparsers = {"rules": rules_cmds, "metrics": metrics_cmds, "dashboards": dashboards_cmds}
    for (group, command), files in _ANALYSIS_FILES.items():
        _add_analysis_flags(
            subparsers[group].add_parser(command, help=helps[(group, command)]), files
        )
    return parser


def analysis_config(args: argparse.Namespace, base: AnalysisConfig) -> AnalysisConfig:
    """Overlay the command-line flags that were given on ``base``."""
    overrides: Dict[str, Any] = {}
    for field in ("rules_file", "metrics_file", "dashboards_file", "limit"):
        value = getattr(args, field, None)
        if value is not None:
            overrides[field] = value
    if getattr(args, "timeout", None) is not None:
        overrides["timeout_seconds"] = args.timeout
    return AnalysisConfig.model_validate({**base.model_dump(), **overrides})


def source_config(
    configured: Optional[SourceConfig],
    addr: Optional[str],
    default_addr: str,
    env: EnvSettings,
    api_key: Optional[str] = None,
) -> SourceConfig:
    """Resolve backend settings: flags, then config file, then environment."""
    if configured is None:
        configured = SourceConfig(
            endpoint=default_addr, timeout_seconds=env.timeout_seconds
        )
    updates: Dict[str, Any] = {}
    if addr:
        updates["endpoint"] = addr
    if api_key:
        updates["api_key"] = api_key
    return configured.model_copy(update=updates)


def _adapter(cls: Callable[..., Any], sc: SourceConfig) -> Any:
    return cls(
        sc.endpoint,
        sc.api_key,
        sc.timeout_seconds,
        max_retries=sc.max_retries,
        backoff_initial_ms=sc.backoff_initial_ms,
        backoff_multiplier=sc.backoff_multiplier,
    )


def _emit(item: Any) -> None:
    if isinstance(item, BaseModel):
        print(item.model_dump_json())
    else:
        print(json.dumps({"metric": item}))


async def run_analysis(args: argparse.Namespace, app: AppConfig) -> List[Any]:
    """Run the analysis named by ``args`` and print its items."""
    method, field = ANALYSES[(args.group, args.command)]
    reconciler = Reconciler(analysis_config(args, app.analysis))
    result = await getattr(reconciler, method)()
    items: List[Any] = getattr(result, field)
    for item in items:
        _emit(item)
    sys.stdout.flush()

    failures: List[FailureInfo] = result.parse_errors
    for failure in failures:
        logger.debug(
            "cli.parse_error",
            extra={"identifier": failure.identifier, "error": failure.error},
        )
    summary = format_failure_summary(failures, f"{args.group} {args.command}")
    logger.info(summary)
    logger.info(
        f"cli.{args.group}.{args.command}.found",
        extra={"total": len(items), "error_count": len(failures)},
    )
    return items


async def run_export(args: argparse.Namespace, app: AppConfig, env: EnvSettings) -> int:
    """Fetch from the backend named by ``args.group`` and write the snapshot."""
    batch_size = app.analysis.batch_size
    if args.group == "rules":
        sc = source_config(app.prometheus, args.addr, env.prometheus_addr, env)
        async with _adapter(PrometheusAdapter, sc) as prom:
            written = await export_rules(prom, args.output, batch_size)
    elif args.group == "metrics":
        since = parse_since(args.since) if args.since else None
        sc = source_config(app.prometheus, args.addr, env.prometheus_addr, env)
        async with _adapter(PrometheusAdapter, sc) as prom:
            written = await export_metrics(prom, args.output, since, batch_size)
    else:
        token = args.svc_token or env.grafana_token
        sc = source_config(app.grafana, args.addr, env.grafana_addr, env, token)
        async with _adapter(GrafanaAdapter, sc) as grafana:
            written = await export_dashboards(grafana, args.output, batch_size)
    logger.info(
        f"{args.group.capitalize()} export finished",
        extra={"output": str(args.output), "rows": written},
    )
    return written


async def _dispatch(args: argparse.Namespace, app: AppConfig, env: EnvSettings) -> None:
    if args.command == "export":
        await run_export(args, app, env)
    else:
        await run_analysis(args, app)


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entrypoint; returns the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    env = EnvSettings()
    effective_level = args.log_level or ("DEBUG" if args.verbose > 0 else env.log_level)
    setup_logging(effective_level)

    if getattr(args, "since", None):
        try:
            parse_since(args.since)
        except ValueError as exc:
            parser.error(f"--since: {exc}")
    if getattr(args, "limit", None) is not None and args.limit < 0:
        parser.error("--limit must be >= 0")
    if getattr(args, "timeout", None) is not None and args.timeout <= 0:
        parser.error("--timeout must be > 0")

    try:
        app = AppConfig.load(args.config) if args.config else AppConfig()
    except (OSError, ValidationError) as exc:
        logger.error("cli.config.invalid", extra={"path": str(args.config), "error": str(exc)})
        return EXIT_FAILURE

    try:
        asyncio.run(_dispatch(args, app, env))
    except DeadlineExceeded as exc:
        logger.error(str(exc))
        return EXIT_DEADLINE
    except (OwlError, httpx.HTTPError) as exc:
        logger.error(f"{args.group} {args.command}: {exc}")
        return EXIT_FAILURE
    except KeyboardInterrupt:
        logger.warning("cli.interrupted")
        return EXIT_FAILURE
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
