"""
Partial results handling for snapshot loading.

Provides the recoverable-error record shared by every loader and analysis,
and the fan-in helper that loads several snapshots concurrently while failing
fast on the first fatal error.
"""

from __future__ import annotations

import asyncio
import csv
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Dict, Generic, List, TypeVar

from pydantic import ValidationError

from ..errors import QueryParseError, SnapshotFormatError, SnapshotIOError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class FailureInfo:
    """
    Information about a recoverable failure.

    Attributes
    ----------
    identifier : str
        What failed (e.g. "rules.csv:12", "rule:HighErrorRate",
        "dashboard:abc123/panel:4")
    error : str
        Error message
    error_type : str
        Type of error (e.g. "malformed_row", "parse_error")
    retryable : bool
        Whether the operation might succeed if retried
    """

    identifier: str
    error: str
    error_type: str
    retryable: bool = False


@dataclass
class Loaded(Generic[T]):
    """A loaded snapshot collection together with its recoverable failures."""

    value: T
    failures: List[FailureInfo] = field(default_factory=list)


@dataclass
class PartialResult:
    """
    Result of a concurrent fan-in load.

    Attributes
    ----------
    successes : Dict[str, Any]
        Loaded collection per source name, in the order sources were given
    failures : List[FailureInfo]
        Recoverable failures of every source, concatenated
    """

    successes: Dict[str, Any] = field(default_factory=dict)
    failures: List[FailureInfo] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        """Check if any source reported recoverable failures."""
        return len(self.failures) > 0

    def __getitem__(self, name: str) -> Any:
        return self.successes[name]


async def gather_snapshots(
    operations: Dict[str, Awaitable[Loaded[Any]]],
    operation_type: str = "snapshot_load",
) -> PartialResult:
    """
    Load several snapshot sources concurrently.

    Each awaitable runs as its own task. The first fatal error cancels the
    tasks still running and is raised unchanged, so no partial result ever
    reaches the caller. Recoverable failures are merged only once every task
    has completed.

    Parameters
    ----------
    operations : Dict[str, Awaitable[Loaded]]
        Mapping from source name (e.g. "metrics") to a loader coroutine
    operation_type : str
        Human-readable type of operation (for logging)

    Returns
    -------
    PartialResult
        Loaded collections keyed by source name plus merged failures

    Raises
    ------
    ValueError
        If operations dict is empty
    SnapshotError
        First fatal error raised by any loader

    Examples
    --------
    >>> result = await gather_snapshots(
    ...     {"metrics": load_metrics("metrics.csv"), "rules": load_rules("rules.csv")}
    ... )
    >>> metrics, rules = result["metrics"], result["rules"]
    """
    if not operations:
        raise ValueError("operations dictionary cannot be empty")

    tasks: Dict[str, "asyncio.Task[Loaded[Any]]"] = {
        name: asyncio.ensure_future(operation) for name, operation in operations.items()
    }

    try:
        await asyncio.wait(tasks.values(), return_when=asyncio.FIRST_EXCEPTION)
    except asyncio.CancelledError:
        await _cancel_all(tasks)
        raise

    failed = next(
        (
            (name, task)
            for name, task in tasks.items()
            if task.done() and not task.cancelled() and task.exception() is not None
        ),
        None,
    )
    if failed is not None:
        name, task = failed
        await _cancel_all(tasks)
        exc = task.exception()
        logger.warning(
            f"fanin.{operation_type}.failed",
            extra={
                "source": name,
                "error_type": _classify_error(exc),  # type: ignore[arg-type]
                "error": str(exc),
            },
        )
        raise exc  # type: ignore[misc]

    results = PartialResult()
    for name, task in tasks.items():
        loaded = task.result()
        results.successes[name] = loaded.value
        results.failures.extend(loaded.failures)

    logger.info(
        f"fanin.{operation_type}.complete",
        extra={"sources": list(tasks), "failures": len(results.failures)},
    )
    return results


async def _cancel_all(tasks: Dict[str, "asyncio.Task[Any]"]) -> None:
    """Cancel unfinished tasks and wait for them to observe the cancellation."""
    for task in tasks.values():
        if not task.done():
            task.cancel()
    await asyncio.gather(*tasks.values(), return_exceptions=True)


def failure_from_exception(identifier: str, exc: Exception) -> FailureInfo:
    """Build a :class:`FailureInfo` record for a recoverable exception."""
    error_type = _classify_error(exc)
    return FailureInfo(
        identifier=identifier,
        error=str(exc),
        error_type=error_type,
        retryable=_is_retryable(error_type),
    )


def _classify_error(exc: BaseException) -> str:
    """Classify exception into error type."""
    error_type = "unknown_error"

    if isinstance(exc, QueryParseError):
        error_type = "parse_error"
    elif isinstance(exc, csv.Error):
        error_type = "malformed_row"
    elif isinstance(exc, SnapshotFormatError):
        error_type = "format_error"
    elif isinstance(exc, SnapshotIOError):
        error_type = "io_error"
    elif isinstance(exc, (json.JSONDecodeError, ValidationError)):
        error_type = "decode_error"
    elif isinstance(exc, asyncio.TimeoutError):
        error_type = "timeout"
    elif isinstance(exc, ValueError):
        error_type = "invalid_value"

    return error_type


def _is_retryable(error_type: str) -> bool:
    """Determine if an error type is retryable."""
    return error_type in {"timeout", "io_error"}


def format_failure_summary(
    failures: List[FailureInfo], operation_type: str = "operation"
) -> str:
    """
    Format a human-readable summary of recoverable failures.

    Parameters
    ----------
    failures : List[FailureInfo]
        Failures collected by an analysis
    operation_type : str
        Type of operation (for messaging)

    Returns
    -------
    str
        Formatted summary string
    """
    if not failures:
        return f"{operation_type}: no recoverable errors."

    lines = [f"{operation_type}: {len(failures)} recoverable error(s)"]

    # Group failures by type
    failures_by_type: Dict[str, List[FailureInfo]] = {}
    for failure in failures:
        failures_by_type.setdefault(failure.error_type, []).append(failure)

    for error_type, grouped in failures_by_type.items():
        lines.append(f"  - {len(grouped)} {error_type}")

        # Show first few identifiers
        identifiers = [f.identifier for f in grouped[:3]]
        if len(grouped) > 3:
            identifiers.append(f"... and {len(grouped) - 3} more")
        lines.append(f"    Affected: {', '.join(identifiers)}")

    return "\n".join(lines)
