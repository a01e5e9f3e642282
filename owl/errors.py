"""Error taxonomy for snapshot loading and reconciliation.

Two families matter to callers:

- :class:`SnapshotError` subclasses are fatal. They abort the whole operation
  and carry enough context (stage, file, line) to diagnose the snapshot.
- :class:`QueryParseError` is recoverable. Analyses catch it, record a
  :class:`~owl.utils.partial_results.FailureInfo` and keep scanning.

:class:`BackendError` covers unusable responses from Prometheus or Grafana.
Explicit cancellation is left as :class:`asyncio.CancelledError`; a deadline
surfaces as :class:`DeadlineExceeded`.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional, Union


class OwlError(Exception):
    """Base class for all errors raised by owl."""


class SnapshotError(OwlError):
    """Fatal error while reading or writing a snapshot file.

    Parameters
    ----------
    stage: str
        Operation that failed (e.g. "open", "read header", "decode panels").
    path: Union[str, Path]
        Snapshot file involved.
    detail: str
        Human-readable cause.
    line: Optional[int]
        1-based line number of the offending record, when known.
    """

    def __init__(
        self,
        stage: str,
        path: Union[str, Path],
        detail: str,
        line: Optional[int] = None,
    ) -> None:
        self.stage = stage
        self.path = str(path)
        self.detail = detail
        self.line = line
        where = self.path if line is None else f"{self.path}:{line}"
        super().__init__(f"{stage}: {where}: {detail}")


class SnapshotIOError(SnapshotError):
    """The snapshot could not be opened, created, read, written or flushed."""


class SnapshotFormatError(SnapshotError):
    """The snapshot is structurally corrupt (header, column count, JSON, numbers)."""


class QueryParseError(OwlError):
    """A PromQL expression could not be parsed."""

    def __init__(self, query: str, detail: str) -> None:
        self.query = query
        self.detail = detail
        super().__init__(f"parse expr {query!r}: {detail}")


class DeadlineExceeded(OwlError, TimeoutError):
    """The analysis did not finish before its configured deadline."""

    def __init__(self, operation: str, timeout_seconds: float) -> None:
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{operation}: deadline of {timeout_seconds}s exceeded")


class BackendError(OwlError):
    """A monitoring backend answered with a payload owl cannot use."""

    def __init__(self, backend: str, path: str, detail: str) -> None:
        self.backend = backend
        self.path = path
        self.detail = detail
        super().__init__(f"{backend} {path}: {detail}")
