"""Streaming CSV reader and batched CSV writer for snapshot files.

Both sides are async so that every row is a cancellation checkpoint: a
cancelled task stops between rows, never in the middle of one. File I/O
itself is synchronous and buffered.

Fault classes
-------------
- Cannot open/create the file, missing header, I/O failure mid-stream, flush
  failure: fatal (:class:`~owl.errors.SnapshotIOError` /
  :class:`~owl.errors.SnapshotFormatError`).
- A malformed row (CSV syntax error, or a width different from the header):
  recoverable. The row is skipped and recorded in :attr:`SnapshotReader.errors`.
  Fields have no size limit.
"""

from __future__ import annotations

import asyncio
import csv
import logging
import sys
from pathlib import Path
from typing import IO, Any, AsyncIterator, List, NamedTuple, Optional, Sequence, Union

from ..errors import SnapshotFormatError, SnapshotIOError
from ..utils.partial_results import FailureInfo, failure_from_exception

logger = logging.getLogger(__name__)

# Panel JSON of a large dashboard easily exceeds the csv default of 128 KiB.
csv.field_size_limit(sys.maxsize)

DEFAULT_BATCH_SIZE = 100

PathLike = Union[str, Path]


class Record(NamedTuple):
    """One data row of a snapshot, with its 1-based line number."""

    line: int
    fields: List[str]


class SnapshotReader:
    """Read a header-prefixed CSV snapshot row by row.

    Use as an async context manager; the header is consumed on entry::

        async with SnapshotReader("rules.csv") as reader:
            async for record in reader.rows():
                ...
        skipped = reader.errors
    """

    def __init__(self, path: PathLike) -> None:
        self.path = Path(path)
        self.header: List[str] = []
        self.errors: List[FailureInfo] = []
        self._file: Optional[IO[str]] = None
        self._reader: Any = None
        self._consumed = False

    async def __aenter__(self) -> "SnapshotReader":
        self.open()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        self.close()

    def open(self) -> None:
        """Open the file and discard its header row."""
        try:
            self._file = open(self.path, newline="", encoding="utf-8")
        except OSError as exc:
            raise SnapshotIOError("open", self.path, str(exc)) from exc
        self._reader = csv.reader(self._file)
        try:
            self.header = next(self._reader)
        except StopIteration:
            self.close()
            raise SnapshotFormatError("read header", self.path, "missing header row")
        except csv.Error as exc:
            self.close()
            raise SnapshotFormatError("read header", self.path, str(exc), line=1) from exc
        except (OSError, UnicodeDecodeError) as exc:
            self.close()
            raise SnapshotIOError("read header", self.path, str(exc)) from exc

    def close(self) -> None:
        if self._file is not None:
            self._file.close()
            self._file = None

    async def rows(self) -> AsyncIterator[Record]:
        """Yield data rows lazily. The sequence can only be iterated once."""
        if self._reader is None:
            raise RuntimeError(f"snapshot {self.path} is not open")
        if self._consumed:
            raise RuntimeError(f"rows of {self.path} were already consumed")
        self._consumed = True

        width = len(self.header)
        while True:
            await asyncio.sleep(0)
            try:
                fields = next(self._reader)
            except StopIteration:
                break
            except csv.Error as exc:
                if "field limit" in str(exc):
                    raise SnapshotFormatError(
                        "read row", self.path, str(exc), line=self._reader.line_num
                    ) from exc
                self.errors.append(failure_from_exception(self._where(), exc))
                continue
            except (OSError, UnicodeDecodeError) as exc:
                raise SnapshotIOError(
                    "read row", self.path, str(exc), line=self._reader.line_num
                ) from exc

            if not fields:
                continue
            if len(fields) != width:
                self.errors.append(
                    FailureInfo(
                        identifier=self._where(),
                        error=f"wrong number of fields: expected {width}, got {len(fields)}",
                        error_type="malformed_row",
                    )
                )
                continue
            yield Record(self._reader.line_num, fields)

        logger.debug(
            "snapshot.read.complete",
            extra={"path": str(self.path), "skipped": len(self.errors)},
        )

    def _where(self) -> str:
        return f"{self.path.name}:{self._reader.line_num}"


class SnapshotWriter:
    """Write a header-prefixed CSV snapshot in batches.

    Parameters
    ----------
    path: PathLike
        File to create (truncated if it exists).
    columns: Sequence[str]
        Header row; every data row must have the same width.
    batch_size: int
        Rows buffered before each flush to disk.
    """

    def __init__(
        self,
        path: PathLike,
        columns: Sequence[str],
        batch_size: int = DEFAULT_BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.path = Path(path)
        self.columns = list(columns)
        self.batch_size = batch_size
        self.rows_written = 0
        self._file: Optional[IO[str]] = None
        self._writer: Any = None
        self._batch: List[Sequence[str]] = []

    async def __aenter__(self) -> "SnapshotWriter":
        self.open()
        return self

    async def __aexit__(self, exc_type: object, *exc_info: object) -> None:
        if exc_type is None:
            await self.close()
        else:
            self._release()

    def open(self) -> None:
        """Create the file and write the header row."""
        try:
            self._file = open(self.path, "w", newline="", encoding="utf-8")
        except OSError as exc:
            raise SnapshotIOError("create", self.path, str(exc)) from exc
        self._writer = csv.writer(self._file)
        try:
            self._writer.writerow(self.columns)
        except OSError as exc:
            self._release()
            raise SnapshotIOError("write header", self.path, str(exc)) from exc

    async def write_row(self, row: Sequence[Any]) -> None:
        """Buffer one data row, flushing when the batch is full."""
        await asyncio.sleep(0)
        if self._writer is None:
            raise RuntimeError(f"snapshot {self.path} is not open")
        if len(row) != len(self.columns):
            raise ValueError(
                f"row has {len(row)} fields, header has {len(self.columns)}"
            )
        self._batch.append([str(value) for value in row])
        self.rows_written += 1
        if len(self._batch) >= self.batch_size:
            self._flush()

    async def close(self) -> None:
        """Flush pending rows and close the file."""
        try:
            if self._writer is not None:
                self._flush()
        finally:
            self._release()
        logger.debug(
            "snapshot.write.complete",
            extra={"path": str(self.path), "rows": self.rows_written},
        )

    def _flush(self) -> None:
        try:
            self._writer.writerows(self._batch)
            self._file.flush()  # type: ignore[union-attr]
        except OSError as exc:
            raise SnapshotIOError("flush", self.path, str(exc)) from exc
        self._batch.clear()

    def _release(self) -> None:
        self._batch.clear()
        self._writer = None
        if self._file is not None:
            file, self._file = self._file, None
            file.close()
