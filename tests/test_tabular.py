"""Tests for the streaming snapshot reader and batched writer."""

from __future__ import annotations

import asyncio
from pathlib import Path

import pytest

from owl.errors import SnapshotFormatError, SnapshotIOError
from owl.snapshots.tabular import SnapshotReader, SnapshotWriter


async def _read_all(path: Path):
    async with SnapshotReader(path) as reader:
        rows = [r async for r in reader.rows()]
    return reader, rows


@pytest.mark.asyncio
async def test_reader_skips_header_and_yields_rows(tmp_path: Path) -> None:
    path = tmp_path / "m.csv"
    path.write_text("name\nup\nnode_load1\n", encoding="utf-8")
    reader, rows = await _read_all(path)
    assert reader.header == ["name"]
    assert [r.fields for r in rows] == [["up"], ["node_load1"]]
    assert [r.line for r in rows] == [2, 3]
    assert reader.errors == []


@pytest.mark.asyncio
async def test_reader_header_only_file_yields_nothing(tmp_path: Path) -> None:
    path = tmp_path / "m.csv"
    path.write_text("name\n", encoding="utf-8")
    _, rows = await _read_all(path)
    assert rows == []


@pytest.mark.asyncio
async def test_reader_missing_file_is_io_error(tmp_path: Path) -> None:
    with pytest.raises(SnapshotIOError) as info:
        async with SnapshotReader(tmp_path / "nope.csv"):
            pass
    assert info.value.stage == "open"


@pytest.mark.asyncio
async def test_reader_empty_file_is_format_error(tmp_path: Path) -> None:
    path = tmp_path / "empty.csv"
    path.write_text("", encoding="utf-8")
    with pytest.raises(SnapshotFormatError) as info:
        async with SnapshotReader(path):
            pass
    assert info.value.stage == "read header"


@pytest.mark.asyncio
async def test_reader_records_rows_of_wrong_width(tmp_path: Path) -> None:
    path = tmp_path / "d.csv"
    path.write_text("uid,title,panels\na,A,[]\nb,B\nc,C,[]\n", encoding="utf-8")
    reader, rows = await _read_all(path)
    assert [r.fields[0] for r in rows] == ["a", "c"]
    assert len(reader.errors) == 1
    failure = reader.errors[0]
    assert failure.error_type == "malformed_row"
    assert failure.identifier == "d.csv:3"
    assert "expected 3, got 2" in failure.error
    assert failure.retryable is False


@pytest.mark.asyncio
async def test_reader_skips_blank_lines(tmp_path: Path) -> None:
    path = tmp_path / "m.csv"
    path.write_text("name\n\nup\n\n", encoding="utf-8")
    reader, rows = await _read_all(path)
    assert [r.fields for r in rows] == [["up"]]
    assert reader.errors == []


@pytest.mark.asyncio
async def test_reader_handles_quoted_fields(tmp_path: Path) -> None:
    path = tmp_path / "r.csv"
    path.write_text('a,b\n"x,y","say ""hi"""\n', encoding="utf-8")
    _, rows = await _read_all(path)
    assert rows[0].fields == ["x,y", 'say "hi"']


@pytest.mark.asyncio
async def test_reader_rows_can_only_be_iterated_once(tmp_path: Path) -> None:
    path = tmp_path / "m.csv"
    path.write_text("name\nup\n", encoding="utf-8")
    async with SnapshotReader(path) as reader:
        _ = [r async for r in reader.rows()]
        with pytest.raises(RuntimeError):
            _ = [r async for r in reader.rows()]


@pytest.mark.asyncio
async def test_reader_is_cancellable_between_rows(tmp_path: Path) -> None:
    path = tmp_path / "big.csv"
    path.write_text("name\n" + "\n".join(f"m{i}" for i in range(10000)) + "\n")
    seen = []

    async def consume() -> None:
        async with SnapshotReader(path) as reader:
            async for record in reader.rows():
                seen.append(record)

    task = asyncio.ensure_future(consume())
    for _ in range(10):
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    assert 0 < len(seen) < 10000


@pytest.mark.asyncio
async def test_writer_writes_header_and_rows(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    async with SnapshotWriter(path, ["a", "b"], batch_size=2) as writer:
        for i in range(5):
            await writer.write_row([f"x{i}", i])
    assert writer.rows_written == 5
    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines == ["a,b", "x0,0", "x1,1", "x2,2", "x3,3", "x4,4"]


@pytest.mark.asyncio
async def test_writer_header_only_when_no_rows(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    async with SnapshotWriter(path, ["name"]):
        pass
    assert path.read_text(encoding="utf-8").splitlines() == ["name"]


@pytest.mark.asyncio
async def test_writer_rejects_wrong_width(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    with pytest.raises(ValueError):
        async with SnapshotWriter(path, ["a", "b"]) as writer:
            await writer.write_row(["only-one"])


def test_writer_rejects_zero_batch_size(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        SnapshotWriter(tmp_path / "out.csv", ["a"], batch_size=0)


@pytest.mark.asyncio
async def test_writer_create_failure_is_io_error(tmp_path: Path) -> None:
    with pytest.raises(SnapshotIOError) as info:
        async with SnapshotWriter(tmp_path / "missing-dir" / "out.csv", ["a"]):
            pass
    assert info.value.stage == "create"


@pytest.mark.asyncio
async def test_written_snapshot_reads_back(tmp_path: Path) -> None:
    path = tmp_path / "rt.csv"
    rows = [["q", 'sum(rate(x{job="a,b"}[5m]))'], ["multi", "line\nvalue"]]
    async with SnapshotWriter(path, ["name", "query"]) as writer:
        for row in rows:
            await writer.write_row(row)
    _, records = await _read_all(path)
    assert [r.fields for r in records] == rows


@pytest.mark.asyncio
async def test_writer_flushes_at_batch_boundary(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    writer = SnapshotWriter(path, ["name"], batch_size=3)
    writer.open()
    for i in range(3):
        await writer.write_row([f"m{i}"])
    assert path.read_text(encoding="utf-8").splitlines() == ["name", "m0", "m1", "m2"]

    await writer.write_row(["m3"])
    assert path.read_text(encoding="utf-8").splitlines() == ["name", "m0", "m1", "m2"]
    await writer.close()
    assert path.read_text(encoding="utf-8").splitlines()[-1] == "m3"


class _FullDisk:
    def writerows(self, rows) -> None:
        raise OSError(28, "No space left on device")


@pytest.mark.asyncio
async def test_writer_flush_failure_is_io_error(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    with pytest.raises(SnapshotIOError) as info:
        async with SnapshotWriter(path, ["name"], batch_size=2) as writer:
            writer._writer = _FullDisk()
            await writer.write_row(["a"])
            await writer.write_row(["b"])
    assert info.value.stage == "flush"
    assert "No space left" in str(info.value)


@pytest.mark.asyncio
async def test_writer_is_cancellable_between_rows(tmp_path: Path) -> None:
    path = tmp_path / "out.csv"
    batch = 10
    writer = SnapshotWriter(path, ["name"], batch_size=batch)

    async def produce() -> None:
        async with writer:
            for i in range(10000):
                await writer.write_row([f"m{i}"])

    task = asyncio.ensure_future(produce())
    while writer.rows_written < 25:
        await asyncio.sleep(0)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    lines = path.read_text(encoding="utf-8").splitlines()
    assert lines[0] == "name"
    flushed = lines[1:]
    assert flushed == [f"m{i}" for i in range(len(flushed))]
    assert len(flushed) >= 20 and len(flushed) % batch == 0
    assert len(flushed) < 10000
