from __future__ import annotations

import json
import logging
from pathlib import Path

import pytest

from record_uploader.upload.error_log import FLUSH_INTERVAL, ErrorLog, ErrorRecord, task_file_path


def _rec(i: int, *, task_index: int = 0) -> ErrorRecord:
    return ErrorRecord(
        record_data={"key": f"k{i}", "name": None},
        error_code="E",
        error_message=f"bad {i}",
        task_index=task_index,
        record_index=i,
    )


def test_task_file_path_is_zero_padded(tmp_path: Path) -> None:
    assert task_file_path(tmp_path / "errors.jsonl", 7) == tmp_path / "errors.jsonl_task007.jsonl"
    assert task_file_path("out/err", 123).name == "err_task123.jsonl"


def test_no_base_path_is_a_noop_sink(tmp_path: Path, monkeypatch) -> None:
    """No target configured -> nothing is created anywhere."""
    monkeypatch.chdir(tmp_path)
    with ErrorLog.open(None, 0) as log:
        assert not log.enabled
        log.append(_rec(1))
    assert list(tmp_path.iterdir()) == []

    blank = ErrorLog.open("  ", 1)
    assert blank.path is None
    blank.close()


def test_zero_appends_leaves_no_file(tmp_path: Path) -> None:
    base = tmp_path / "nested" / "errors.jsonl"
    log = ErrorLog.open(base, 2)
    assert log.path is not None and log.path.exists()    # opened (parents created)
    log.close()
    assert not task_file_path(base, 2).exists()


def test_n_appends_gives_n_lines(tmp_path: Path) -> None:
    base = tmp_path / "errors.jsonl"
    with ErrorLog.open(base, 3) as log:
        for i in range(5):
            log.append(_rec(i, task_index=3))
    lines = task_file_path(base, 3).read_text(encoding="utf-8").splitlines()
    assert len(lines) == 5

    first = json.loads(lines[0])
    assert list(first) == ["record_data", "error_code", "error_message", "timestamp", "task_index", "record_index"]
    assert first["record_data"] == {"key": "k0", "name": None}
    assert first["task_index"] == 3
    assert first["record_index"] == 0
    assert first["timestamp"].endswith("Z")


def test_pending_lines_flush_every_interval(tmp_path: Path) -> None:
    """Lines reach the file in chunks of `FLUSH_INTERVAL`, the rest on close."""
    base = tmp_path / "errors.jsonl"
    path = task_file_path(base, 0)
    log = ErrorLog.open(base, 0)

    for i in range(FLUSH_INTERVAL - 1):
        log.append(_rec(i))
    assert path.read_text(encoding="utf-8") == ""

    log.append(_rec(FLUSH_INTERVAL))
    assert len(path.read_text(encoding="utf-8").splitlines()) == FLUSH_INTERVAL

    log.append(_rec(FLUSH_INTERVAL + 1))
    assert len(path.read_text(encoding="utf-8").splitlines()) == FLUSH_INTERVAL

    log.close()
    assert len(path.read_text(encoding="utf-8").splitlines()) == FLUSH_INTERVAL + 1


def test_close_is_idempotent(tmp_path: Path) -> None:
    log = ErrorLog.open(tmp_path / "e", 0)
    log.append(_rec(0))
    log.close()
    log.close()
    assert task_file_path(tmp_path / "e", 0).exists()


def test_non_ascii_is_written_verbatim(tmp_path: Path) -> None:
    base = tmp_path / "e"
    with ErrorLog.open(base, 0) as log:
        log.append(ErrorRecord(record_data={"name": "Zoë"}, error_code="E", error_message="ü", task_index=0))
    line = task_file_path(base, 0).read_text(encoding="utf-8")
    assert "Zoë" in line
    assert json.loads(line)["record_index"] is None


class _FullDisk:
    """File stand-in whose writes fail the way a full disk does."""

    def __init__(self) -> None:
        self.closed = False

    def write(self, s: str) -> int:
        raise OSError(28, "No space left on device")

    def flush(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


def test_failed_write_is_logged_and_not_counted_as_written(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    base = tmp_path / "errors.jsonl"
    log = ErrorLog.open(base, 0)
    assert log._fh is not None
    log._fh.close()
    log._fh = _FullDisk()

    with caplog.at_level(logging.ERROR):
        log.append(_rec(0))
        log.append(_rec(1))
        log.close()     # must not raise

    assert log.count == 2
    assert log.written == 0
    assert "failed to write error file" in caplog.text
    dropped = [r.getMessage() for r in caplog.records if r.getMessage().startswith("[dropped error record]")]
    assert len(dropped) == 2
    assert '"k1"' in dropped[1]
    # nothing reached the file, so it is not left behind
    assert not task_file_path(base, 0).exists()


def test_written_lags_count_after_a_failed_flush(tmp_path: Path) -> None:
    """The first chunk lands, the second is lost: `written` says what the file holds."""
    base = tmp_path / "errors.jsonl"
    path = task_file_path(base, 0)
    log = ErrorLog.open(base, 0)

    for i in range(FLUSH_INTERVAL):
        log.append(_rec(i))
    assert log.written == FLUSH_INTERVAL

    assert log._fh is not None
    log._fh.close()
    log._fh = _FullDisk()
    log.append(_rec(FLUSH_INTERVAL))
    log.close()

    assert log.count == FLUSH_INTERVAL + 1
    assert log.written == FLUSH_INTERVAL
    assert len(path.read_text(encoding="utf-8").splitlines()) == FLUSH_INTERVAL


def test_unopenable_path_degrades_to_noop(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    """The parent 'directory' is a file, so the log cannot be created."""
    blocker = tmp_path / "not_a_dir"
    blocker.write_text("x", encoding="utf-8")

    with caplog.at_level(logging.ERROR):
        with ErrorLog.open(blocker / "errors.jsonl", 0) as log:
            assert not log.enabled
            log.append(_rec(0))

    assert log.count == 0
    assert "failed to open error file" in caplog.text
    assert blocker.read_text(encoding="utf-8") == "x"
