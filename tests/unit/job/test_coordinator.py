from __future__ import annotations

import json
import threading
from pathlib import Path

import pytest

from fakes import FakeConnection, fail_where, fault_on_call
from record_uploader.config import UploadSettings
from record_uploader.errors import ConfigError, JobAbortedError, JobFailedError
from record_uploader.job.coordinator import file_record_source, run_job
from record_uploader.records.schema import Record, RecordSchema
from record_uploader.upload.outcomes import Fault, FieldError, RecordResult


def _settings(**kw) -> UploadSettings:
    base = dict(
        object_name="account",
        action_type="insert",
        username="u",
        password="p",
        batch_size=2,
    )
    base.update(kw)
    return UploadSettings(**base)


def _partitioned(rows: list[Record]):
    """Same partitioning rule as the file source: row n goes to task (n - 1) % count."""
    def source(task_index: int, task_count: int):
        return [r for n, r in enumerate(rows, 1) if (n - 1) % task_count == task_index]
    return source


class _Factory:
    """Hands out a fresh `FakeConnection` per worker and keeps them for inspection."""

    def __init__(self, respond=None) -> None:
        self.respond = respond
        self.made: list[FakeConnection] = []
        self._lock = threading.Lock()

    def __call__(self, settings: UploadSettings) -> FakeConnection:
        conn = FakeConnection() if self.respond is None else FakeConnection(respond=self.respond)
        with self._lock:
            self.made.append(conn)
        return conn


ROWS: list[Record] = [{"key": f"k{i}", "name": f"n{i}", "qty": i} for i in range(6)]


def test_all_succeed_summary(schema: RecordSchema) -> None:
    factory = _Factory()
    summary = run_job(_settings(workers=2), schema, _partitioned(ROWS), connection_factory=factory)

    assert summary.task_count == 2
    assert summary.total_failures == 0
    assert summary.failed is False
    assert summary.error_file is None
    assert len(factory.made) == 2
    assert all(c.closed for c in factory.made)
    # 3 rows per worker, batches of 2
    assert [c.batch_sizes for c in factory.made] == [[2, 1], [2, 1]]


def test_every_row_is_sent_exactly_once(schema: RecordSchema) -> None:
    factory = _Factory()
    run_job(_settings(workers=3), schema, _partitioned(ROWS), connection_factory=factory)

    sent = [obj.fields["key"] for c in factory.made for _, batch in c.calls for obj in batch]
    assert sorted(sent) == sorted(r["key"] for r in ROWS)


def test_failures_are_aggregated_into_one_file(tmp_path: Path, schema: RecordSchema) -> None:
    base = tmp_path / "out" / "errors.jsonl"
    rejects = {"k1", "k4"}
    factory = _Factory(fail_where(lambda o: o.fields["key"] in rejects, FieldError("DUPLICATE_VALUE", "dup")))

    summary = run_job(
        _settings(workers=2, error_file=str(base), throw_if_failed=False),
        schema,
        _partitioned(ROWS),
        connection_factory=factory,
    )

    assert summary.failed is True
    assert summary.total_failures == 2
    assert summary.error_file == str(base)

    lines = [json.loads(x) for x in base.read_text(encoding="utf-8").splitlines()]
    assert sorted(x["record_data"]["key"] for x in lines) == ["k1", "k4"]
    assert all(x["error_code"] == "DUPLICATE_VALUE" for x in lines)
    # task files are gone after the merge
    assert list(base.parent.glob("errors.jsonl_task*")) == []


def test_failed_job_raises_when_throw_if_failed(tmp_path: Path, schema: RecordSchema) -> None:
    base = tmp_path / "errors.jsonl"
    factory = _Factory(fail_where(lambda o: o.fields["key"] == "k0", FieldError("INVALID_FIELD", "bad")))

    with pytest.raises(JobFailedError) as e:
        run_job(_settings(workers=2, error_file=str(base)), schema, _partitioned(ROWS), connection_factory=factory)

    assert e.value.total_failures == 1
    assert "There are 1 failures" in str(e.value)
    # the merged file is still written before the raise
    assert base.exists()


def test_fatal_fault_aborts_job_but_still_aggregates(tmp_path: Path, schema: RecordSchema) -> None:
    base = tmp_path / "errors.jsonl"
    fatal = Fault("INVALID_SESSION_ID", "Session expired or invalid")

    def respond(call_no, batch):
        keys = [o.fields["key"] for o in batch]
        if "k0" in keys:
            return fatal
        return [
            RecordResult(success=False, errors=(FieldError("INVALID_FIELD", "bad"),)) if k == "k1" else RecordResult(success=True)
            for k in keys
        ]

    factory = _Factory(respond)

    with pytest.raises(JobAbortedError) as e:
        run_job(
            _settings(workers=2, error_file=str(base), throw_if_failed=False),
            schema,
            _partitioned(ROWS),
            connection_factory=factory,
        )

    assert e.value.task_index == 0
    assert e.value.fault == fatal
    assert "INVALID_SESSION_ID" in str(e.value)
    assert all(c.closed for c in factory.made)
    # the healthy worker's failure survives the abort
    lines = [json.loads(x) for x in base.read_text(encoding="utf-8").splitlines()]
    assert [x["record_data"]["key"] for x in lines] == ["k1"]


def test_non_fatal_fault_counts_the_batch_as_failures(schema: RecordSchema) -> None:
    factory = _Factory(fault_on_call(1, Fault("UNKNOWN_EXCEPTION", "server hiccup")))

    summary = run_job(
        _settings(workers=1, throw_if_failed=False),
        schema,
        _partitioned(ROWS),
        connection_factory=factory,
    )

    assert summary.failed is True
    assert summary.total_failures == 2
    assert factory.made[0].batch_sizes == [2, 2, 2]


def test_invalid_settings_never_start_workers(schema: RecordSchema) -> None:
    factory = _Factory()
    with pytest.raises(ConfigError):
        run_job(_settings(workers=0), schema, _partitioned(ROWS), connection_factory=factory)
    assert factory.made == []


def test_file_record_source_partitions_rows(tmp_path: Path, schema: RecordSchema) -> None:
    p = tmp_path / "rows.csv"
    p.write_text("key,name,qty\n" + "".join(f"k{i},n{i},{i}\n" for i in range(5)), encoding="utf-8")
    source = file_record_source(p, schema)

    first = [r["key"] for r in source(0, 2)]
    second = [r["key"] for r in source(1, 2)]

    assert first == ["k0", "k2", "k4"]
    assert second == ["k1", "k3"]
