from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterable, Iterator, Mapping, Union

from record_uploader.records.readers import RejectRow, SourceRow
from record_uploader.records.schema import RecordSchema
from record_uploader.remote.connection import Action, RemoteConnection

from .classifier import Classified, classify, failure_count, fault_failures, is_fatal
from .error_log import ErrorLog, ErrorRecord
from .field_mapper import NullPolicy, RemoteObject, convert, raw_snapshot, snapshot
from .outcomes import Fault

logger = logging.getLogger(__name__)

BATCH_SIZE = 200        # remote API cap per write call
INVALID_RECORD = "INVALID_RECORD"     # error code for rows rejected before any remote call


@dataclass(frozen=True)
class WorkerSummary:
    """What one worker hands back to the job coordinator."""
    task_index: int
    failed: bool
    failure_count: int


@dataclass(frozen=True)
class Aborted:
    """The worker stopped on a fatal fault. Never a counted failure."""
    task_index: int
    fault: Fault


WorkerOutcome = Union[WorkerSummary, Aborted]


@dataclass
class WorkerContext:
    """Mutable accumulators for one worker's stream."""
    task_index: int
    error_log: ErrorLog
    failure_count: int = 0
    seen: int = 0           # source rows taken from the stream (= `record_index` of the next one)
    sent: int = 0           # records handed to the remote so far
    crashed: bool = False   # the record source itself failed


class BatchUploader:
    """
    Converts records, groups them into batches of `batch_size`, and writes each batch.

    Per worker: Streaming -> Flushing(partial) -> Done, or Aborted from any state.
    One outstanding remote call at a time; records and batches keep source order.
    """

    def __init__(
        self,
        connection: RemoteConnection,
        action: Action,
        schema: RecordSchema,
        *,
        type_name: str,
        null_policy: NullPolicy = NullPolicy.ignore_nulls,
        batch_size: int = BATCH_SIZE,
    ) -> None:
        if batch_size < 1:
            raise ValueError(f"batch_size must be >= 1, got {batch_size}")
        self.connection = connection
        self.action = action
        self.schema = schema
        self.type_name = type_name
        self.null_policy = null_policy
        self.batch_size = batch_size

    def process(self, records: Iterable[SourceRow], *, task_index: int, error_log: ErrorLog) -> WorkerOutcome:
        """
        Stream `records` through conversion and batched writes.

        - A `RejectRow` or a record that fails conversion is a counted failure
          (`INVALID_RECORD`); the stream carries on with the next record.
        - Returns `Aborted` as soon as a fatal fault comes back: no further batches are sent
          and the trailing partial batch is dropped.
        - If the source itself raises, the records already converted are still sent
          and the worker is marked failed.
        """
        ctx = WorkerContext(task_index=task_index, error_log=error_log)
        batch: list[RemoteObject] = []
        positions: list[int] = []       # stream position of each batch row

        ## -- Streaming
        for position, item in self._enumerate(ctx, records):
            obj = self._convert(ctx, item, position)
            if obj is None:
                continue
            batch.append(obj)
            positions.append(position)
            if len(batch) >= self.batch_size:
                res = self.flush(ctx, batch, positions)
                if isinstance(res, Aborted):
                    return res
                batch, positions = [], []

        ## -- Flushing(partial)
        if batch:
            res = self.flush(ctx, batch, positions)
            if isinstance(res, Aborted):
                return res

        ## -- Done
        return WorkerSummary(
            task_index=task_index,
            failed=ctx.crashed or ctx.failure_count > 0,
            failure_count=ctx.failure_count,
        )

    def _enumerate(self, ctx: WorkerContext, records: Iterable[SourceRow]) -> Iterator[tuple[int, SourceRow]]:
        """`(position, row)` pairs; a failing source ends the stream instead of raising."""
        it = iter(records)
        while True:
            try:
                item = next(it)
            except StopIteration:
                return
            except Exception:
                logger.exception("task %d: record source failed after %d records", ctx.task_index, ctx.seen)
                ctx.crashed = True
                return
            position = ctx.seen
            ctx.seen += 1
            yield position, item

    def _convert(self, ctx: WorkerContext, item: SourceRow, position: int) -> RemoteObject | None:
        """The row as a `RemoteObject`, or `None` after recording it as a local failure."""
        if isinstance(item, RejectRow):
            self._record_local_failure(
                ctx,
                item.raw_payload,
                f"{item.reason_code}: {item.reason_detail}",
                record_index=position,
            )
            return None
        try:
            return convert(item, self.schema, type_name=self.type_name, null_policy=self.null_policy)
        except (ValueError, TypeError) as e:
            self._record_local_failure(ctx, item, f"conversion failed: {e}", record_index=position)
            return None

    def flush(self, ctx: WorkerContext, batch: list[RemoteObject], positions: list[int]) -> int | Aborted:
        """
        Write one batch. Returns the number of failed rows, or `Aborted` on a fatal fault.

        `positions[i]` is the stream position of `batch[i]`, used as its `record_index`.
        """
        logger.info("write batch size=%d action=%s task=%d", len(batch), self.action.name, ctx.task_index)
        outcome = self.connection.write(self.action, batch)
        ctx.sent += len(batch)

        if isinstance(outcome, Fault):
            if is_fatal(outcome.code):
                logger.error("fatal fault %s: %s (task %d)", outcome.code, outcome.message, ctx.task_index)
                return Aborted(task_index=ctx.task_index, fault=outcome)
            logger.error("batch fault %s: %s (task %d)", outcome.code, outcome.message, ctx.task_index)
            classified = fault_failures(batch, outcome)
        else:
            classified = classify(batch, outcome)

        for c in classified:
            if c.failed:
                self._record_failure(ctx, c, record_index=positions[c.index])

        failed = failure_count(classified)
        ctx.failure_count += failed
        return failed

    def _record_failure(self, ctx: WorkerContext, c: Classified, *, record_index: int) -> None:
        self._write_error(ctx, snapshot(c.obj, self.schema), c.error_code, c.error_message, record_index)

    def _record_local_failure(
        self,
        ctx: WorkerContext,
        raw: Mapping[str, Any],
        message: str,
        *,
        record_index: int,
    ) -> None:
        ctx.failure_count += 1
        self._write_error(ctx, raw_snapshot(raw, self.schema), INVALID_RECORD, message, record_index)

    def _write_error(
        self,
        ctx: WorkerContext,
        data: dict[str, str | None],
        code: str,
        message: str,
        record_index: int,
    ) -> None:
        logger.error(
            "[upload failure] %s",
            json.dumps({"object": data, "errors": {"code": code, "message": message}}, ensure_ascii=False),
        )
        ctx.error_log.append(
            ErrorRecord(
                record_data=data,
                error_code=code,
                error_message=message,
                task_index=ctx.task_index,
                record_index=record_index,
            )
        )


def run_worker(
    uploader: BatchUploader,
    records: Iterable[SourceRow],
    *,
    task_index: int,
    error_base: str | Path | None = None,
) -> WorkerOutcome:
    """
    One full worker: open the task's error log, process, then release the log and the
    connection on every path (including abort).
    """
    try:
        with ErrorLog.open(error_base, task_index) as error_log:
            outcome = uploader.process(records, task_index=task_index, error_log=error_log)
    finally:
        try:
            uploader.connection.close()
        except Exception:
            logger.warning("failed to close connection for task %d", task_index, exc_info=True)

    if isinstance(outcome, WorkerSummary):
        logger.info(
            "task %d done failed=%s failures=%d",
            task_index,
            outcome.failed,
            outcome.failure_count,
        )
    return outcome
