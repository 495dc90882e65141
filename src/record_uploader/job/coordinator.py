from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Callable, Iterable

from record_uploader.config import UploadSettings
from record_uploader.errors import JobAbortedError, JobFailedError
from record_uploader.records.readers import SourceRow, stream_records
from record_uploader.records.schema import RecordSchema
from record_uploader.remote.auth import auth_from_settings, open_connection
from record_uploader.remote.connection import RemoteConnection, action_from_name
from record_uploader.remote.postgres import PostgresConnection
from record_uploader.upload.aggregate import aggregate_error_files
from record_uploader.upload.field_mapper import NullPolicy
from record_uploader.upload.uploader import Aborted, BatchUploader, WorkerOutcome, WorkerSummary, run_worker

from .summary import JobSummary

logger = logging.getLogger(__name__)

# builds one pre-authenticated connection per worker
ConnectionFactory = Callable[[UploadSettings], RemoteConnection]
# `(task_index, task_count) -> that worker's rows (records or rejects)`
RecordSource = Callable[[int, int], Iterable[SourceRow]]


def postgres_connection_factory(settings: UploadSettings) -> RemoteConnection:
    return PostgresConnection(open_connection(auth_from_settings(settings)))


def file_record_source(path: Path, schema: RecordSchema) -> RecordSource:
    """Every worker streams the same file and keeps its own row partition."""
    def source(task_index: int, task_count: int) -> Iterable[SourceRow]:
        return stream_records(path, schema, partition=(task_index, task_count))
    return source


def run_job(
    settings: UploadSettings,
    schema: RecordSchema,
    source: RecordSource,
    *,
    connection_factory: ConnectionFactory = postgres_connection_factory,
) -> JobSummary:
    """
    Run `settings.workers` independent workers, then merge their error files once.

    Raises:
    - `JobAbortedError` if any worker stopped on a fatal fault.
    - `JobFailedError` if any worker failed and `settings.throw_if_failed` is on.

    Aggregation still runs when a worker aborts or raises, since the other workers'
    files are complete by the time the pool has shut down.
    """
    settings.validate()
    action = action_from_name(settings.action_type, upsert_key=settings.upsert_key)
    null_policy = NullPolicy.from_flag(settings.ignore_nulls)
    task_count = settings.workers

    def work(task_index: int) -> WorkerOutcome:
        connection = connection_factory(settings)
        uploader = BatchUploader(
            connection,
            action,
            schema,
            type_name=settings.object_name,
            null_policy=null_policy,
            batch_size=settings.batch_size,
        )
        return run_worker(
            uploader,
            source(task_index, task_count),
            task_index=task_index,
            error_base=settings.error_file,
        )

    logger.info(
        "starting %s into %s with %d task(s), batch_size=%d",
        settings.action_type,
        settings.object_name,
        task_count,
        settings.batch_size,
    )
    try:
        with ThreadPoolExecutor(max_workers=task_count, thread_name_prefix="upload") as pool:
            outcomes = list(pool.map(work, range(task_count)))
    finally:
        # every worker has released its file once the pool is shut down
        if settings.error_file:
            aggregate_error_files(settings.error_file)

    aborted = [o for o in outcomes if isinstance(o, Aborted)]
    if aborted:
        first = aborted[0]
        raise JobAbortedError(first.task_index, first.fault)

    summaries = [o for o in outcomes if isinstance(o, WorkerSummary)]
    error_file = settings.error_file if settings.error_file and Path(settings.error_file).exists() else None
    summary = JobSummary.roll_up(
        summaries,
        object_name=settings.object_name,
        action_type=settings.action_type,
        error_file=error_file,
    )
    logger.info("finished: %s", summary.render_one_line())

    if settings.throw_if_failed and summary.failed:
        raise JobFailedError(summary.total_failures)
    return summary
