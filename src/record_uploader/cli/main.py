from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from record_uploader.config import settings_from_env
from record_uploader.errors import ConfigError, JobAbortedError, JobFailedError
from record_uploader.job.coordinator import file_record_source, run_job
from record_uploader.records.schema import RecordSchema, load_schema_file, parse_columns
from record_uploader.remote.connection import ACTION_TYPES
from record_uploader.upload.aggregate import aggregate_error_files


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def _schema_from_args(args: argparse.Namespace) -> RecordSchema:
    if args.schema_file:
        return load_schema_file(Path(args.schema_file))
    return parse_columns(args.columns)


def main(argv: list[str] | None = None) -> int:
    """
    A CLI for pushing CSV/JSONL records into a remote object store in batches.

    The `cmd` options are:
    ## upload:
    Stream `--input`, convert each row by the declared column kinds and write it
    to `--object` with `--action`.
    - `--columns "id:long,name:string"` or `--schema-file schema.json` declares the columns.
    - `--error-file out/errors.jsonl` collects every failed row (merged after all workers finish).

    Connection settings come from `UPLOADER_*` environment variables (or `.env`).

    ### Example upload usage:
    - `uploader upload --input data/accounts.csv --columns "key:string,amount:double" --object account --action upsert --upsert-key key`

    ## aggregate:
    Merge leftover `<error-file>_task*` files by hand (normally done by `upload`).

    Returns 0 on success, 1 when the job failed or aborted.
    """
    p = argparse.ArgumentParser(prog="uploader")
    sub = p.add_subparsers(dest="cmd", required=True)

    # upload cmd
    up = sub.add_parser("upload", help="Upload a file of records to the remote object store.")
    up.add_argument("--input", required=True, help="Path to input file (CSV or JSONL).")
    cols = up.add_mutually_exclusive_group(required=True)
    cols.add_argument("--columns", help='Column kinds, e.g. "id:long,name:string,at:timestamp".')
    cols.add_argument("--schema-file", help="JSON file mapping column name -> kind.")
    up.add_argument("--object", required=True, help="Remote object type to write to.")
    up.add_argument("--action", required=True, choices=list(ACTION_TYPES))
    up.add_argument("--upsert-key", default=None, help="External-id field for upsert (default: key).")
    up.add_argument("--batch-size", type=int, default=None, help="Records per write call (default: 200).")
    up.add_argument("--explicit-nulls", action="store_true", help="Clear remote fields for null values.")
    up.add_argument("--error-file", default=None, help="Base path for failed-record JSONL output.")
    up.add_argument("--workers", type=int, default=None, help="Independent workers (default: 1).")
    up.add_argument("--no-throw-if-failed", action="store_true", help="Exit 0 even if records failed.")
    up.add_argument("--log-level", default=None)

    # aggregate cmd
    agg = sub.add_parser("aggregate", help="Merge per-task error files into one.")
    agg.add_argument("--error-file", required=True, help="The base path used by the upload.")

    args = p.parse_args(argv)

    if args.cmd == "aggregate":
        _configure_logging("INFO")
        n = aggregate_error_files(args.error_file)
        print(f"aggregated {n} error records into {args.error_file}" if n else "no error records")
        return 0

    if args.cmd == "upload":
        try:
            settings = settings_from_env(
                object_name=args.object,
                action_type=args.action,
                upsert_key=args.upsert_key,
                batch_size=args.batch_size,
                ignore_nulls=False if args.explicit_nulls else None,
                error_file=args.error_file,
                workers=args.workers,
                throw_if_failed=False if args.no_throw_if_failed else None,
                log_level=args.log_level,
            ).validate()
            schema = _schema_from_args(args)
        except (ConfigError, OSError, ValueError) as e:
            # bad settings or an unreadable `--schema-file` (missing, not JSON)
            p.error(str(e))

        _configure_logging(settings.log_level)

        try:
            summary = run_job(settings, schema, file_record_source(Path(args.input), schema))
        except (JobFailedError, JobAbortedError) as e:
            print(f"upload failed: {e}", file=sys.stderr)
            return 1

        print(summary.render_one_line())
        return 0

    return 2
