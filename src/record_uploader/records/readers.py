from __future__ import annotations

import csv
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Iterator, Mapping, Union

from .primitives import ParseError, parse_cell
from .schema import Record, RecordSchema


@dataclass(frozen=True, slots=True)
class RejectRow:
    """A source row that could not be typed. Handed on in stream order instead of raising."""
    reason_code: str
    reason_detail: str
    raw_payload: Mapping[str, Any]  # the raw unmutated row, empty when the line never decoded
    source_row: int                 # 1-based row/line number


# what a record stream yields per source row
SourceRow = Union[Record, RejectRow]

INVALID_JSON_LINE = "invalid_json_line"


def stream_csv_dict_rows(path: Path) -> Iterator[tuple[int, Mapping[str, Any]]]:
    """
    Yields `(source_row, dict)` for CSV data rows.

    `source_row` is 1-based for the first real data row encountered, header is not counted.
    """
    with path.open("r", encoding="utf-8", newline="") as f:
        reader = csv.DictReader(f)
        for i, row in enumerate(reader, start=1):
            yield i, row


def stream_jsonl_lines(path: Path) -> Iterator[tuple[int, str]]:
    """
    Yields `(source_row, line)` for non-blank JSONL lines, undecoded.

    `source_row` is 1-based by physical line number (blank lines skipped but still counted).
    """
    with path.open("r", encoding="utf-8") as f:
        for i, line in enumerate(f, start=1):
            s = line.strip()
            if s:
                yield i, s


def decode_jsonl_line(source_row: int, line: str) -> Mapping[str, Any]:
    """Raises `ValueError` (`json.JSONDecodeError` included) unless the line is a JSON object."""
    obj = json.loads(line)
    if not isinstance(obj, dict):
        raise ValueError(f"JSONL line {source_row} is not an object")
    return obj


def stream_jsonl_dict_rows(path: Path) -> Iterator[tuple[int, Mapping[str, Any]]]:
    """Yields `(source_row, dict)` for JSONL lines. Raises on the first undecodable line."""
    for i, line in stream_jsonl_lines(path):
        yield i, decode_jsonl_line(i, line)


def is_jsonl(path: Path) -> bool:
    """`.jsonl`/`.ndjson` are JSONL, anything else CSV."""
    return path.suffix.lower() in (".jsonl", ".ndjson")


def stream_raw_rows(path: Path) -> Iterator[tuple[int, Mapping[str, Any]]]:
    """Pick the reader by file suffix."""
    if is_jsonl(path):
        return stream_jsonl_dict_rows(path)
    return stream_csv_dict_rows(path)


def to_record(raw: Mapping[str, Any], schema: RecordSchema) -> Record:
    """
    Type one raw row against `schema`.

    Columns missing from the row read as null; keys not in the schema are dropped.
    Raises `ParseError` on the first malformed cell.
    """
    return {c.name: parse_cell(c.kind, raw.get(c.name), field=c.name) for c in schema}


def _typed(source_row: int, raw: Mapping[str, Any], schema: RecordSchema) -> SourceRow:
    try:
        return to_record(raw, schema)
    except ParseError as e:
        return RejectRow(
            reason_code=e.code.value,
            reason_detail=e.detail,
            raw_payload=dict(raw),
            source_row=source_row,
        )


def stream_records(
    path: Path,
    schema: RecordSchema,
    *,
    partition: tuple[int, int] | None = None,
) -> Iterator[SourceRow]:
    """
    Yields one typed record or `RejectRow` per source row, in source order.

    A malformed cell or JSONL line becomes a `RejectRow`; the stream keeps going.

    `partition=(index, count)` keeps only the rows where `(source_row - 1) % count == index`,
    so `count` workers reading the same file see disjoint slices without sharing state.
    Rows outside the partition are neither decoded nor parsed.
    """
    if partition is not None:
        index, count = partition
        if count < 1 or not 0 <= index < count:
            raise ValueError(f"invalid partition {partition!r}")

    def owned(source_row: int) -> bool:
        return partition is None or (source_row - 1) % partition[1] == partition[0]

    if is_jsonl(path):
        for source_row, line in stream_jsonl_lines(path):
            if not owned(source_row):
                continue
            try:
                raw = decode_jsonl_line(source_row, line)
            except ValueError as e:
                yield RejectRow(
                    reason_code=INVALID_JSON_LINE,
                    reason_detail=f"line {source_row}: {e}",
                    raw_payload={},
                    source_row=source_row,
                )
                continue
            yield _typed(source_row, raw, schema)
        return

    for source_row, raw in stream_csv_dict_rows(path):
        if owned(source_row):
            yield _typed(source_row, raw, schema)
