from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from record_uploader.records.schema import ColumnKind, Record, RecordSchema


class NullPolicy(str, Enum):
    """How a null column reaches the remote object."""
    ignore_nulls = "ignore_nulls"       # omit the field, the remote value is left alone
    explicit_null = "explicit_null"     # list the field in `fields_to_null`, the remote value is cleared

    @classmethod
    def from_flag(cls, ignore_nulls: bool) -> NullPolicy:
        return cls.ignore_nulls if ignore_nulls else cls.explicit_null


@dataclass(frozen=True)
class RemoteObject:
    """
    One record in the remote API's native shape.

    `fields` never holds `None`; a field is either set, omitted, or named in `fields_to_null`.
    """
    type_name: str
    fields: dict[str, Any] = field(default_factory=dict)
    fields_to_null: tuple[str, ...] = ()

    def get(self, name: str) -> Any:
        return self.fields.get(name)


def _to_remote_timestamp(v: datetime | int) -> datetime:
    """UTC `datetime` built from epoch milliseconds. Sub-millisecond precision is dropped."""
    if isinstance(v, datetime):
        if v.tzinfo is None:
            v = v.replace(tzinfo=timezone.utc)
        v = v.astimezone(timezone.utc)
        return v.replace(microsecond=(v.microsecond // 1000) * 1000)
    return datetime.fromtimestamp(v // 1000, tz=timezone.utc).replace(microsecond=(v % 1000) * 1000)


def to_remote_value(kind: ColumnKind, v: Any) -> Any:
    """Convert one non-null typed value into its remote-native form."""
    if kind is ColumnKind.long:
        # the remote side stores every number as a double; an int here corrupts update/upsert
        return float(v)
    if kind is ColumnKind.double:
        return float(v)
    if kind is ColumnKind.timestamp:
        return _to_remote_timestamp(v)
    if kind is ColumnKind.json:
        return json.dumps(v, separators=(",", ":"), ensure_ascii=False)
    # boolean / string
    return v


def convert(
    record: Record,
    schema: RecordSchema,
    *,
    type_name: str,
    null_policy: NullPolicy = NullPolicy.ignore_nulls,
) -> RemoteObject:
    """
    Convert a typed record into a `RemoteObject`, column by column in schema order.

    Pure: calling it twice on the same record gives equal objects.
    """
    values: dict[str, Any] = {}
    to_null: list[str] = []
    for col in schema:
        v = record.get(col.name)
        if v is None:
            if null_policy is NullPolicy.explicit_null:
                to_null.append(col.name)
            continue
        values[col.name] = to_remote_value(col.kind, v)
    return RemoteObject(type_name=type_name, fields=values, fields_to_null=tuple(to_null))


def _render(v: Any) -> str:
    """String form used in error-record snapshots."""
    if isinstance(v, bool):
        return "true" if v else "false"
    if isinstance(v, datetime):
        return v.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
    return str(v)


def snapshot(obj: RemoteObject, schema: RecordSchema) -> dict[str, str | None]:
    """
    The field view written into error records: every schema column, in order,
    as a string, or `None` when the field was null (omitted or explicitly nulled).
    """
    out: dict[str, str | None] = {}
    for col in schema:
        v = obj.fields.get(col.name)
        out[col.name] = None if v is None else _render(v)
    return out


def raw_snapshot(raw: Mapping[str, Any], schema: RecordSchema) -> dict[str, str | None]:
    """`snapshot` for a row that never became a `RemoteObject`: the source values as they came in."""
    out: dict[str, str | None] = {}
    for col in schema:
        v = raw.get(col.name)
        out[col.name] = None if v is None else _render(v)
    return out
