from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any, Iterator, Mapping

from record_uploader.errors import ConfigError


# a record is column name -> typed value (`None` for null), produced by a reader.
Record = Mapping[str, Any]


class ColumnKind(str, Enum):
    """The six primitive kinds a column can declare."""
    boolean = "boolean"
    long = "long"           # integers
    double = "double"       # floats
    string = "string"
    timestamp = "timestamp"
    json = "json"


# accepted spellings on the command line / schema files.
_KIND_ALIASES: dict[str, ColumnKind] = {
    "bool": ColumnKind.boolean,
    "int": ColumnKind.long,
    "integer": ColumnKind.long,
    "float": ColumnKind.double,
    "str": ColumnKind.string,
    "text": ColumnKind.string,
}


def column_kind(name: str) -> ColumnKind:
    """Resolve a kind name (or one of its aliases). Raises `ConfigError` on unknown kinds."""
    key = name.strip().lower()
    if key in _KIND_ALIASES:
        return _KIND_ALIASES[key]
    try:
        return ColumnKind(key)
    except ValueError:
        raise ConfigError(f"unknown column kind: {name!r}") from None


@dataclass(frozen=True, slots=True)
class Column:
    """One declared column."""
    name: str
    kind: ColumnKind


@dataclass(frozen=True)
class RecordSchema:
    """
    The column type descriptor that travels with a record stream.

    Column order is significant: it is the order fields are converted in,
    the order of `fields_to_null`, and the key order of error-record snapshots.
    """
    columns: tuple[Column, ...]

    def __post_init__(self) -> None:
        names = [c.name for c in self.columns]
        dupes = sorted({n for n in names if names.count(n) > 1})
        if dupes:
            raise ConfigError(f"duplicate columns in schema: {dupes}")

    def __iter__(self) -> Iterator[Column]:
        return iter(self.columns)

    def __len__(self) -> int:
        return len(self.columns)

    @property
    def names(self) -> tuple[str, ...]:
        return tuple(c.name for c in self.columns)

    @classmethod
    def of(cls, mapping: Mapping[str, str | ColumnKind]) -> RecordSchema:
        """Build from an ordered `name -> kind` mapping."""
        cols = []
        for name, kind in mapping.items():
            k = kind if isinstance(kind, ColumnKind) else column_kind(kind)
            cols.append(Column(name=str(name), kind=k))
        return cls(columns=tuple(cols))


def parse_columns(spec: str) -> RecordSchema:
    """
    Parse the compact `"name:kind,name:kind"` form used by the CLI.

    example:
      `"id:long,name:string,created_at:timestamp"`
    """
    mapping: dict[str, str] = {}
    for part in spec.split(","):
        part = part.strip()
        if not part:
            continue
        name, sep, kind = part.partition(":")
        if not sep or not name.strip():
            raise ConfigError(f"bad column declaration {part!r} (expected name:kind)")
        if name.strip() in mapping:
            raise ConfigError(f"duplicate columns in schema: [{name.strip()!r}]")
        mapping[name.strip()] = kind
    if not mapping:
        raise ConfigError("schema declares no columns")
    return RecordSchema.of(mapping)


def load_schema_file(path: Path) -> RecordSchema:
    """
    Load a JSON schema file. Two shapes are accepted:
    - an object: `{"id": "long", "name": "string"}`
    - a list: `[{"name": "id", "type": "long"}, ...]`
    """
    data = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(data, dict):
        return RecordSchema.of(data)
    if isinstance(data, list):
        mapping: dict[str, str] = {}
        for item in data:
            if not isinstance(item, dict) or "name" not in item or "type" not in item:
                raise ConfigError(f"{path}: each column needs `name` and `type`")
            if str(item["name"]) in mapping:
                raise ConfigError(f"duplicate columns in schema: [{item['name']!r}]")
            mapping[str(item["name"])] = str(item["type"])
        return RecordSchema.of(mapping)
    raise ConfigError(f"{path}: schema must be a JSON object or list")
