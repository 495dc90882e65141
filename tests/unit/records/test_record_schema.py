from __future__ import annotations

import json
from pathlib import Path

import pytest

from record_uploader.errors import ConfigError
from record_uploader.records.schema import Column, ColumnKind, RecordSchema, load_schema_file, parse_columns


def test_parse_columns_keeps_order_and_aliases() -> None:
    s = parse_columns("id:int, name:string,at:timestamp,ok:bool,amt:float,meta:json")
    assert s.names == ("id", "name", "at", "ok", "amt", "meta")
    assert [c.kind for c in s] == [
        ColumnKind.long,
        ColumnKind.string,
        ColumnKind.timestamp,
        ColumnKind.boolean,
        ColumnKind.double,
        ColumnKind.json,
    ]


@pytest.mark.parametrize("spec", ["", "id", "id:long,id:string", "id:decimal", ":long"])
def test_parse_columns_rejects_bad_specs(spec: str) -> None:
    with pytest.raises(ConfigError):
        parse_columns(spec)


def test_load_schema_file_object_and_list_forms(tmp_path: Path) -> None:
    obj = tmp_path / "obj.json"
    obj.write_text(json.dumps({"id": "long", "name": "string"}), encoding="utf-8")
    lst = tmp_path / "list.json"
    lst.write_text(json.dumps([{"name": "id", "type": "long"}, {"name": "name", "type": "string"}]), encoding="utf-8")

    assert load_schema_file(obj) == load_schema_file(lst)
    assert load_schema_file(obj).columns == (Column("id", ColumnKind.long), Column("name", ColumnKind.string))


def test_load_schema_file_rejects_scalars(tmp_path: Path) -> None:
    p = tmp_path / "bad.json"
    p.write_text("3", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_schema_file(p)


def test_duplicate_columns_rejected() -> None:
    with pytest.raises(ConfigError):
        RecordSchema(columns=(Column("a", ColumnKind.long), Column("a", ColumnKind.string)))
