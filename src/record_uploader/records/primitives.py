from __future__ import annotations

import json
import math
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from .schema import ColumnKind


class ParseCode(str, Enum):
    """Typed cell parse failures."""
    invalid_boolean = "invalid_boolean"
    invalid_long = "invalid_long"
    invalid_double = "invalid_double"
    invalid_timestamp = "invalid_timestamp"
    invalid_json = "invalid_json"


class ParseError(Exception):
    """A cell could not be read as its declared kind."""

    def __init__(self, code: ParseCode, detail: str) -> None:
        super().__init__(f"{code.value}: {detail}")
        self.code = code            # what kind of failure
        self.detail = detail        # human readable, names the field


# CSV has no null, so these spellings stand in for it.
_NULL_STRINGS = {"", "null", "na", "n/a"}


def normalize_cell(v: Any) -> Any:
    """Transform a raw CSV/JSONL cell into normalized shape (`None` for null spellings)."""
    if v is None:
        return None
    if isinstance(v, str):
        s = v.strip()
        if s.lower() in _NULL_STRINGS:
            return None
        return s
    return v


def parse_bool(v: Any, *, field: str) -> bool:
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    # the allowed bool matches
    if s in ("1", "true", "t", "yes", "y"): return True
    if s in ("0", "false", "f", "no", "n"): return False
    raise ParseError(ParseCode.invalid_boolean, f"{field}: invalid boolean {v!r}")


def parse_long(v: Any, *, field: str) -> int:
    """
    Parse integers. `"12.3"` or `"1e-4"` fail rather than being coerced.
    Integral floats from JSON (`3.0`) are accepted.
    """
    if isinstance(v, bool):
        raise ParseError(ParseCode.invalid_long, f"{field}: invalid long value {v!r}")
    if isinstance(v, int):
        return v
    if isinstance(v, float):
        if v.is_integer():
            return int(v)
        raise ParseError(ParseCode.invalid_long, f"{field}: non-integral long value {v!r}")
    s = str(v).strip()
    if "." in s or "e" in s.lower():
        raise ParseError(ParseCode.invalid_long, f"{field}: non-integral long value {v!r}")
    try:
        return int(s)
    except ValueError:
        raise ParseError(ParseCode.invalid_long, f"{field}: invalid long value {v!r}") from None


def parse_double(v: Any, *, field: str) -> float:
    if isinstance(v, bool):
        raise ParseError(ParseCode.invalid_double, f"{field}: invalid double value {v!r}")
    try:
        d = float(v)
    except (TypeError, ValueError):
        raise ParseError(ParseCode.invalid_double, f"{field}: invalid double value {v!r}") from None
    if math.isnan(d) or math.isinf(d):
        raise ParseError(ParseCode.invalid_double, f"{field}: non-finite double value {v!r}")
    return d


def parse_timestamp(v: Any, *, field: str) -> datetime:
    """
    Accepts:
    - ISO forms: `2026-02-10T12:34:56Z`, `2026-02-10 12:34:56+00:00`, `2026-02-10T12:34:56`
    - an integer number of epoch milliseconds (JSONL)
    - an already built `datetime`

    Timestamps without a zone are taken as UTC. The result is always UTC.
    """
    if isinstance(v, datetime):
        dt = v
    elif isinstance(v, int) and not isinstance(v, bool):
        dt = datetime.fromtimestamp(v / 1000, tz=timezone.utc)
    elif isinstance(v, str):
        s = v.strip().replace("Z", "+00:00").replace(" ", "T")
        try:
            dt = datetime.fromisoformat(s)
        except ValueError:
            raise ParseError(ParseCode.invalid_timestamp, f"{field}: invalid timestamp (ISO): {v!r}") from None
    else:
        raise ParseError(ParseCode.invalid_timestamp, f"{field}: invalid timestamp value {v!r}")

    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_json(v: Any, *, field: str) -> Any:
    """Strings are decoded as JSON text; already decoded JSONL values pass through."""
    if not isinstance(v, str):
        return v
    try:
        return json.loads(v)
    except json.JSONDecodeError as e:
        raise ParseError(ParseCode.invalid_json, f"{field}: invalid json ({e.msg})") from None


def parse_string(v: Any, *, field: str) -> str:
    if isinstance(v, str):
        return v
    # JSONL may carry numbers or objects in a string column
    if isinstance(v, (dict, list)):
        return json.dumps(v, ensure_ascii=False)
    return str(v)


_PARSERS: dict[ColumnKind, Callable[..., Any]] = {
    ColumnKind.boolean: parse_bool,
    ColumnKind.long: parse_long,
    ColumnKind.double: parse_double,
    ColumnKind.string: parse_string,
    ColumnKind.timestamp: parse_timestamp,
    ColumnKind.json: parse_json,
}


def parse_cell(kind: ColumnKind, v: Any, *, field: str) -> Any:
    """
    Normalize then parse one cell as `kind`. Returns `None` for null cells.

    String cells keep their inner whitespace but null spellings still read as null.
    """
    v = normalize_cell(v)
    if v is None:
        return None
    return _PARSERS[kind](v, field=field)
