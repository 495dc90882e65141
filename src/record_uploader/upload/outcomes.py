from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Sequence, Union


class FaultCode(str, Enum):
    """Fault codes a connection can report for a whole write call."""
    invalid_session_id = "INVALID_SESSION_ID"
    invalid_operation_with_expired_password = "INVALID_OPERATION_WITH_EXPIRED_PASSWORD"
    invalid_type = "INVALID_TYPE"
    unknown_exception = "UNKNOWN_EXCEPTION"


@dataclass(frozen=True, slots=True)
class FieldError:
    """One error the remote side attached to a record."""
    status_code: str
    message: str
    fields: tuple[str, ...] = ()


@dataclass(frozen=True, slots=True)
class RecordResult:
    """Per-record outcome of a write, index-aligned with the batch."""
    success: bool
    errors: tuple[FieldError, ...] = ()


@dataclass(frozen=True, slots=True)
class Fault:
    """A connection-level error covering the whole write call."""
    code: str
    message: str


# either index-aligned per-record results, or one fault for the whole batch.
WriteOutcome = Union[list[RecordResult], Fault]


## -- the two result shapes the remote API hands back

@dataclass(frozen=True, slots=True)
class SaveResult:
    """Result of an insert or update."""
    id: str | None
    success: bool
    errors: Sequence[FieldError] = ()


@dataclass(frozen=True, slots=True)
class UpsertResult:
    """Result of an upsert; `created` tells an insert from an update."""
    id: str | None
    created: bool
    success: bool
    errors: Sequence[FieldError] = ()


def from_save_result(result: SaveResult) -> RecordResult:
    return RecordResult(success=result.success, errors=tuple(result.errors))


def from_upsert_result(result: UpsertResult) -> RecordResult:
    return RecordResult(success=result.success, errors=tuple(result.errors))
