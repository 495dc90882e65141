from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from record_uploader.errors import OutcomeMismatchError

from .field_mapper import RemoteObject
from .outcomes import Fault, FaultCode, FieldError, RecordResult


# faults that mean the connection itself is unusable; every later batch would fail too.
ABORT_FAULT_CODES: frozenset[str] = frozenset(
    {
        FaultCode.invalid_session_id.value,
        FaultCode.invalid_operation_with_expired_password.value,
    }
)


@dataclass(frozen=True, slots=True)
class Classified:
    """One batch row after classification."""
    index: int                  # position inside the batch
    obj: RemoteObject
    success: bool
    error_code: str = ""
    error_message: str = ""

    @property
    def failed(self) -> bool:
        return not self.success


def code_text(code: object) -> str:
    """Enum-like codes (with `.value`) or plain strings, as `str`."""
    if hasattr(code, "value"):
        return str(getattr(code, "value"))
    return str(code)


def is_fatal(code: str) -> bool:
    """True if `code` is in the abort set."""
    return code_text(code) in ABORT_FAULT_CODES


def format_error_message(error: FieldError) -> str:
    """`"message [fields: f1, f2]"`, the suffix only when fields are present."""
    if error.fields:
        return f"{error.message} [fields: {', '.join(error.fields)}]"
    return error.message


def combine_error_codes(errors: Sequence[FieldError]) -> str:
    return ",".join(e.status_code for e in errors)


def combine_error_messages(errors: Sequence[FieldError]) -> str:
    return "\n".join(format_error_message(e) for e in errors)


def classify(batch: Sequence[RemoteObject], results: Sequence[RecordResult]) -> list[Classified]:
    """
    Pair each batch row with its result.

    A failed row's several errors collapse into one combined code and one combined message.
    Raises `OutcomeMismatchError` when the results are not index-aligned with the batch.
    """
    if len(batch) != len(results):
        raise OutcomeMismatchError(f"{len(batch)} != {len(results)}")

    out: list[Classified] = []
    for i, (obj, res) in enumerate(zip(batch, results)):
        if res.success:
            out.append(Classified(index=i, obj=obj, success=True))
            continue
        out.append(
            Classified(
                index=i,
                obj=obj,
                success=False,
                error_code=combine_error_codes(res.errors),
                error_message=combine_error_messages(res.errors),
            )
        )
    return out


def fault_failures(batch: Sequence[RemoteObject], fault: Fault) -> list[Classified]:
    """Mark every row of `batch` failed with a non-fatal fault's code and message."""
    if is_fatal(fault.code):
        raise ValueError(f"fault {fault.code} is fatal and must abort, not be logged per row")
    return [
        Classified(index=i, obj=obj, success=False, error_code=code_text(fault.code), error_message=fault.message)
        for i, obj in enumerate(batch)
    ]


def failure_count(classified: Sequence[Classified]) -> int:
    return sum(1 for c in classified if c.failed)
