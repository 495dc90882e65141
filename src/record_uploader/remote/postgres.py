from __future__ import annotations

import logging
from typing import Any, Sequence

import psycopg
from psycopg import Connection, errors, sql
from psycopg.pq import TransactionStatus

from record_uploader.upload.field_mapper import RemoteObject
from record_uploader.upload.outcomes import (
    Fault,
    FaultCode,
    FieldError,
    RecordResult,
    SaveResult,
    UpsertResult,
    WriteOutcome,
    from_save_result,
    from_upsert_result,
)

from .connection import Action, Insert, Update, Upsert

logger = logging.getLogger(__name__)

ID_FIELD = "id"     # every remote object table carries one


# SQLSTATE -> remote status code for per-record rejections.
_STATUS_BY_SQLSTATE: dict[str, str] = {
    "23502": "REQUIRED_FIELD_MISSING",              # not_null_violation
    "23505": "DUPLICATE_VALUE",                     # unique_violation
    "23503": "INVALID_CROSS_REFERENCE_KEY",         # foreign_key_violation
    "23514": "FIELD_CUSTOM_VALIDATION_EXCEPTION",   # check_violation
    "42703": "INVALID_FIELD",                       # undefined_column
    "42804": "INVALID_FIELD_FOR_INSERT_UPDATE",     # datatype_mismatch
    "42P10": "INVALID_FIELD",                       # upsert key has no unique constraint
}

# SQLSTATEs that mean the credentials themselves are no good.
_EXPIRED_CREDENTIAL_SQLSTATES = {"28000", "28P01"}


def status_code_for(e: psycopg.Error) -> str:
    state = e.sqlstate or ""
    if state in _STATUS_BY_SQLSTATE:
        return _STATUS_BY_SQLSTATE[state]
    if state.startswith("22"):      # data exceptions: bad value for the column type
        return "INVALID_FIELD_FOR_INSERT_UPDATE"
    return "UNKNOWN_EXCEPTION"


def field_error_for(e: psycopg.Error) -> FieldError:
    """One `FieldError` from a rejected statement; the column is named when Postgres names it."""
    message = e.diag.message_primary or str(e).strip()
    column = e.diag.column_name
    return FieldError(status_code=status_code_for(e), message=message, fields=(column,) if column else ())


def fault_for(e: psycopg.Error) -> Fault:
    """A whole-batch fault from an error that escaped the per-record savepoints."""
    message = (e.diag.message_primary if e.diag else None) or str(e).strip()
    if e.sqlstate in _EXPIRED_CREDENTIAL_SQLSTATES:
        return Fault(code=FaultCode.invalid_operation_with_expired_password.value, message=message)
    if isinstance(e, psycopg.OperationalError):
        return Fault(code=FaultCode.invalid_session_id.value, message=message)
    if isinstance(e, errors.UndefinedTable):
        return Fault(code=FaultCode.invalid_type.value, message=message)
    return Fault(code=FaultCode.unknown_exception.value, message=message)


def _columns(obj: RemoteObject, *, exclude: str | None = None) -> list[tuple[str, Any]]:
    """`(column, value)` pairs: set fields first, then explicit nulls."""
    pairs = [(k, v) for k, v in obj.fields.items() if k != exclude]
    pairs += [(k, None) for k in obj.fields_to_null if k != exclude and k not in obj.fields]
    return pairs


class PostgresConnection:
    """
    `RemoteConnection` over a Postgres database: a remote object type is a table,
    a field is a column, and every table has an `id` column.

    Each row is written inside its own savepoint, so one rejected row does not undo
    its neighbours. The batch is committed once all rows have been tried.
    Errors that escape the savepoints (lost connection, unknown table) become a `Fault`.
    """

    def __init__(self, conn: Connection, *, id_field: str = ID_FIELD) -> None:
        self.conn = conn
        self.id_field = id_field

    def write(self, action: Action, batch: Sequence[RemoteObject]) -> WriteOutcome:
        if not batch:
            return []
        if self.conn.closed:
            return Fault(code=FaultCode.invalid_session_id.value, message="connection is closed")

        try:
            self._clear_stale_transaction()
            results: list[RecordResult] = []
            with self.conn.transaction():
                with self.conn.cursor() as cur:
                    for obj in batch:
                        results.append(self._write_one(cur, action, obj))
        except psycopg.Error as e:
            logger.warning("batch write failed: %s", e)
            return fault_for(e)
        return results

    def close(self) -> None:
        if not self.conn.closed:
            self.conn.close()

    def _clear_stale_transaction(self) -> None:
        # the outer transaction block must own BEGIN/COMMIT, not nest inside a leftover one
        status = self.conn.info.transaction_status
        if status == TransactionStatus.INERROR:
            self.conn.rollback()
        elif status == TransactionStatus.INTRANS:
            self.conn.commit()

    def _write_one(self, cur: psycopg.Cursor[Any], action: Action, obj: RemoteObject) -> RecordResult:
        try:
            with self.conn.transaction():       # savepoint
                if isinstance(action, Insert):
                    return from_save_result(self._insert(cur, obj))
                if isinstance(action, Update):
                    return from_save_result(self._update(cur, obj))
                if isinstance(action, Upsert):
                    return from_upsert_result(self._upsert(cur, obj, key=action.key))
                raise AssertionError(f"Invalid action: {action!r}")
        except (psycopg.OperationalError, errors.UndefinedTable):
            # not about this row; fail the whole batch
            raise
        except psycopg.Error as e:
            return RecordResult(success=False, errors=(field_error_for(e),))

    def _insert(self, cur: psycopg.Cursor[Any], obj: RemoteObject) -> SaveResult:
        pairs = _columns(obj)
        if pairs:
            query = sql.SQL("INSERT INTO {tbl} ({cols}) VALUES ({vals}) RETURNING {id}").format(
                tbl=sql.Identifier(obj.type_name),
                cols=sql.SQL(", ").join(sql.Identifier(c) for c, _ in pairs),
                vals=sql.SQL(", ").join(sql.Placeholder() for _ in pairs),
                id=sql.Identifier(self.id_field),
            )
        else:
            query = sql.SQL("INSERT INTO {tbl} DEFAULT VALUES RETURNING {id}").format(
                tbl=sql.Identifier(obj.type_name),
                id=sql.Identifier(self.id_field),
            )
        cur.execute(query, [v for _, v in pairs])
        row = cur.fetchone()
        return SaveResult(id=None if row is None else str(row[0]), success=True)

    def _update(self, cur: psycopg.Cursor[Any], obj: RemoteObject) -> SaveResult:
        ident = obj.fields.get(self.id_field)
        if ident is None:
            return SaveResult(
                id=None,
                success=False,
                errors=(FieldError("MISSING_ARGUMENT", f"{self.id_field} not specified", (self.id_field,)),),
            )

        pairs = _columns(obj, exclude=self.id_field)
        if pairs:
            assignments = sql.SQL(", ").join(
                sql.SQL("{} = {}").format(sql.Identifier(c), sql.Placeholder()) for c, _ in pairs
            )
        else:
            assignments = sql.SQL("{id} = {id}").format(id=sql.Identifier(self.id_field))

        query = sql.SQL("UPDATE {tbl} SET {assignments} WHERE {id} = %s RETURNING {id}").format(
            tbl=sql.Identifier(obj.type_name),
            assignments=assignments,
            id=sql.Identifier(self.id_field),
        )
        cur.execute(query, [v for _, v in pairs] + [ident])
        row = cur.fetchone()
        if row is None:
            return SaveResult(
                id=None,
                success=False,
                errors=(FieldError("ENTITY_IS_DELETED", f"no {obj.type_name} with {self.id_field}={ident}"),),
            )
        return SaveResult(id=str(row[0]), success=True)

    def _upsert(self, cur: psycopg.Cursor[Any], obj: RemoteObject, *, key: str) -> UpsertResult:
        if obj.fields.get(key) is None:
            return UpsertResult(
                id=None,
                created=False,
                success=False,
                errors=(FieldError("MISSING_ARGUMENT", f"{key} not specified", (key,)),),
            )

        pairs = _columns(obj)
        updates = [c for c, _ in pairs if c != key] or [key]
        query = sql.SQL(
            "INSERT INTO {tbl} ({cols}) VALUES ({vals}) "
            "ON CONFLICT ({key}) DO UPDATE SET {sets} "
            "RETURNING {id}, (xmax = 0) AS created"
        ).format(
            tbl=sql.Identifier(obj.type_name),
            cols=sql.SQL(", ").join(sql.Identifier(c) for c, _ in pairs),
            vals=sql.SQL(", ").join(sql.Placeholder() for _ in pairs),
            key=sql.Identifier(key),
            sets=sql.SQL(", ").join(
                sql.SQL("{c} = EXCLUDED.{c}").format(c=sql.Identifier(c)) for c in updates
            ),
            id=sql.Identifier(self.id_field),
        )
        cur.execute(query, [v for _, v in pairs])
        row = cur.fetchone()
        if row is None:
            return UpsertResult(
                id=None,
                created=False,
                success=False,
                errors=(FieldError("UNKNOWN_EXCEPTION", f"upsert into {obj.type_name} returned no row"),),
            )
        return UpsertResult(id=str(row[0]), created=bool(row[1]), success=True)
