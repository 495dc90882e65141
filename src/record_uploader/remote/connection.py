from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, Union

from record_uploader.errors import ConfigError
from record_uploader.upload.field_mapper import RemoteObject
from record_uploader.upload.outcomes import WriteOutcome


## -- write actions, resolved once per worker

@dataclass(frozen=True, slots=True)
class Insert:
    """Create new objects; no key."""
    name = "insert"


@dataclass(frozen=True, slots=True)
class Update:
    """Modify existing objects; each record must already carry its identifier field."""
    name = "update"


@dataclass(frozen=True, slots=True)
class Upsert:
    """Create-or-update, matched on the external-id field `key`."""
    key: str
    name = "upsert"


Action = Union[Insert, Update, Upsert]

ACTION_TYPES = ("insert", "update", "upsert")


def action_from_name(action_type: str, *, upsert_key: str | None = None) -> Action:
    """Resolve the configured action type. Raises `ConfigError` on unknown types."""
    t = action_type.strip().lower()
    if t == "insert":
        return Insert()
    if t == "update":
        return Update()
    if t == "upsert":
        if not upsert_key:
            raise ConfigError("upsert requires an upsert key")
        return Upsert(key=upsert_key)
    raise ConfigError(f"Invalid action_type: {action_type!r} (expected one of {ACTION_TYPES})")


class RemoteConnection(Protocol):
    """
    A pre-authenticated handle on the remote API.

    `write` returns either one `RecordResult` per batch row (same order, same length)
    or a single `Fault` for the whole call. It should not raise for remote-side errors.
    """
    def write(self, action: Action, batch: Sequence[RemoteObject]) -> WriteOutcome: ...

    def close(self) -> None: ...
