from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from types import TracebackType
from typing import IO, Mapping

logger = logging.getLogger(__name__)

FLUSH_INTERVAL = 100        # records between forced flushes
TASK_FILE_SUFFIX = ".jsonl"


def utc_now_iso() -> str:
    """`2026-02-10T12:34:56.789Z`"""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def task_file_path(base: str | Path, task_index: int) -> Path:
    """The per-worker file: `<base>_task<NNN>.jsonl`, index zero-padded to 3 digits."""
    return Path(f"{base}_task{task_index:03d}{TASK_FILE_SUFFIX}")


@dataclass(frozen=True)
class ErrorRecord:
    """One failed row, as written to the error file."""
    record_data: Mapping[str, str | None]       # field snapshot, nulls preserved
    error_code: str
    error_message: str
    task_index: int
    record_index: int | None = None
    timestamp: str = field(default_factory=utc_now_iso)

    def to_json(self) -> str:
        d = asdict(self)
        d["record_data"] = dict(self.record_data)
        # fixed key order for readers of the file
        ordered = {k: d[k] for k in ("record_data", "error_code", "error_message", "timestamp", "task_index", "record_index")}
        return json.dumps(ordered, ensure_ascii=False)


class ErrorLog:
    """
    Append-only JSON-lines error file owned by one worker.

    - No base path: a no-op sink, nothing touches the filesystem.
    - Otherwise: `<base>_task<NNN>.jsonl` is opened for append (parents created),
      lines are buffered and flushed every `FLUSH_INTERVAL` records.
    - `count` is records appended, `written` is lines that reached the file. Lines lost to
      a failed write are logged one by one instead.
    - `close()` flushes; a log that never wrote a line deletes its file.

    Use as a context manager so the file is released on every exit path.
    """

    def __init__(self, path: Path | None, task_index: int) -> None:
        self.path = path
        self.task_index = task_index
        self.count = 0
        self.written = 0
        self._pending: list[str] = []
        self._fh: IO[str] | None = None
        self._closed = False

        if path is not None:
            try:
                path.parent.mkdir(parents=True, exist_ok=True)
                self._fh = path.open("a", encoding="utf-8")
            except OSError:
                logger.exception("failed to open error file %s", path)
                self._fh = None

    @classmethod
    def open(cls, base: str | Path | None, task_index: int) -> ErrorLog:
        """Open the log for `task_index`; a `None`/blank base gives the no-op sink."""
        if base is None or not str(base).strip():
            return cls(None, task_index)
        return cls(task_file_path(base, task_index), task_index)

    @property
    def enabled(self) -> bool:
        return self._fh is not None

    def append(self, record: ErrorRecord) -> None:
        if self._fh is None:
            return
        self._pending.append(record.to_json())
        self.count += 1
        if self.count % FLUSH_INTERVAL == 0:
            self._flush()

    def _flush(self) -> None:
        if self._fh is None or not self._pending:
            return
        try:
            self._fh.write("".join(line + "\n" for line in self._pending))
            self._fh.flush()
        except OSError:
            logger.exception("failed to write error file %s", self.path)
            for line in self._pending:
                logger.error("[dropped error record] %s", line)
        else:
            self.written += len(self._pending)
        finally:
            self._pending.clear()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._fh is None:
            return
        self._flush()
        try:
            self._fh.close()
        except OSError:
            logger.exception("failed to close error file %s", self.path)
        finally:
            self._fh = None

        if self.written == 0 and self.path is not None:
            try:
                self.path.unlink(missing_ok=True)
            except OSError:
                logger.exception("failed to remove empty error file %s", self.path)

    def __enter__(self) -> ErrorLog:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()
