from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from record_uploader.upload.outcomes import Fault


class UploaderError(Exception):
    """Base for every error this package raises on purpose."""


class ConfigError(UploaderError):
    """Settings are missing or inconsistent. Raised before any worker starts."""


class OutcomeMismatchError(UploaderError, ValueError):
    """
    A remote write returned a result list that is not index-aligned with its batch.

    This is a programming error in the connection, never a data condition.
    """


class JobAbortedError(UploaderError):
    """A worker hit a fault in the abort set. The job is a hard failure."""

    def __init__(self, task_index: int, fault: Fault) -> None:
        self.task_index = task_index
        self.fault = fault
        super().__init__(f"Aborted by fault {fault.code} in task {task_index}: {fault.message}")


class JobFailedError(UploaderError):
    """At least one worker reported failures and `throw_if_failed` is on."""

    def __init__(self, total_failures: int) -> None:
        self.total_failures = total_failures
        super().__init__(f"There are {total_failures:,} failures")
