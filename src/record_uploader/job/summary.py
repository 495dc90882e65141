from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from record_uploader.upload.uploader import WorkerSummary


@dataclass(frozen=True)
class JobSummary:
    """Roll-up of every worker's summary."""
    object_name: str
    action_type: str
    task_count: int
    total_failures: int
    failed: bool
    error_file: str | None = None       # set only when the aggregated file exists

    @classmethod
    def roll_up(
        cls,
        summaries: Sequence[WorkerSummary],
        *,
        object_name: str,
        action_type: str,
        error_file: str | None = None,
    ) -> JobSummary:
        return cls(
            object_name=object_name,
            action_type=action_type,
            task_count=len(summaries),
            total_failures=sum(s.failure_count for s in summaries),
            failed=any(s.failed for s in summaries),
            error_file=error_file,
        )

    def render_one_line(self) -> str:
        """How the summary is printed in the terminal."""
        line = (
            f"{self.object_name} {self.action_type}: tasks={self.task_count} "
            f"failures={self.total_failures} failed={str(self.failed).lower()}"
        )
        if self.error_file:
            line += f" error_file={self.error_file}"
        return line
