from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)


def list_task_files(base: str | Path) -> list[Path]:
    """
    Per-worker files for `base` (`<base>_task*`), sorted lexically.

    Task indices are zero-padded, so lexical order is worker order.
    """
    base = Path(base)
    directory = base.parent
    if not directory.is_dir():
        return []
    prefix = f"{base.name}_task"
    return sorted(p for p in directory.iterdir() if p.name.startswith(prefix) and p.is_file())


def aggregate_error_files(base: str | Path) -> int:
    """
    Merge every per-worker error file into the single file at `base`. Returns lines written.

    - No per-worker files: no output file is created.
    - Each per-worker file is deleted after it is read, empty or not.
    - A file that cannot be read or deleted is logged and skipped.
    - If nothing was written, the output file is removed again.

    Run once, after every worker has closed its log.
    """
    base = Path(base)
    task_files = list_task_files(base)
    if not task_files:
        return 0

    written = 0
    with base.open("w", encoding="utf-8") as out:
        for task_file in task_files:
            try:
                with task_file.open("r", encoding="utf-8") as f:
                    for line in f:
                        line = line.rstrip("\r\n")
                        if not line.strip():
                            continue
                        out.write(line + "\n")
                        written += 1
            except OSError:
                logger.exception("failed to read task error file %s", task_file)
            try:
                task_file.unlink(missing_ok=True)
            except OSError:
                logger.exception("failed to delete task error file %s", task_file)

    if written == 0:
        base.unlink(missing_ok=True)
        logger.info("no error records across %d task files", len(task_files))
    else:
        logger.info("aggregated %d error records from %d task files into %s", written, len(task_files), base)
    return written
