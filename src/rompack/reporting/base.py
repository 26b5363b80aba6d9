from __future__ import annotations

import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any, Dict, List, Optional

__all__ = [
    "TaskStatus",
    "TaskRecord",
    "Reporter",
    "STAT_KEYS",
    "format_stats",
    "format_size",
    "size_rows",
    "set_reporter",
    "get_reporter",
    "set_verbosity",
    "get_verbosity",
    "task",
]


class TaskStatus(Enum):
    RUNNING = auto()
    SUCCESS = auto()
    FAILED = auto()
    SKIPPED = auto()


@dataclass(slots=True)
class TaskRecord:
    task_id: str
    name: str
    total: Optional[int] = None
    completed: int = 0
    status: TaskStatus = TaskStatus.RUNNING
    start_time: float = field(default_factory=time.time)
    end_time: float | None = None
    meta: Dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        return (self.end_time - self.start_time) if self.end_time else 0.0


# Task meta keys echoed in completion lines, in display order.
STAT_KEYS = ("sections", "dropped", "assets", "members", "bytes")


def format_stats(meta: Dict[str, Any]) -> str:
    stats = [f"{k}={meta[k]}" for k in STAT_KEYS if k in meta]
    return f" [{' '.join(stats)}]" if stats else ""


def format_size(size: int) -> str:
    """Human-friendly size, right-aligned for size tables."""
    if size > 1024 * 1024:
        return f"{size // 1024 // 1024:>7} Mb"
    if size > 1024:
        return f"{size // 1024:>7} Kb"
    return f"{size:>10}"


def size_rows(
    sizes: Dict[str, int], previous: Dict[str, int] | None = None
) -> List[str]:
    """Rows of ``name  size (+diff)`` sorted by member name."""
    previous = previous or {}
    rows: List[str] = []
    for name in sorted(sizes):
        size = sizes[name]
        before = previous.get(name, 0)
        suffix = "" if before == size else f" ({size - before:+})"
        rows.append(f"{name:16} {format_size(size)}{suffix}")
    return rows


_VERBOSITY: int = 0  # set by the CLI (-v repeats)


def set_verbosity(level: int) -> None:
    global _VERBOSITY
    _VERBOSITY = max(0, level)


def get_verbosity() -> int:
    return _VERBOSITY


class Reporter:
    supports_progress: bool = False

    def start_task(
        self, task_id: str, name: str, total: int | None = None, **meta: Any
    ) -> None:
        raise NotImplementedError

    def advance(self, task_id: str, step: int = 1, **meta: Any) -> None:
        raise NotImplementedError

    def end_task(
        self,
        task_id: str,
        status: TaskStatus = TaskStatus.SUCCESS,
        **final_meta: Any,
    ) -> None:
        raise NotImplementedError

    def status(self, message: str, **fields: Any) -> None:
        raise NotImplementedError

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        # gated by global verbosity; ignored unless overridden
        pass

    def error(self, message: str, **fields: Any) -> None:
        raise NotImplementedError

    def warning(self, message: str, **fields: Any) -> None:
        self.status(message, **fields)

    def section(self, title: str) -> None:
        raise NotImplementedError

    def size_table(
        self, sizes: Dict[str, int], previous: Dict[str, int] | None = None
    ) -> None:
        """Per-member package sizes, with the change from ``previous``."""
        for row in size_rows(sizes, previous):
            self.status(row)

    def flush(self) -> None:
        pass


_ACTIVE_REPORTER: Reporter | None = None


def set_reporter(rep: Reporter) -> None:
    global _ACTIVE_REPORTER
    _ACTIVE_REPORTER = rep


def get_reporter() -> Reporter:
    global _ACTIVE_REPORTER
    if _ACTIVE_REPORTER is None:
        from .plain import PlainReporter  # local import to avoid cycle

        _ACTIVE_REPORTER = PlainReporter(stream=sys.stderr)
    return _ACTIVE_REPORTER


@contextmanager
def task(task_id: str, name: str, total: int | None = None, **meta: Any):
    """Report a unit of pipeline work.

    The yielded dict is merged into the task's final meta, so callers can
    attach counters (``bytes``, ``assets``...) once they are known.
    """
    rep = get_reporter()
    rep.start_task(task_id, name, total, **meta)
    final: Dict[str, Any] = {}
    try:
        yield final
    except Exception:
        rep.end_task(task_id, TaskStatus.FAILED, **final)
        raise
    else:
        rep.end_task(task_id, TaskStatus.SUCCESS, **final)
