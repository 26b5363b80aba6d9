from __future__ import annotations

import sys
import time
from typing import Any, Dict
from .base import Reporter, TaskStatus, TaskRecord, format_stats, get_verbosity

ICONS = {
    TaskStatus.SUCCESS: "✔",
    TaskStatus.FAILED: "✖",
    TaskStatus.SKIPPED: "→",
}


class PlainReporter(Reporter):
    """Line-oriented reporter with minimal icons and optional color."""

    supports_progress = False

    def __init__(self, stream=None, use_color: bool | None = None):
        self.stream = stream or sys.stderr
        self.use_color = (
            use_color
            if use_color is not None
            else getattr(self.stream, "isatty", lambda: False)()
        )
        self._tasks: Dict[str, TaskRecord] = {}

    def _c(self, code: str, text: str):
        if not self.use_color:
            return text
        return f"\x1b[{code}m{text}\x1b[0m"

    def start_task(
        self, task_id: str, name: str, total: int | None = None, **meta: Any
    ) -> None:
        self._tasks[task_id] = TaskRecord(task_id, name, total, meta=meta)

    def advance(self, task_id: str, step: int = 1, **meta: Any) -> None:
        rec = self._tasks.get(task_id)
        if not rec:
            return
        rec.completed += step
        rec.meta.update(meta)
        item = meta.get("current_item") or f"item#{rec.completed}"
        total = rec.total if rec.total is not None else "?"
        self.stream.write(f"   · {rec.name}: {item} ({rec.completed}/{total})\n")

    def end_task(
        self,
        task_id: str,
        status: TaskStatus = TaskStatus.SUCCESS,
        **final_meta: Any,
    ) -> None:
        rec = self._tasks.pop(task_id, None)
        if not rec:
            return
        rec.status = status
        rec.end_time = time.time()
        rec.meta.update(final_meta)
        icon = ICONS.get(status, "?")
        extra = f" {rec.completed}/{rec.total}" if rec.total is not None else ""
        self.stream.write(
            f" {icon} {rec.name}{extra} ({rec.duration:.2f}s)"
            f"{format_stats(rec.meta)}\n"
        )

    def status(self, message: str, **fields: Any) -> None:
        self.stream.write(f"{self._c('32', 'INFO')}: {message}\n")

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        if get_verbosity() < level:
            return
        self.stream.write(f"{self._c('36', f'VERB{level}')}: {message}\n")

    def error(self, message: str, **fields: Any) -> None:
        self.stream.write(f"{self._c('31', 'ERROR')}: {message}\n")

    def warning(self, message: str, **fields: Any) -> None:
        self.stream.write(f"{self._c('33', 'WARN')}: {message}\n")

    def section(self, title: str) -> None:
        self.stream.write(f"\n[{title}]\n")
