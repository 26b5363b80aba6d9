from __future__ import annotations

import time
from typing import Any, Dict

from rich.console import Console
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table

from .base import (
    Reporter,
    TaskRecord,
    TaskStatus,
    format_size,
    format_stats,
    get_verbosity,
)

_STATUS_ICON = {
    TaskStatus.SUCCESS: "[green]✔[/]",
    TaskStatus.FAILED: "[red]✖[/]",
    TaskStatus.SKIPPED: "→",
}


class RichReporter(Reporter):
    """Terminal reporter with progress bars for counted tasks."""

    supports_progress = True

    def __init__(self, console: Console | None = None):
        self.console = console or Console(stderr=True, highlight=False)
        self.progress: Progress | None = None
        self._tasks: Dict[str, TaskRecord] = {}
        self._task_ids: Dict[str, Any] = {}

    def _ensure_progress(self) -> Progress:
        if self.progress is None:
            self.progress = Progress(
                SpinnerColumn(spinner_name="dots"),
                TextColumn("{task.description}"),
                BarColumn(bar_width=None),
                TextColumn("{task.completed}/{task.total}"),
                TimeElapsedColumn(),
                console=self.console,
                transient=True,
            )
            self.progress.start()
        return self.progress

    def start_task(
        self, task_id: str, name: str, total: int | None = None, **meta: Any
    ) -> None:
        self._tasks[task_id] = TaskRecord(task_id, name, total, meta=meta)
        # only counted tasks get a bar
        if total is not None:
            progress = self._ensure_progress()
            self._task_ids[task_id] = progress.add_task(name, total=total)

    def advance(self, task_id: str, step: int = 1, **meta: Any) -> None:
        rec = self._tasks.get(task_id)
        if not rec:
            return
        rec.completed += step
        rec.meta.update(meta)
        rid = self._task_ids.get(task_id)
        if rid is not None and self.progress is not None:
            item = meta.get("current_item")
            description = f"{rec.name}: {item}" if item else rec.name
            self.progress.update(rid, completed=rec.completed, description=description)

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
        rid = self._task_ids.pop(task_id, None)
        if rid is not None and self.progress is not None:
            self.progress.remove_task(rid)
        if not self._task_ids:
            self.flush()
        total = f" {rec.completed}/{rec.total}" if rec.total is not None else ""
        self.console.print(
            f"{_STATUS_ICON.get(status, '')} {rec.name}{total} "
            f"({rec.duration:.2f}s){format_stats(rec.meta)}",
            markup=True,
        )

    def status(self, message: str, **fields: Any) -> None:
        self.console.print(f"[green]INFO[/]: {message}")

    def verbose(self, message: str, *, level: int = 1, **fields: Any) -> None:
        if get_verbosity() < level:
            return
        self.console.print(f"[cyan]VERB{level}[/]: {message}")

    def error(self, message: str, **fields: Any) -> None:
        self.console.print(f"[bold red]ERROR[/]: {message}")

    def warning(self, message: str, **fields: Any) -> None:
        self.console.print(f"[yellow]WARN[/]: {message}")

    def section(self, title: str) -> None:
        self.console.rule(title)

    def size_table(
        self, sizes: Dict[str, int], previous: Dict[str, int] | None = None
    ) -> None:
        previous = previous or {}
        table = Table(title="Package members", show_edge=False)
        table.add_column("member")
        table.add_column("size", justify="right")
        table.add_column("change", justify="right")
        for name in sorted(sizes):
            diff = sizes[name] - previous.get(name, 0)
            if diff > 0:
                change = f"[red]+{diff}[/]"
            elif diff < 0:
                change = f"[green]{diff}[/]"
            else:
                change = ""
            table.add_row(name, format_size(sizes[name]).strip(), change)
        table.add_row("[bold]total[/]", format_size(sum(sizes.values())).strip(), "")
        self.console.print(table)

    def flush(self) -> None:
        if self.progress is not None:
            self.progress.stop()
            self.progress = None
