from .base import (
    Reporter,
    TaskStatus,
    format_size,
    get_reporter,
    set_reporter,
    size_rows,
    task,
)
from .base import (
    set_verbosity,
    get_verbosity,
)
from .plain import PlainReporter
from .jsonl import JsonLinesReporter
from .silent import SilentReporter
from .rich_reporter import RichReporter

__all__ = [
    "Reporter",
    "TaskStatus",
    "format_size",
    "size_rows",
    "get_reporter",
    "set_reporter",
    "task",
    "set_verbosity",
    "get_verbosity",
    "PlainReporter",
    "JsonLinesReporter",
    "SilentReporter",
    "RichReporter",
]
