"""
App-layer JSONL logging bootstrap.
Initializes a single canonical JSONL sink early in CLI startup.
"""

import json
import logging
import os
from datetime import UTC
from datetime import datetime
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

DEFAULT_PATH = os.environ.get("PSRESOURCE_LOG_PATH")
DEFAULT_LEVEL = os.environ.get("PSRESOURCE_LOG_LEVEL", "INFO").upper()

# Standard LogRecord attributes; anything else on a record is an extra field
_RESERVED_ATTRS = frozenset(
    {
        "msg",
        "args",
        "levelname",
        "levelno",
        "pathname",
        "filename",
        "module",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "created",
        "msecs",
        "relativeCreated",
        "thread",
        "threadName",
        "processName",
        "process",
        "name",
        "taskName",
    }
)


class JsonlHandler(logging.Handler):
    def __init__(self, path: str | Path):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def format_record(self, record: logging.LogRecord) -> dict:
        base = {
            "ts": datetime.now(UTC).isoformat(timespec="milliseconds"),
            "lvl": record.levelname,
            "schema": {"name": "psresource.log", "ver": "1.0.0"},
            "logger": record.name,
            "event": getattr(record, "event", None),
            "message": record.getMessage(),
        }
        if isinstance(record.msg, dict):
            base.update(record.msg)
        for k, v in record.__dict__.items():
            if k in _RESERVED_ATTRS:
                continue
            base.setdefault(k, v)
        if record.exc_info:
            base["exception"] = logging.Formatter().formatException(record.exc_info)
        return base

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = json.dumps(self.format_record(record), ensure_ascii=False, default=str)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")
        except Exception:
            # Logging must never break the command being logged
            self.handleError(record)


def init_json_logging(path: str | Path | None = None, level: str | None = None) -> None:
    """Install the JSONL sink on the root logger, replacing any previous one."""
    path = path or DEFAULT_PATH or "./psresource.log.jsonl"
    level = (level or DEFAULT_LEVEL).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    for h in list(root.handlers):
        if isinstance(h, JsonlHandler):
            root.removeHandler(h)
    root.addHandler(JsonlHandler(path))


def init_console_logging(console: Console, level: int = logging.DEBUG) -> None:
    """Echo log records to the terminal (``--verbose``)."""
    root = logging.getLogger()
    for h in list(root.handlers):
        if isinstance(h, RichHandler):
            root.removeHandler(h)
    handler = RichHandler(console=console, level=level, show_path=False, markup=False)
    root.addHandler(handler)
    if root.level > level:
        root.setLevel(level)
