"""
Logging setup for the tick loop and the API server.

setup_logging() is called once per process; modules log through
    logger = logging.getLogger("mission_engine.<area>")
and stage executors through get_stage_logger(<task type>).

Records may carry task context (task_id, mission_id, organization_id,
task_type, phase, duration_ms) via `extra=`; task_context() builds that dict
from a task row. Both formats render it:
- "text": one line per record, task context appended in brackets
- "json": one JSON object per line with the context as top-level keys
"""

import json
import logging
import os
import sys
from datetime import datetime, timezone

from mission_engine import config

CONTEXT_FIELDS = ("task_id", "mission_id", "organization_id", "task_type", "phase", "duration_ms")


def task_context(task: dict, **extra) -> dict:
    """`extra=` payload for a log call made on behalf of a task."""
    context = {
        "task_id": task.get("id"),
        "mission_id": task.get("mission_id"),
        "organization_id": task.get("organization_id"),
        "task_type": task.get("type"),
    }
    context.update(extra)
    return context


def _record_context(record: logging.LogRecord) -> dict:
    return {key: getattr(record, key) for key in CONTEXT_FIELDS
            if getattr(record, key, None) not in (None, "")}


class JSONFormatter(logging.Formatter):
    """One JSON object per record, for log shipping."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        entry.update(_record_context(record))
        if record.exc_info and record.exc_info[0]:
            entry["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
            }
        return json.dumps(entry, default=str)


class TextFormatter(logging.Formatter):
    """Readable single-line output for a terminal or a cron log file."""

    def __init__(self):
        super().__init__(fmt="%(asctime)s %(levelname)-7s %(name)s: %(message)s",
                         datefmt="%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        context = _record_context(record)
        if context:
            line += " [" + " ".join(f"{k}={v}" for k, v in context.items()) + "]"
        return line


_initialized = False


def setup_logging(level: str = None, fmt: str = None, log_file: str = None):
    """Install the root handlers. Later calls are no-ops.

    Arguments override LOG_LEVEL, LOG_FORMAT and LOG_FILE from mission_engine.config.
    """
    global _initialized
    if _initialized:
        return
    _initialized = True

    level = (level or config.LOG_LEVEL).upper()
    fmt = fmt or config.LOG_FORMAT
    log_file = log_file or config.LOG_FILE

    formatter = JSONFormatter() if fmt == "json" else TextFormatter()
    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        os.makedirs(os.path.dirname(log_file) or ".", exist_ok=True)
        handlers.append(logging.FileHandler(log_file))

    root = logging.getLogger()
    root.setLevel(getattr(logging, level, logging.INFO))
    root.handlers.clear()
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    # Third-party loggers stay at WARNING
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

    logging.getLogger("mission_engine").info(
        "Logging configured: level=%s, format=%s%s",
        level, fmt, f", file={log_file}" if log_file else "")


def get_stage_logger(task_type: str) -> logging.Logger:
    """Logger for a stage executor, e.g. get_stage_logger("search")."""
    return logging.getLogger(f"mission_engine.stages.{task_type.lower()}")
