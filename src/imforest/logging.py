"""Logging Utilities
====================

Root logging setup shared by the CLI and the training pipeline.

Trees trained concurrently log from worker threads, so both formatters
include the thread name.

Contents
--------
Classes
^^^^^^^
* :class:`JsonFormatter` – One JSON object per log record.

Functions
^^^^^^^^^
* :func:`configure_logging` – Replace root handlers (stderr and optional file).
* :func:`get_logging_config` – Report the active root logging configuration.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s %(threadName)-12s %(name)-24s %(levelname)-8s %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JsonFormatter(logging.Formatter):
    """Serialize log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - simple serializer
        payload = {
            "time": self.formatTime(record, self.datefmt),
            "name": record.name,
            "thread": record.threadName,
            "level": record.levelname,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def _make_formatter(fmt: Optional[str], structured: bool) -> logging.Formatter:
    if structured:
        return JsonFormatter(datefmt=DATE_FORMAT)
    return logging.Formatter(fmt or DEFAULT_FORMAT, datefmt=DATE_FORMAT)


def configure_logging(
    level: str = "INFO",
    fmt: Optional[str] = None,
    file: Optional[str] = None,
    structured: bool = False,
) -> None:
    """Configure the root logger.

    Existing root handlers are removed. A stderr handler is always installed;
    a file handler is added when ``file`` is given.

    Parameters
    ----------
    level : str, default="INFO"
        Level name. Unknown names fall back to ``INFO``.
    fmt : str, optional
        Format string for plain-text output. Ignored when ``structured=True``.
    file : str, optional
        Log file path. Parent directories are created.
    structured : bool, default=False
        Emit JSON lines through :class:`JsonFormatter`.
    """
    lvl = getattr(logging, str(level).upper(), None)
    if not isinstance(lvl, int):
        lvl = logging.INFO

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    stream = logging.StreamHandler()
    stream.setFormatter(_make_formatter(fmt, structured))
    stream.setLevel(lvl)
    root.addHandler(stream)
    root.setLevel(lvl)

    if file:
        path = Path(file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(_make_formatter(fmt, structured))
        file_handler.setLevel(lvl)
        root.addHandler(file_handler)


def get_logging_config() -> dict:
    """Return ``level``, ``file`` and ``structured`` for the root logger."""
    root = logging.getLogger()
    file_path = None
    structured = False
    for handler in root.handlers:
        if isinstance(handler, logging.FileHandler):
            file_path = getattr(handler, "baseFilename", None)
        if isinstance(handler.formatter, JsonFormatter):
            structured = True
    return {"level": logging.getLevelName(root.level), "file": file_path, "structured": structured}


__all__ = ["configure_logging", "get_logging_config", "JsonFormatter"]
