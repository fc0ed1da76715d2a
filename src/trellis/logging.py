"""Structured JSON logging for trellis.

One JSON object per line in ``.trellis/trellis.log``, rotated at 5MB with
3 backups. Service calls pass ``op``, ``actor``, ``args_data``,
``duration_ms`` and ``error`` through ``extra=``; they become top-level keys
(``args_data`` is written as ``args``).

The level comes from the ``log_level`` config key, and the
``TRELLIS_LOG_LEVEL`` environment variable overrides it.
"""

from __future__ import annotations

import json
import logging
import os
import threading
from datetime import UTC, datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

LOGGER_NAME = "trellis"
LOG_FILENAME = "trellis.log"
LEVEL_ENV_VAR = "TRELLIS_LOG_LEVEL"

_MAX_BYTES = 5 * 1024 * 1024
_BACKUP_COUNT = 3
_setup_lock = threading.Lock()

# LogRecord attribute -> key in the JSON line
_CONTEXT_FIELDS: dict[str, str] = {
    "op": "op",
    "actor": "actor",
    "args_data": "args",
    "duration_ms": "duration_ms",
    "error": "error",
}


class _JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, UTC).isoformat(timespec="milliseconds"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        entry.update(
            {key: getattr(record, attr) for attr, key in _CONTEXT_FIELDS.items() if hasattr(record, attr)}
        )
        if record.exc_info and record.exc_info[1] is not None:
            exc = record.exc_info[1]
            entry["exception"] = str(exc)
            entry["exception_type"] = type(exc).__name__
        return json.dumps(entry, default=str)


class _WorkspaceLogHandler(RotatingFileHandler):
    """The one file handler trellis owns; handlers added by a host are left alone."""


def _resolve_level(level: str | int) -> int:
    override = os.environ.get(LEVEL_ENV_VAR, "").strip()
    if override:
        level = override
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(trellis_dir: Path, *, level: str | int = logging.INFO) -> logging.Logger:
    """Point the ``trellis`` logger at ``<trellis_dir>/trellis.log``.

    Repeated calls for the same workspace keep the existing handler. A call
    for another workspace closes the old handler and opens a new one.
    """
    logger = logging.getLogger(LOGGER_NAME)
    log_path = Path(os.path.abspath(trellis_dir / LOG_FILENAME))

    with _setup_lock:
        logger.setLevel(_resolve_level(level))
        current = [h for h in logger.handlers if isinstance(h, _WorkspaceLogHandler)]
        if any(Path(h.baseFilename) == log_path for h in current):
            return logger
        for stale in current:
            logger.removeHandler(stale)
            stale.close()
        handler = _WorkspaceLogHandler(log_path, maxBytes=_MAX_BYTES, backupCount=_BACKUP_COUNT)
        handler.setFormatter(_JsonFormatter())
        logger.addHandler(handler)
    return logger
