"""Logging setup: JSON lines into a rotating file plus a plain console handler."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

__all__ = ["setup_logging", "JsonFormatter", "ROOT_LOGGER"]

ROOT_LOGGER = "tfx"
_HANDLER_MARK = "_tfx_handler"


def _json_payload(record: logging.LogRecord, formatter: logging.Formatter) -> str:
    base = {
        "time": formatter.formatTime(record),
        "level": record.levelname,
        "logger": record.name,
        "msg": record.getMessage(),
    }
    extra = getattr(record, "extra", None)
    if isinstance(extra, dict):
        base.update(extra)
    if record.exc_info:
        base["exc"] = formatter.formatException(record.exc_info)
    return json.dumps(base, ensure_ascii=False)


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        return _json_payload(record, self)


def setup_logging(
    logs_dir: Path | None,
    *,
    level: Optional[str] = None,
    console: bool = True,
    max_bytes: int = 2_000_000,
    backup_count: int = 3,
) -> logging.Logger:
    """Configure the ``tfx`` logger tree. Safe to call repeatedly."""

    logger = logging.getLogger(ROOT_LOGGER)
    numeric_level = getattr(logging, (level or "INFO").upper(), logging.INFO)
    logger.setLevel(numeric_level)
    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            logger.removeHandler(handler)
            handler.close()

    if logs_dir is not None:
        logs_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            logs_dir / "tfxclient.log", maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8"
        )
        file_handler.setFormatter(JsonFormatter())
        setattr(file_handler, _HANDLER_MARK, True)
        logger.addHandler(file_handler)

    if console:
        stream = logging.StreamHandler()
        stream.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
        setattr(stream, _HANDLER_MARK, True)
        logger.addHandler(stream)

    logger.propagate = False
    return logger
