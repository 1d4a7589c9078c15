from __future__ import annotations

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

LOGGER_NAME = "pool_health"


class JsonFormatter(logging.Formatter):
    """One JSON object per record: timestamp (ISO8601 UTC), level, name, message."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


def _coerce_log_level(level_value: str | int) -> int:
    if isinstance(level_value, int):
        return level_value
    return logging._nameToLevel.get(str(level_value).upper(), logging.INFO)


def setup_logger(level: str | int = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Configure the package logger with JSON output to stdout and, optionally, a daily-rotated file.

    Calling it again replaces the handlers instead of stacking them.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(_coerce_log_level(level))

    for h in list(logger.handlers):
        logger.removeHandler(h)
        h.close()

    formatter = JsonFormatter()
    stream_handler = logging.StreamHandler(stream=sys.stdout)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            filename=str(log_path), when="midnight", backupCount=30, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger
