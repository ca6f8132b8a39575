"""Logging setup with an in-memory buffer of recent records.

The buffer backs GET /api/logs so a client can show what the sweeps did
without tailing the server output.
"""

from __future__ import annotations

import logging
from collections import deque
from datetime import datetime
from typing import Deque

LOGGER_NAME = "levelup"
LOG_BUFFER_SIZE = 100
SERVER_LOGGERS = ("uvicorn", "fastapi")

# Circular buffer to store recent log entries
log_buffer: Deque[dict] = deque(maxlen=LOG_BUFFER_SIZE)


class LogBufferHandler(logging.Handler):
    """Logging handler that captures records to a circular buffer."""

    def __init__(self, buffer: Deque[dict] | None = None, level: int = logging.NOTSET):
        super().__init__(level)
        self.buffer = buffer if buffer is not None else log_buffer

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.buffer.append({
                "timestamp": datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
                "level": record.levelname,
                "logger": record.name,
                "message": self.format(record),
            })
        except Exception:
            self.handleError(record)


def configure_logging(level: int = logging.INFO) -> logging.Logger:
    """Attach stream and buffer handlers to the package logger once.

    The buffer handler is shared with the uvicorn and fastapi loggers so
    server-side records show up in GET /api/logs too.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    if not any(isinstance(h, LogBufferHandler) for h in logger.handlers):
        buffer_handler = LogBufferHandler(level=logging.DEBUG)
        buffer_handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(buffer_handler)

        stream_handler = logging.StreamHandler()
        stream_handler.setFormatter(
            logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s")
        )
        logger.addHandler(stream_handler)

        # Also capture uvicorn and fastapi logs
        for name in SERVER_LOGGERS:
            server_logger = logging.getLogger(name)
            if not any(isinstance(h, LogBufferHandler) for h in server_logger.handlers):
                server_logger.addHandler(buffer_handler)
    return logger


def recent_logs(limit: int = 50) -> list[dict]:
    if limit <= 0:
        return []
    return list(log_buffer)[-limit:]
