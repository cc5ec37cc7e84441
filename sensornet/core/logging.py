"""Logging helpers shared by the runtime modules."""

from __future__ import annotations

import logging
import sys
import time
from typing import Any, Optional

__all__ = ["DEFAULT_FORMAT", "configure_logging", "get_logger", "ThrottledLogger"]

ROOT_LOGGER_NAME = "sensornet"
DEFAULT_FORMAT = "%(asctime)s [%(levelname)-8s] [%(name)s] %(message)s"


def get_logger(name: str) -> logging.Logger:
    """Return a logger namespaced below ``sensornet``."""

    if name == ROOT_LOGGER_NAME or name.startswith(ROOT_LOGGER_NAME + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure_logging(level: str | int = "INFO", fmt: str = DEFAULT_FORMAT) -> None:
    """Configure stdout logging for command-line use."""

    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, format=fmt, stream=sys.stdout)


class ThrottledLogger:
    """Collapse repeated warnings into one record per interval.

    The first warning is emitted immediately; subsequent ones within
    ``interval_sec`` are counted and the count is reported with the next
    emitted record.
    """

    def __init__(self, logger: logging.Logger, interval_sec: float = 5.0) -> None:
        self._logger = logger
        self._interval = interval_sec
        self._last_log_time: Optional[float] = None
        self._counter = 0

    def warning(self, message: str, *args: Any, **kwargs: Any) -> None:
        self._counter += 1
        now = time.monotonic()

        if self._last_log_time is None or now - self._last_log_time >= self._interval:
            self._logger.warning("[%d] " + message, self._counter, *args, **kwargs)
            self._last_log_time = now
            self._counter = 0
