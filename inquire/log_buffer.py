"""In-memory log handler feeding status snapshots."""

import logging
import threading
from collections import deque
from typing import List

DEFAULT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


class LogBuffer(logging.Handler):
    """Keeps the most recent formatted log lines in a bounded buffer.

    ``drain()`` hands out the lines buffered since the previous call.
    """

    def __init__(self, capacity: int = 1000, level: int = logging.INFO):
        super().__init__(level=level)
        self._lines = deque(maxlen=capacity)
        self._buffer_lock = threading.Lock()
        self.setFormatter(logging.Formatter(DEFAULT_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record)
        except Exception:
            self.handleError(record)
            return
        with self._buffer_lock:
            self._lines.append(line)

    def drain(self) -> List[str]:
        with self._buffer_lock:
            lines = list(self._lines)
            self._lines.clear()
        return lines

    def attach(self, logger_name: str = "inquire") -> None:
        logger = logging.getLogger(logger_name)
        if self not in logger.handlers:
            logger.addHandler(self)

    def detach(self, logger_name: str = "inquire") -> None:
        logging.getLogger(logger_name).removeHandler(self)
