"""
In-memory ring buffer of recent log lines, served by the system API
"""

import logging
import threading
from collections import deque
from datetime import datetime
from typing import List

class RecentLogHandler(logging.Handler):
    """Keeps the latest `capacity` formatted records; oldest are dropped first"""

    def __init__(self, capacity: int = 100, level=logging.INFO):
        super().__init__(level)
        self._records = deque(maxlen=capacity)
        self._records_lock = threading.Lock()

    def emit(self, record: logging.LogRecord):
        try:
            timestamp = datetime.fromtimestamp(record.created).strftime('%H:%M:%S')
            line = f"{timestamp} - {record.getMessage()}"
        except Exception:
            self.handleError(record)
            return
        with self._records_lock:
            self._records.append(line)

    def get_logs(self) -> List[str]:
        """Newest first"""
        with self._records_lock:
            return list(reversed(self._records))

    def clear(self):
        with self._records_lock:
            self._records.clear()
