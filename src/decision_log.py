"""
Decision log - append-only CSV record of which edge served which request
"""

import csv
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

CSV_HEADER = ["Timestamp", "RequestPath", "ChosenEdgeIp"]
TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"

@dataclass(frozen=True)
class Decision:
    """One routing choice made by the proxy"""
    request_path: str
    chosen_edge_address: str
    timestamp: datetime = field(default_factory=datetime.now)

    def formatted_timestamp(self) -> str:
        return self.timestamp.strftime(TIMESTAMP_FORMAT)

    def to_csv_row(self) -> list:
        return [self.formatted_timestamp(), self.request_path, self.chosen_edge_address]

class DecisionLogger:
    """Writes one CSV row per routed request, flushed immediately"""

    def __init__(self, file_path: str = "logs/proxy_decisions.csv"):
        self.file_path = Path(file_path)
        self._lock = threading.Lock()
        self._file = None
        self._writer = None

    @property
    def is_initialized(self) -> bool:
        return self._file is not None

    def initialize(self):
        """Open the log for appending, writing the header on a new file; no-op if already open"""
        with self._lock:
            if self._file is not None:
                return

            try:
                self.file_path.parent.mkdir(parents=True, exist_ok=True)
                write_header = not self.file_path.exists() or self.file_path.stat().st_size == 0

                self._file = open(self.file_path, 'a', newline='', encoding='utf-8')
                self._writer = csv.writer(self._file, lineterminator='\n')
                if write_header:
                    self._writer.writerow(CSV_HEADER)
                    self._file.flush()

                logger.info(f"Decision logger initialized. Writing to: {self.file_path.resolve()}")
            except OSError as e:
                logger.error(f"Failed to initialize decision log {self.file_path}: {e}")
                self._close_file()

    def record(self, request_path: str, chosen_edge) -> Optional[Decision]:
        """Append a decision for chosen_edge (an EdgeDevice); a no-op with a warning when not initialized"""
        with self._lock:
            if self._file is None:
                logger.warning("Decision logger not initialized. Cannot record decision.")
                return None

            decision = Decision(request_path=request_path, chosen_edge_address=chosen_edge.address)
            try:
                self._writer.writerow(decision.to_csv_row())
                self._file.flush()
            except OSError as e:
                logger.error(f"Failed to write to decision log: {e}")
                return None

        logger.info(f"Decision: '{decision.request_path}' -> Edge {decision.chosen_edge_address}")
        return decision

    def close(self):
        with self._lock:
            if self._file is None:
                return
            self._close_file()
        logger.info("Decision log file closed.")

    def _close_file(self):
        try:
            if self._file is not None:
                self._file.close()
        except OSError as e:
            logger.error(f"Failed to close decision log: {e}")
        finally:
            self._file = None
            self._writer = None
