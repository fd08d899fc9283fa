import json
import sys
import os
import logging
import threading
from collections import deque
from json import JSONDecodeError

from canrelay.metrics import HISTORY_LINES_SKIPPED_TOTAL, HISTORY_WRITE_FAILURES_TOTAL


class HistoryLog:
    """
    Append-only history of sensor readings stored as newline-delimited JSON.

    Every append is flushed and fsync'ed before returning. Reads tolerate
    damaged lines by skipping them; nothing is ever rewritten in place except
    by an explicit clear.
    """
    def __init__(self, path):
        """
        Args:
            path (str): Location of the history file.
        """
        self.path = path
        self._lock = threading.Lock()
        self._logger = logging.getLogger("canrelay.history")

    def ensure_exists(self):
        """
        Create an empty history file if none exists yet.

        Returns:
            bool: True if the file was created, False if it was already there.
        """
        with self._lock:
            if os.path.exists(self.path):
                return False
            parent = os.path.dirname(self.path)
            if parent:
                os.makedirs(parent, exist_ok=True)
            with open(self.path, "w", encoding="utf-8"):
                pass
        self._logger.info("Created empty history file %s", self.path)
        return True

    def append(self, record):
        """
        Serialize a record as one line and force it to disk.

        Args:
            record (dict): The history record to store.

        Raises:
            OSError: If the file cannot be written. Nothing is retried.
        """
        line = json.dumps(record, ensure_ascii=False) + "\n"
        with self._lock:
            try:
                with open(self.path, "a", encoding="utf-8") as f:
                    f.write(line)
                    f.flush()
                    os.fsync(f.fileno())
            except OSError:
                HISTORY_WRITE_FAILURES_TOTAL.inc()
                self._logger.error("Failed to append to %s", self.path)
                raise

    def read_last(self, n):
        """
        Return the most recent records, oldest first.

        Lines that are not valid UTF-8 JSON objects are skipped and do not
        count toward the limit.

        Args:
            n (int): Maximum number of records to return.

        Returns:
            list: Up to n records in ingestion order.
        """
        if n <= 0:
            return []

        window = deque(maxlen=min(n, sys.maxsize))
        skipped = 0
        with self._lock:
            try:
                f = open(self.path, "rb")
            except FileNotFoundError:
                return []
            with f:
                for raw in f:
                    raw = raw.strip()
                    if not raw:
                        continue
                    try:
                        record = json.loads(raw.decode("utf-8"))
                    except (UnicodeDecodeError, JSONDecodeError):
                        skipped += 1
                        continue
                    if not isinstance(record, dict):
                        skipped += 1
                        continue
                    window.append(record)

        if skipped:
            HISTORY_LINES_SKIPPED_TOTAL.inc(skipped)
            self._logger.debug("Skipped %d unreadable history lines", skipped)
        return list(window)

    def clear(self):
        """Truncate the history file. This cannot be undone."""
        with self._lock:
            with open(self.path, "w", encoding="utf-8"):
                pass
