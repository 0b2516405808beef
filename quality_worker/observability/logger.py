"""JSON log lines for Cloud Run.

Each record becomes one JSON object on stdout. Cloud Logging lifts
`severity` and `message` into the entry and indexes the
`logging.googleapis.com/labels` map, so message and file identifiers are
copied there for filtering. The most recent entries are also kept in memory
for the operational snapshot endpoint.
"""

import json
import logging
import threading
from collections import deque
from datetime import UTC, datetime

EXTRA_FIELDS = (
    "stage",
    "attempt",
    "disposition",
    "duration_seconds",
    "error",
)

LABEL_FIELDS = ("message_id", "file_name")

LABELS_KEY = "logging.googleapis.com/labels"

MAX_RECENT_LOGS = 100


class StructuredJsonFormatter(logging.Formatter):
    """Render records in Cloud Logging's structured payload shape."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, object] = {
            "severity": record.levelname if record.levelno != logging.NOTSET else "DEFAULT",
            "time": datetime.fromtimestamp(record.created, UTC).isoformat(),
            "message": record.getMessage(),
            "logger": record.name,
        }

        for key in EXTRA_FIELDS:
            value = getattr(record, key, None)
            if value is not None:
                payload[key] = value

        labels = {
            key: str(getattr(record, key))
            for key in LABEL_FIELDS
            if getattr(record, key, None) is not None
        }
        if labels:
            payload[LABELS_KEY] = labels

        if record.exc_info and record.exc_info[1]:
            payload["exception"] = str(record.exc_info[1])
            payload["stack_trace"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=str, ensure_ascii=False)


class RecentLogHandler(logging.Handler):
    """Keep the last N log entries for the dashboard snapshot."""

    def __init__(self, capacity: int = MAX_RECENT_LOGS, level: int = logging.INFO) -> None:
        super().__init__(level)
        self._entries: deque[dict[str, str]] = deque(maxlen=capacity)
        self._entries_lock = threading.Lock()

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry = {
                "timestamp": datetime.fromtimestamp(record.created, UTC).isoformat(),
                "level": record.levelname,
                "message": record.getMessage(),
            }
        except Exception:
            self.handleError(record)
            return
        with self._entries_lock:
            self._entries.append(entry)

    def entries(self) -> list[dict[str, str]]:
        with self._entries_lock:
            return list(self._entries)

