"""Process-wide processing statistics.

Counters, the in-flight map and the recent-history ring buffer are touched
by every concurrent message handler and read by the HTTP endpoints. All
access goes through one lock that is only held for O(1) updates or a
shallow copy, so readers never wait on pipeline work.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from datetime import UTC, datetime
from typing import Any

HISTORY_SIZE = 50


class ProcessingStats:
    """Running counters plus a bounded history of completed messages."""

    def __init__(self, history_size: int = HISTORY_SIZE) -> None:
        self._lock = threading.Lock()
        self.start_time = time.time()
        self._total_processed = 0
        self._total_success = 0
        self._total_failed = 0
        self._last_message_time: float | None = None
        self._in_flight: dict[str, dict[str, Any]] = {}
        self._history: deque[dict[str, Any]] = deque(maxlen=history_size)

    def start(self, message_id: str, file_name: str) -> None:
        """Register a message as in flight."""
        with self._lock:
            self._in_flight[message_id] = {
                "fileName": file_name,
                "startTime": time.time(),
            }

    def record_success(self, message_id: str, file_name: str) -> float:
        """Count a completed message and append it to history.

        Returns:
            Seconds the message spent in flight.
        """
        return self._complete(message_id, file_name, "success", None)

    def record_failure(
        self, message_id: str, file_name: str | None, error: str
    ) -> float:
        """Count a failed message (terminal or dead-lettered)."""
        return self._complete(message_id, file_name, "failed", error)

    def release(self, message_id: str) -> None:
        """Drop a message from the in-flight map without counting it."""
        with self._lock:
            self._in_flight.pop(message_id, None)

    def _complete(
        self,
        message_id: str,
        file_name: str | None,
        status: str,
        error: str | None,
    ) -> float:
        now = time.time()
        with self._lock:
            info = self._in_flight.pop(message_id, None)
            processing_time = now - info["startTime"] if info else 0.0
            self._total_processed += 1
            if status == "success":
                self._total_success += 1
            else:
                self._total_failed += 1
            self._last_message_time = now

            entry: dict[str, Any] = {
                "messageId": message_id,
                "fileName": file_name or (info or {}).get("fileName") or "unknown",
                "status": status,
                "processingTime": processing_time,
                "timestamp": datetime.fromtimestamp(now, UTC).isoformat(),
            }
            if error is not None:
                entry["error"] = error
            self._history.append(entry)
        return processing_time

    @property
    def total_processed(self) -> int:
        return self._total_processed

    @property
    def total_success(self) -> int:
        return self._total_success

    @property
    def total_failed(self) -> int:
        return self._total_failed

    def snapshot(self) -> dict[str, Any]:
        """Return a point-in-time copy safe to serialise."""
        with self._lock:
            in_flight = [
                {"messageId": message_id, **info}
                for message_id, info in self._in_flight.items()
            ]
            history = list(self._history)
            processed = self._total_processed
            success = self._total_success
            failed = self._total_failed
            last = self._last_message_time

        return {
            "startTime": datetime.fromtimestamp(self.start_time, UTC).isoformat(),
            "totalProcessed": processed,
            "totalSuccess": success,
            "totalFailed": failed,
            "successRate": success_rate(success, processed),
            "lastMessageTime": (
                datetime.fromtimestamp(last, UTC).isoformat() if last else None
            ),
            "processingMessages": in_flight,
            "messageHistory": history,
        }


def success_rate(success: int, processed: int) -> str:
    """Format the success ratio as a percentage string."""
    if processed == 0:
        return "0%"
    return f"{success / processed * 100:.2f}%"
