"""Acknowledgment decisions for queue messages.

Every delivered message ends in exactly one ack or nack:

    COMPLETED      ack, counted as success
    ACKED_NOOP     ack, not counted (work was already done)
    TERMINAL       ack, counted as failure (redelivery cannot help)
    RETRYING       nack after base_delay * 2^(attempt-1), not counted yet
    DEAD_LETTERED  nack now, counted as failure; the subscription's
                   dead-letter policy takes the message from here

Retry nacks are scheduled on the event loop timer so the handler returns
immediately. Attempt counts live in process memory; when the queue reports
its own delivery attempt that value is used as a floor.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any, Protocol

from quality_worker.observability.stats import ProcessingStats
from quality_worker.utils.classifier import ErrorClass, classify_error

logger = logging.getLogger(__name__)


class Disposition(str, Enum):
    COMPLETED = "completed"
    ACKED_NOOP = "acked_noop"
    TERMINAL = "terminal"
    RETRYING = "retrying"
    DEAD_LETTERED = "dead_lettered"


class AckableMessage(Protocol):
    """The parts of a queue message the controller touches."""

    message_id: str

    def ack(self) -> Any: ...

    def nack(self) -> Any: ...


@dataclass(frozen=True)
class AckDecision:
    disposition: Disposition
    attempt: int = 0
    delay_seconds: float | None = None


Scheduler = Callable[[float, Callable[[], None]], Any]


def _loop_scheduler(delay: float, callback: Callable[[], None]) -> Any:
    return asyncio.get_running_loop().call_later(delay, callback)


class AcknowledgmentController:
    """Turns message outcomes into ack/nack calls and stats updates.

    Args:
        stats: Shared processing statistics.
        max_retries: Failures allowed before dead-lettering.
        base_delay: Seconds before the first retry nack.
        schedule: Callable(delay, callback) used for delayed nacks;
            defaults to the running loop's call_later.
    """

    def __init__(
        self,
        stats: ProcessingStats,
        max_retries: int = 3,
        base_delay: float = 1.0,
        schedule: Scheduler | None = None,
    ) -> None:
        self._stats = stats
        self.max_retries = max(1, max_retries)
        self.base_delay = base_delay
        self._schedule = schedule or _loop_scheduler
        self._retry_state: dict[str, int] = {}
        self._retry_lock = threading.Lock()

    def retry_count(self, message_id: str) -> int:
        with self._retry_lock:
            return self._retry_state.get(message_id, 0)

    @property
    def pending_retries(self) -> int:
        with self._retry_lock:
            return len(self._retry_state)

    def completed(self, message: AckableMessage, file_name: str) -> AckDecision:
        """Ack a message whose result was stored."""
        self._clear(message.message_id)
        _ack(message)
        self._stats.record_success(message.message_id, file_name)
        logger.info(
            "Message processed and acknowledged",
            extra={
                "message_id": message.message_id,
                "file_name": file_name,
                "disposition": Disposition.COMPLETED.value,
            },
        )
        return AckDecision(Disposition.COMPLETED)

    def already_done(self, message: AckableMessage, file_name: str) -> AckDecision:
        """Ack a duplicate delivery without touching counters."""
        self._clear(message.message_id)
        _ack(message)
        self._stats.release(message.message_id)
        logger.info(
            "File already processed, acknowledging without work",
            extra={
                "message_id": message.message_id,
                "file_name": file_name,
                "disposition": Disposition.ACKED_NOOP.value,
            },
        )
        return AckDecision(Disposition.ACKED_NOOP)

    def failed(
        self,
        message: AckableMessage,
        file_name: str | None,
        exc: BaseException,
    ) -> AckDecision:
        """Decide between terminal ack, delayed retry nack, or dead-letter.

        Never raises; ack/nack errors from the queue client are logged.
        """
        message_id = message.message_id
        error_class = classify_error(exc)
        extra: dict[str, Any] = {
            "message_id": message_id,
            "file_name": file_name,
            "error": str(exc),
        }

        if error_class is ErrorClass.TERMINAL:
            self._clear(message_id)
            _ack(message)
            self._stats.record_failure(message_id, file_name, str(exc))
            logger.error(
                "Terminal failure, acknowledging without retry: %s",
                exc,
                extra={**extra, "disposition": Disposition.TERMINAL.value},
            )
            return AckDecision(Disposition.TERMINAL)

        attempt = self._next_attempt(message)
        if attempt >= self.max_retries:
            self._clear(message_id)
            _nack(message)
            self._stats.record_failure(message_id, file_name, str(exc))
            logger.error(
                "Retry budget exhausted after %d attempts, routing to dead letter",
                attempt,
                extra={
                    **extra,
                    "attempt": attempt,
                    "disposition": Disposition.DEAD_LETTERED.value,
                },
            )
            return AckDecision(Disposition.DEAD_LETTERED, attempt=attempt)

        with self._retry_lock:
            self._retry_state[message_id] = attempt
        delay = self.base_delay * (2 ** (attempt - 1))
        self._stats.release(message_id)
        logger.warning(
            "Retry %d/%d in %.1fs",
            attempt,
            self.max_retries,
            delay,
            extra={
                **extra,
                "attempt": attempt,
                "disposition": Disposition.RETRYING.value,
            },
        )
        self._schedule(delay, lambda: _nack(message))
        return AckDecision(Disposition.RETRYING, attempt=attempt, delay_seconds=delay)

    def _next_attempt(self, message: AckableMessage) -> int:
        with self._retry_lock:
            attempt = self._retry_state.get(message.message_id, 0) + 1
        native = getattr(message, "delivery_attempt", None)
        if isinstance(native, int) and native > attempt:
            attempt = native
        return attempt

    def _clear(self, message_id: str) -> None:
        with self._retry_lock:
            self._retry_state.pop(message_id, None)


def _ack(message: AckableMessage) -> None:
    try:
        message.ack()
    except Exception:
        logger.error(
            "Ack failed for message %s", message.message_id, exc_info=True
        )


def _nack(message: AckableMessage) -> None:
    try:
        message.nack()
    except Exception:
        logger.error(
            "Nack failed for message %s", message.message_id, exc_info=True
        )
