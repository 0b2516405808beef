"""Pub/Sub consumer for audio upload events.

Uses streaming pull: the client library invokes the callback on its own
thread pool, and each callback hands the message to the worker's event
loop with asyncio.run_coroutine_threadsafe. The handler decides the ack or
nack; this module never acknowledges a message itself except when the loop
is gone and the message has to go back to the queue.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
from collections.abc import Awaitable, Callable
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Any

from quality_worker.utils.errors import MessageValidationError, QueueError

logger = logging.getLogger(__name__)

MessageHandler = Callable[[Any], Awaitable[Any]]


@dataclass(frozen=True)
class InboundEvent:
    """Validated upload event deserialized from a queue message."""

    message_id: str
    file_name: str
    bucket_ref: str

    @property
    def gcs_uri(self) -> str:
        return f"gs://{self.bucket_ref}/{self.file_name}"

    @classmethod
    def from_message(cls, message: Any, default_bucket: str = "") -> InboundEvent:
        """Deserialize and validate a queue message.

        The file name is read from ``name``, ``object`` or ``fileName``; the
        bucket from ``bucket`` or ``bucketName``, falling back to
        default_bucket.

        Args:
            message: Queue message with ``message_id`` and ``data`` bytes.
            default_bucket: Bucket used when the payload names none.

        Returns:
            Validated InboundEvent.

        Raises:
            MessageValidationError: If the payload is not a JSON object or
                carries no file name.
        """
        message_id = message.message_id
        try:
            payload = json.loads(message.data.decode("utf-8"))
        except (AttributeError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            raise MessageValidationError(
                f"Invalid message payload: {exc}", message_id=message_id
            ) from exc

        if not isinstance(payload, dict):
            raise MessageValidationError(
                "Invalid message payload: expected a JSON object",
                message_id=message_id,
            )

        file_name = payload.get("name") or payload.get("object") or payload.get("fileName")
        if not file_name or not isinstance(file_name, str):
            raise MessageValidationError(
                "Missing field 'name' in message payload", message_id=message_id
            )

        bucket = payload.get("bucket") or payload.get("bucketName") or default_bucket
        if not bucket:
            raise MessageValidationError(
                "Missing field 'bucket' and no default bucket configured",
                file_name=file_name,
                message_id=message_id,
            )

        return cls(message_id=message_id, file_name=file_name, bucket_ref=bucket)


class PubSubConsumer:
    """Streaming-pull subscriber that feeds messages to an async handler.

    Configuration from environment variables:
        GCP_PROJECT_ID, PUBSUB_SUBSCRIPTION_NAME

    Args:
        project_id: GCP project owning the subscription.
        subscription_name: Subscription id (not the full path).
        max_messages: Flow-control limit on outstanding messages.
        subscriber: Optional pre-configured SubscriberClient.
    """

    def __init__(
        self,
        project_id: str | None = None,
        subscription_name: str | None = None,
        max_messages: int = 10,
        subscriber: Any = None,
    ) -> None:
        self.project_id = project_id or os.environ.get("GCP_PROJECT_ID", "")
        self.subscription_name = subscription_name or os.environ.get(
            "PUBSUB_SUBSCRIPTION_NAME", "upload_audio_qualidade"
        )
        self.max_messages = max_messages

        if subscriber is None:
            if not self.project_id:
                raise QueueError("GCP_PROJECT_ID is required", operation="init")
            from google.cloud import pubsub_v1

            subscriber = pubsub_v1.SubscriberClient()

        self._subscriber = subscriber
        self.subscription_path = subscriber.subscription_path(
            self.project_id, self.subscription_name
        )
        self._streaming_future: Any = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._handler: MessageHandler | None = None

    @property
    def subscription_active(self) -> bool:
        future = self._streaming_future
        return future is not None and not future.done()

    def start(
        self, handler: MessageHandler, loop: asyncio.AbstractEventLoop
    ) -> None:
        """Open the streaming pull and route messages to handler on loop.

        Raises:
            QueueError: If the subscription cannot be opened.
        """
        from google.cloud.pubsub_v1.types import FlowControl

        self._handler = handler
        self._loop = loop
        try:
            self._streaming_future = self._subscriber.subscribe(
                self.subscription_path,
                callback=self._on_message,
                flow_control=FlowControl(max_messages=self.max_messages),
            )
        except Exception as exc:
            raise QueueError(
                f"Subscription failed for {self.subscription_path}: {exc}",
                operation="subscribe",
            ) from exc
        self._streaming_future.add_done_callback(self._on_stream_done)
        logger.info("Listening on %s", self.subscription_path)

    def _on_message(self, message: Any) -> None:
        """Client-library callback; runs on a subscriber thread."""
        loop = self._loop
        if loop is None or loop.is_closed() or self._handler is None:
            logger.warning(
                "Event loop unavailable, returning message to queue",
                extra={"message_id": message.message_id},
            )
            message.nack()
            return

        try:
            future = asyncio.run_coroutine_threadsafe(self._handler(message), loop)
        except RuntimeError:
            logger.warning(
                "Event loop shut down, returning message to queue",
                extra={"message_id": message.message_id},
            )
            message.nack()
            return
        future.add_done_callback(
            lambda f: _log_handler_failure(f, message.message_id)
        )

    def _on_stream_done(self, future: Any) -> None:
        if future.cancelled():
            logger.info("Streaming pull cancelled for %s", self.subscription_path)
            return
        exc = future.exception()
        if exc is not None:
            logger.error(
                "Streaming pull stopped for %s: %s",
                self.subscription_path,
                exc,
                extra={"error": str(exc)},
            )

    def close(self, timeout: float = 10.0) -> None:
        """Cancel the streaming pull and close the subscriber client."""
        future = self._streaming_future
        if future is not None:
            future.cancel()
            try:
                future.result(timeout=timeout)
            except Exception:
                logger.debug("Streaming pull future settled after cancel", exc_info=True)
        self._subscriber.close()
        logger.info("Queue consumer stopped")


def _log_handler_failure(future: Future, message_id: str) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error(
            "Message handler raised: %s",
            exc,
            extra={"message_id": message_id, "error": str(exc)},
        )
