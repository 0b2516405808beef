"""Completion notifications to the quality backend API.

The backend relays these to connected dashboards. Delivery is best-effort:
failures are logged and swallowed, never retried.
"""

from __future__ import annotations

import logging
import os

import httpx

logger = logging.getLogger(__name__)

NOTIFY_PATH = "/api/audio-analise/notify-completed"
NOTIFY_TIMEOUT_SECONDS = 5.0


class CompletionNotifier:
    """Posts completion events to the backend.

    Reads configuration from environment variables:
        BACKEND_API_URL

    Args:
        backend_url: Base URL of the backend API.
        client: Optional shared httpx.AsyncClient.
    """

    def __init__(
        self,
        backend_url: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.backend_url = (
            backend_url or os.environ.get("BACKEND_API_URL", "http://localhost:3001")
        ).rstrip("/")
        self._client = client or httpx.AsyncClient(timeout=NOTIFY_TIMEOUT_SECONDS)

    async def close(self) -> None:
        """Close the HTTP client and release its connection pool."""
        await self._client.aclose()

    async def notify_completion(self, record_id: str) -> bool:
        """Tell the backend that a record's audio analysis is ready.

        Args:
            record_id: Id of the associated evaluation record.

        Returns:
            True if the backend accepted the notification, False otherwise.
        """
        url = f"{self.backend_url}{NOTIFY_PATH}"
        try:
            response = await self._client.post(
                url,
                json={"audioId": record_id},
                timeout=NOTIFY_TIMEOUT_SECONDS,
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.warning(
                "Backend notification rejected for %s: HTTP %d",
                record_id,
                exc.response.status_code,
            )
            return False
        except httpx.RequestError as exc:
            logger.warning("Backend notification failed for %s: %s", record_id, exc)
            return False

        logger.info("Backend notified of completion: %s", record_id)
        return True
