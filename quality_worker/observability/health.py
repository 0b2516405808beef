"""Health and operational snapshot endpoints.

Serves two routes on the worker's HTTP port:
- GET /health              component readiness plus processing statistics
- GET /observatorio/data   raw stats snapshot and recent log lines

The listener binds before any collaborator exists; components register
themselves with the HealthMonitor as background initialisation finishes.
The worker reports healthy only when the store answers a ping, the queue
subscription is open and every analysis engine has been created.
"""

import asyncio
import logging
import threading
import time
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from aiohttp import web

from quality_worker.observability.logger import RecentLogHandler
from quality_worker.observability.stats import ProcessingStats

logger = logging.getLogger(__name__)

STORE_PING_TIMEOUT_SECONDS = 2.0


class Lifecycle(str, Enum):
    BOOTING = "booting"
    PARTIALLY_READY = "partially_ready"
    READY = "ready"


def format_uptime(seconds: int) -> str:
    """Render seconds as "<h>h <m>m <s>s"."""
    return f"{seconds // 3600}h {(seconds % 3600) // 60}m {seconds % 60}s"


class HealthMonitor:
    """Component registry behind the health endpoint.

    Args:
        stats: Shared processing statistics.
        recent_logs: Handler holding the last log lines, if installed.
        ping_timeout: Seconds to wait for the store ping before reporting it
            unreachable.
    """

    def __init__(
        self,
        stats: ProcessingStats,
        recent_logs: RecentLogHandler | None = None,
        ping_timeout: float = STORE_PING_TIMEOUT_SECONDS,
    ) -> None:
        self.stats = stats
        self.recent_logs = recent_logs
        self.ping_timeout = ping_timeout
        self._state_lock = threading.Lock()
        self._initialized = False
        self._store: Any = None
        self._consumer: Any = None
        self._transcriber: Any = None
        self._primary: Any = None
        self._secondary: Any = None

        # aiohttp components
        self._runner: web.AppRunner | None = None
        self._site: web.TCPSite | None = None

    def register_store(self, store: Any) -> None:
        with self._state_lock:
            self._store = store

    def register_consumer(self, consumer: Any) -> None:
        with self._state_lock:
            self._consumer = consumer

    def register_engines(
        self, transcriber: Any = None, primary: Any = None, secondary: Any = None
    ) -> None:
        with self._state_lock:
            if transcriber is not None:
                self._transcriber = transcriber
            if primary is not None:
                self._primary = primary
            if secondary is not None:
                self._secondary = secondary

    def mark_initialized(self) -> None:
        """Record that background initialisation has finished, successfully or not."""
        with self._state_lock:
            self._initialized = True
        logger.info("Startup finished, lifecycle=%s", self.lifecycle.value)

    @property
    def lifecycle(self) -> Lifecycle:
        with self._state_lock:
            if not self._initialized:
                return Lifecycle.BOOTING
            complete = all(
                component is not None
                for component in (
                    self._store,
                    self._consumer,
                    self._transcriber,
                    self._primary,
                    self._secondary,
                )
            )
        return Lifecycle.READY if complete else Lifecycle.PARTIALLY_READY

    async def check_store(self) -> dict[str, Any]:
        store = self._store
        if store is None:
            return {"status": "not_initialized", "error": "Store not initialized"}
        try:
            reachable = await asyncio.wait_for(store.ping(), timeout=self.ping_timeout)
        except TimeoutError:
            return {
                "status": "unhealthy",
                "error": f"Store ping timed out after {self.ping_timeout:g}s",
            }
        except Exception as exc:
            return {"status": "error", "error": str(exc)}
        return {
            "status": "healthy" if reachable else "unhealthy",
            "database": getattr(store, "database_name", None),
        }

    def check_queue(self) -> dict[str, Any]:
        consumer = self._consumer
        if consumer is None:
            return {"status": "not_initialized", "error": "Subscription not initialized"}
        if not consumer.subscription_active:
            return {
                "status": "unhealthy",
                "subscriptionName": consumer.subscription_path,
            }
        return {"status": "healthy", "subscriptionName": consumer.subscription_path}

    def check_ai_services(self) -> dict[str, Any]:
        with self._state_lock:
            engines = {
                "transcription": self._transcriber,
                "primaryAnalysis": self._primary,
                "secondaryAnalysis": self._secondary,
            }
        detail = {
            name: "initialized" if engine is not None else "not_initialized"
            for name, engine in engines.items()
        }
        healthy = all(engine is not None for engine in engines.values())
        return {"status": "healthy" if healthy else "partial", **detail}

    async def report(self) -> tuple[dict[str, Any], int]:
        """Build the /health body and its HTTP status code."""
        snapshot = self.stats.snapshot()
        uptime = int(time.time() - self.stats.start_time)
        components = {
            "store": await self.check_store(),
            "queue": self.check_queue(),
            "aiServices": self.check_ai_services(),
        }
        healthy = all(c["status"] == "healthy" for c in components.values())

        body = {
            "status": "healthy" if healthy else "degraded",
            "timestamp": datetime.now(UTC).isoformat(),
            "lifecycle": self.lifecycle.value,
            "uptime": {"seconds": uptime, "formatted": format_uptime(uptime)},
            "components": components,
            "statistics": {
                "totalProcessed": snapshot["totalProcessed"],
                "totalSuccess": snapshot["totalSuccess"],
                "totalFailed": snapshot["totalFailed"],
                "successRate": snapshot["successRate"],
                "currentlyProcessing": len(snapshot["processingMessages"]),
                "lastMessageTime": snapshot["lastMessageTime"],
            },
        }
        return body, 200 if healthy else 503

    async def handle_health(self, request: web.Request) -> web.Response:
        """Handle GET /health. 200 when every component is healthy, else 503."""
        try:
            body, status = await self.report()
        except Exception as exc:
            logger.error("Health check failed: %s", exc, exc_info=True)
            return web.json_response(
                {
                    "status": "error",
                    "error": str(exc),
                    "timestamp": datetime.now(UTC).isoformat(),
                },
                status=503,
            )
        return web.json_response(body, status=status)

    async def handle_observatorio_data(self, request: web.Request) -> web.Response:
        """Handle GET /observatorio/data with the stats snapshot and recent logs."""
        try:
            logs = self.recent_logs.entries() if self.recent_logs else []
            body = {"stats": self.stats.snapshot(), "logs": logs}
        except Exception as exc:
            logger.error("Snapshot failed: %s", exc, exc_info=True)
            return web.json_response({"error": str(exc)}, status=500)
        return web.json_response(body)

    def create_app(self) -> web.Application:
        """Create aiohttp application with the monitoring routes."""
        app = web.Application()
        app.router.add_get("/health", self.handle_health)
        app.router.add_get("/observatorio/data", self.handle_observatorio_data)
        return app

    async def start(self, port: int, host: str = "0.0.0.0") -> None:
        """Bind the HTTP listener on the current event loop."""
        self._runner = web.AppRunner(self.create_app())
        await self._runner.setup()
        self._site = web.TCPSite(self._runner, host, port, reuse_address=True)
        await self._site.start()
        logger.info("Health server listening on port %d", port)

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            self._site = None
