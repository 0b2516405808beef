"""Worker entry point for the audio quality analysis pipeline.

Binds the HTTP health server first (Cloud Run requires a listening port
quickly), then initialises the store, the analysis engines and the Pub/Sub
subscription in the background. A collaborator that fails to initialise is
logged and reported as degraded on /health; the listener stays up. Handles
SIGTERM for graceful shutdown.
"""

import asyncio
import logging
import signal
import sys
import time
from dataclasses import dataclass
from typing import Any

from quality_worker.acknowledgment import AcknowledgmentController
from quality_worker.analysis import AnalysisEngine, get_analysis_engine
from quality_worker.config import WorkerConfig
from quality_worker.idempotency import IdempotencyGuard
from quality_worker.observability.health import HealthMonitor
from quality_worker.observability.logger import RecentLogHandler, StructuredJsonFormatter
from quality_worker.observability.stats import ProcessingStats
from quality_worker.pipeline import PipelineSettings
from quality_worker.processor import MessageProcessor
from quality_worker.queue.consumer import PubSubConsumer
from quality_worker.storage.mongo_store import MongoStore
from quality_worker.storage.notifier import CompletionNotifier
from quality_worker.transcription import TranscriptionEngine, get_transcription_engine
from quality_worker.utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

SHUTDOWN_TIMEOUT_SECONDS = 30.0


def _setup_logging(level: str = "INFO") -> RecentLogHandler:
    """Configure root logger with structured JSON output for GCP.

    Returns:
        The in-memory handler backing the snapshot endpoint.
    """
    root = logging.getLogger()
    root.setLevel(level)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(StructuredJsonFormatter())
    root.addHandler(handler)
    recent = RecentLogHandler()
    root.addHandler(recent)
    return recent


def _handle_loop_exception(loop: asyncio.AbstractEventLoop, context: dict[str, Any]) -> None:
    """Log errors from orphaned tasks and callbacks instead of crashing."""
    exc = context.get("exception")
    logger.error(
        "Unhandled event loop error: %s",
        context.get("message", "unknown"),
        exc_info=exc,
        extra={"error": str(exc) if exc else None},
    )


@dataclass
class Collaborators:
    """Everything created during background initialisation."""

    store: MongoStore | None = None
    notifier: CompletionNotifier | None = None
    consumer: PubSubConsumer | None = None
    transcriber: TranscriptionEngine | None = None
    primary: AnalysisEngine | None = None
    secondary: AnalysisEngine | None = None


async def _initialize(
    config: WorkerConfig,
    stats: ProcessingStats,
    monitor: HealthMonitor,
    parts: Collaborators,
) -> None:
    """Create collaborators one by one, logging and skipping failures."""
    try:
        store = MongoStore(uri=config.mongo_uri, database_name=config.database_name)
        await store.connect()
        parts.store = store
        monitor.register_store(store)
    except Exception as exc:
        logger.error("Store initialisation failed: %s", exc, exc_info=True)

    try:
        parts.transcriber = get_transcription_engine(
            "google-speech", project_id=config.gcp_project_id or None
        )
        monitor.register_engines(transcriber=parts.transcriber)
    except Exception as exc:
        logger.error("Transcription engine initialisation failed: %s", exc, exc_info=True)

    try:
        parts.primary = get_analysis_engine(
            "gemini", api_key=config.gemini_api_key, model=config.gemini_model
        )
        monitor.register_engines(primary=parts.primary)
    except Exception as exc:
        logger.error("Primary analysis engine initialisation failed: %s", exc, exc_info=True)

    try:
        parts.secondary = get_analysis_engine(
            "openai", api_key=config.openai_api_key, model=config.gpt_model
        )
        monitor.register_engines(secondary=parts.secondary)
    except Exception as exc:
        logger.warning(
            "Secondary analysis engine unavailable, results will be primary only: %s",
            exc,
        )

    parts.notifier = CompletionNotifier(backend_url=config.backend_api_url)

    if parts.store is None or parts.transcriber is None or parts.primary is None:
        logger.error("Required collaborators missing, not subscribing to the queue")
        monitor.mark_initialized()
        return

    processor = MessageProcessor(
        guard=IdempotencyGuard(parts.store),
        controller=AcknowledgmentController(
            stats,
            max_retries=config.max_retries,
            base_delay=config.nack_base_delay_seconds,
        ),
        stats=stats,
        transcriber=parts.transcriber,
        primary=parts.primary,
        secondary=parts.secondary,
        notifier=parts.notifier,
        settings=PipelineSettings(
            max_attempts=config.stage_max_attempts,
            base_delay=config.stage_base_delay_seconds,
            language_code=config.language_code,
        ),
        default_bucket=config.gcs_bucket_name,
    )

    try:
        consumer = PubSubConsumer(
            project_id=config.gcp_project_id,
            subscription_name=config.subscription_name,
        )
        consumer.start(processor.handle, asyncio.get_running_loop())
        parts.consumer = consumer
        monitor.register_consumer(consumer)
    except Exception as exc:
        logger.error("Queue subscription failed: %s", exc, exc_info=True)

    monitor.mark_initialized()


async def _drain(stats: ProcessingStats, timeout: float) -> None:
    """Wait for in-flight messages to settle, up to timeout seconds."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        in_flight = len(stats.snapshot()["processingMessages"])
        if in_flight == 0:
            return
        logger.info("Waiting for %d in-flight messages", in_flight)
        await asyncio.sleep(0.5)
    logger.warning("Shutdown timeout reached with messages still in flight")


async def _shutdown(parts: Collaborators, stats: ProcessingStats) -> None:
    if parts.consumer is not None:
        await asyncio.to_thread(parts.consumer.close)
    await _drain(stats, SHUTDOWN_TIMEOUT_SECONDS)
    if parts.notifier is not None:
        await parts.notifier.close()
    if parts.store is not None:
        await parts.store.close()


async def _run(config: WorkerConfig, recent_logs: RecentLogHandler) -> None:
    """Run the health server and queue consumer until a shutdown signal."""
    loop = asyncio.get_running_loop()
    loop.set_exception_handler(_handle_loop_exception)

    stats = ProcessingStats()
    monitor = HealthMonitor(stats, recent_logs)
    await monitor.start(config.port)

    parts = Collaborators()
    init_task = asyncio.create_task(_initialize(config, stats, monitor, parts))

    stop_event = asyncio.Event()

    def _on_signal() -> None:
        logger.info("Received shutdown signal")
        stop_event.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    if not init_task.done():
        init_task.cancel()
    await _shutdown(parts, stats)
    await monitor.stop()


def main() -> None:
    """Start the worker and process incoming upload events."""
    recent_logs = _setup_logging()
    try:
        config = WorkerConfig.from_env()
    except ConfigurationError as exc:
        logger.critical("Invalid configuration: %s", exc)
        sys.exit(1)
    logging.getLogger().setLevel(config.log_level)
    logger.info("Audio quality worker starting")

    asyncio.run(_run(config, recent_logs))


if __name__ == "__main__":
    main()
