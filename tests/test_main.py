"""Tests for quality_worker.main startup and shutdown behavior."""

import asyncio
import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

import quality_worker.main as main_mod
from quality_worker.config import WorkerConfig
from quality_worker.main import Collaborators, _handle_loop_exception, _initialize, _run
from quality_worker.observability.health import HealthMonitor, Lifecycle
from quality_worker.observability.logger import RecentLogHandler
from quality_worker.observability.stats import ProcessingStats
from quality_worker.processor import MessageProcessor
from quality_worker.utils.errors import ConfigurationError, StorageError

CONFIG = WorkerConfig(
    port=0,
    gcp_project_id="velohub",
    mongo_uri="mongodb://db:27017",
    gemini_api_key="g-key",
    openai_api_key="o-key",
)


@pytest.fixture
def patched_collaborators():
    """Replace every external collaborator class used by _initialize."""
    with (
        patch("quality_worker.main.MongoStore") as store_cls,
        patch("quality_worker.main.get_transcription_engine") as get_transcriber,
        patch("quality_worker.main.get_analysis_engine") as get_analyzer,
        patch("quality_worker.main.PubSubConsumer") as consumer_cls,
        patch("quality_worker.main.CompletionNotifier") as notifier_cls,
    ):
        store_cls.return_value.connect = AsyncMock()
        get_analyzer.side_effect = lambda provider, **kwargs: MagicMock(provider_name=provider)
        yield {
            "store_cls": store_cls,
            "get_transcriber": get_transcriber,
            "get_analyzer": get_analyzer,
            "consumer_cls": consumer_cls,
            "notifier_cls": notifier_cls,
        }


class TestInitialize:
    """Tests for background collaborator initialisation."""

    async def test_all_collaborators_ready_subscribes(self, patched_collaborators) -> None:
        stats = ProcessingStats()
        monitor = HealthMonitor(stats)
        parts = Collaborators()

        await _initialize(CONFIG, stats, monitor, parts)

        consumer = patched_collaborators["consumer_cls"].return_value
        consumer.start.assert_called_once()
        handler, loop = consumer.start.call_args.args
        assert isinstance(handler.__self__, MessageProcessor)
        assert loop is asyncio.get_running_loop()
        assert parts.consumer is consumer
        assert parts.secondary is not None
        assert monitor.lifecycle is Lifecycle.READY

    async def test_store_failure_skips_subscription(self, patched_collaborators) -> None:
        patched_collaborators["store_cls"].return_value.connect.side_effect = StorageError(
            "MongoDB connection failed"
        )
        stats = ProcessingStats()
        monitor = HealthMonitor(stats)
        parts = Collaborators()

        await _initialize(CONFIG, stats, monitor, parts)

        assert parts.store is None
        patched_collaborators["consumer_cls"].assert_not_called()
        assert monitor.lifecycle is Lifecycle.PARTIALLY_READY

    async def test_secondary_failure_still_subscribes(self, patched_collaborators) -> None:
        def get_engine(provider, **kwargs):
            if provider == "openai":
                raise ConfigurationError("OPENAI_API_KEY is required")
            return MagicMock(provider_name=provider)

        patched_collaborators["get_analyzer"].side_effect = get_engine
        stats = ProcessingStats()
        monitor = HealthMonitor(stats)
        parts = Collaborators()

        await _initialize(CONFIG, stats, monitor, parts)

        assert parts.secondary is None
        patched_collaborators["consumer_cls"].return_value.start.assert_called_once()
        assert monitor.lifecycle is Lifecycle.PARTIALLY_READY

    async def test_subscription_failure_is_logged(self, patched_collaborators) -> None:
        patched_collaborators["consumer_cls"].return_value.start.side_effect = RuntimeError(
            "permission denied"
        )
        stats = ProcessingStats()
        monitor = HealthMonitor(stats)
        parts = Collaborators()

        await _initialize(CONFIG, stats, monitor, parts)

        assert parts.consumer is None
        assert monitor.lifecycle is Lifecycle.PARTIALLY_READY


class TestShutdown:
    """Tests for graceful shutdown."""

    async def test_listener_binds_before_initialisation(self) -> None:
        order: list[str] = []

        async def fake_start(self, port, host="0.0.0.0"):
            order.append("listen")

        async def fake_initialize(config, stats, monitor, parts):
            order.append("initialize")
            monitor.mark_initialized()

        shutdown_callback = None

        def capture_handler(sig, callback):
            nonlocal shutdown_callback
            shutdown_callback = callback

        loop = asyncio.get_running_loop()
        original_add = loop.add_signal_handler
        original_handler = loop.get_exception_handler()
        loop.add_signal_handler = capture_handler

        try:
            with (
                patch.object(HealthMonitor, "start", fake_start),
                patch.object(HealthMonitor, "stop", AsyncMock()),
                patch("quality_worker.main._initialize", fake_initialize),
            ):
                task = asyncio.create_task(_run(CONFIG, RecentLogHandler()))
                await asyncio.sleep(0.05)

                assert shutdown_callback is not None
                shutdown_callback()
                await asyncio.wait_for(task, timeout=2.0)
        finally:
            loop.add_signal_handler = original_add
            loop.set_exception_handler(original_handler)

        assert order == ["listen", "initialize"]

    async def test_shutdown_closes_collaborators(self) -> None:
        parts = Collaborators(
            store=MagicMock(close=AsyncMock()),
            notifier=MagicMock(close=AsyncMock()),
            consumer=MagicMock(),
        )

        await main_mod._shutdown(parts, ProcessingStats())

        parts.consumer.close.assert_called_once()
        parts.notifier.close.assert_awaited_once()
        parts.store.close.assert_awaited_once()

    async def test_drain_gives_up_after_timeout(self, caplog) -> None:
        stats = ProcessingStats()
        stats.start("m-1", "a.mp3")

        with caplog.at_level(logging.WARNING):
            await main_mod._drain(stats, timeout=0.1)

        assert "Shutdown timeout reached" in caplog.text


class TestLoopExceptionHandler:
    def test_logs_context(self, caplog) -> None:
        loop = asyncio.new_event_loop()
        try:
            with caplog.at_level(logging.ERROR):
                _handle_loop_exception(
                    loop,
                    {"message": "Task exception was never retrieved", "exception": RuntimeError("x")},
                )
        finally:
            loop.close()

        assert "Task exception was never retrieved" in caplog.text
