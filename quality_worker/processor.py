"""Per-message unit of work.

MessageProcessor.handle() is the queue callback target. It parses the
event, holds the per-file lock while the idempotency guard, the analysis
pipeline and the commit run, then hands the outcome to the acknowledgment
controller. It never raises: every failure ends as an ack or nack.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from quality_worker.acknowledgment import AckDecision, AcknowledgmentController
from quality_worker.analysis.interface import AnalysisEngine
from quality_worker.idempotency import GuardOutcome, IdempotencyGuard
from quality_worker.observability.metrics import MessageMetrics, log_message_metrics
from quality_worker.observability.stats import ProcessingStats
from quality_worker.pipeline import (
    AnalysisResult,
    PipelineSettings,
    determine_error_stage,
    run_pipeline,
)
from quality_worker.queue.consumer import InboundEvent
from quality_worker.storage.notifier import CompletionNotifier
from quality_worker.transcription.interface import TranscriptionEngine
from quality_worker.utils.errors import AssociationError, MessageValidationError

logger = logging.getLogger(__name__)


class MessageProcessor:
    """Drives one queue message from intake to acknowledgment."""

    def __init__(
        self,
        guard: IdempotencyGuard,
        controller: AcknowledgmentController,
        stats: ProcessingStats,
        transcriber: TranscriptionEngine,
        primary: AnalysisEngine,
        secondary: AnalysisEngine | None = None,
        notifier: CompletionNotifier | None = None,
        settings: PipelineSettings | None = None,
        default_bucket: str = "",
    ) -> None:
        self._guard = guard
        self._controller = controller
        self._stats = stats
        self._transcriber = transcriber
        self._primary = primary
        self._secondary = secondary
        self._notifier = notifier
        self._settings = settings or PipelineSettings()
        self._default_bucket = default_bucket

    async def handle(self, message: Any) -> AckDecision:
        """Process one delivery and settle it with exactly one ack or nack."""
        wall_start = time.monotonic()
        message_id = message.message_id

        try:
            event = InboundEvent.from_message(message, self._default_bucket)
        except MessageValidationError as exc:
            self._stats.start(message_id, "unknown")
            decision = self._controller.failed(message, None, exc)
            self._emit_metrics(
                message_id, "unknown", decision, wall_start,
                error_stage="intake", error=exc,
            )
            return decision

        self._stats.start(message_id, event.file_name)
        logger.info(
            "Processing %s",
            event.gcs_uri,
            extra={"message_id": message_id, "file_name": event.file_name},
        )

        result: AnalysisResult | None = None
        try:
            async with self._guard.lock(event.file_name):
                decision, result = await self._process(message, event)
        except Exception as exc:
            decision = self._controller.failed(message, event.file_name, exc)
            self._emit_metrics(
                message_id, event.file_name, decision, wall_start,
                error_stage=determine_error_stage(exc), error=exc,
            )
            return decision

        self._emit_metrics(message_id, event.file_name, decision, wall_start, result=result)
        return decision

    async def _process(
        self, message: Any, event: InboundEvent
    ) -> tuple[AckDecision, AnalysisResult | None]:
        check = await self._guard.check(event.file_name)
        if check.outcome is GuardOutcome.ALREADY_DONE:
            return self._controller.already_done(message, event.file_name), None
        if check.outcome is GuardOutcome.REPAIRED and check.record is not None:
            logger.info(
                "Completed an interrupted commit for record %s",
                check.record.record_id,
                extra={"message_id": message.message_id, "file_name": event.file_name},
            )
            return await self._complete(message, event, check.record.record_id), None
        if check.outcome is GuardOutcome.UNASSOCIATED or check.record is None:
            raise AssociationError(
                "No associated record found for audio file", file_name=event.file_name
            )

        record = check.record
        result = await run_pipeline(
            file_name=event.file_name,
            record_id=record.record_id,
            gcs_uri=event.gcs_uri,
            transcriber=self._transcriber,
            primary=self._primary,
            secondary=self._secondary,
            settings=self._settings,
        )

        if not await self._guard.commit(record, result):
            return self._controller.already_done(message, event.file_name), None

        return await self._complete(message, event, record.record_id), result

    async def _complete(self, message: Any, event: InboundEvent, record_id: str) -> AckDecision:
        if self._notifier is not None:
            await self._notifier.notify_completion(record_id)
        return self._controller.completed(message, event.file_name)

    def _emit_metrics(
        self,
        message_id: str,
        file_name: str,
        decision: AckDecision,
        wall_start: float,
        result: AnalysisResult | None = None,
        error_stage: str | None = None,
        error: BaseException | None = None,
    ) -> None:
        metrics = MessageMetrics(
            message_id=message_id,
            file_name=file_name,
            disposition=decision.disposition.value,
            processing_wall_time_seconds=time.monotonic() - wall_start,
            attempt=decision.attempt or 1,
            error_stage=error_stage,
            error_message=str(error) if error is not None else None,
        )
        if result is not None:
            metrics.consensus_score = result.consensus_score
            metrics.consensus_source = result.consensus_source
            metrics.secondary_available = result.secondary is not None
            metrics.stage_timings = dict(result.stage_timings)
        log_message_metrics(metrics)
