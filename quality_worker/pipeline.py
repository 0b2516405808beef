"""Analysis pipeline orchestrator.

Contains the AnalysisResult data model and run_pipeline(), which drives one
audio file through: transcription -> primary analysis -> secondary analysis
(best-effort) -> merge. Required stages go through the stage-scoped retry
executor; a failure that survives its retries propagates unchanged with the
stage name attached.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

from quality_worker.analysis.consensus import derive_consensus
from quality_worker.analysis.interface import AnalysisEngine, SemanticAnalysis
from quality_worker.transcription.interface import Transcript, TranscriptionEngine
from quality_worker.utils.errors import TranscriptionError
from quality_worker.utils.retry import execute_with_backoff

logger = logging.getLogger(__name__)

STAGES = ("transcription", "primary_analysis", "secondary_analysis", "merge")


@dataclass(frozen=True)
class AnalysisResult:
    """Merged output for one audio file. Never updated once stored."""

    file_name: str
    record_id: str
    gcs_uri: str
    transcript: Transcript
    primary: SemanticAnalysis
    secondary: SemanticAnalysis | None
    consensus_score: float
    consensus_source: str
    processing_time_seconds: float
    stage_timings: dict[str, float] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    def to_document(self) -> dict[str, Any]:
        """Serialize for the results collection."""
        return {
            "nomeArquivo": self.file_name,
            "recordId": self.record_id,
            "gcsUri": self.gcs_uri,
            "transcription": self.transcript.text,
            "timestamps": [
                {"word": t.word, "startTime": t.start_time, "endTime": t.end_time}
                for t in self.transcript.word_timings
            ],
            "transcriptionConfidence": self.transcript.confidence,
            "primaryAnalysis": asdict(self.primary),
            "secondaryAnalysis": asdict(self.secondary) if self.secondary else None,
            "consensusScore": self.consensus_score,
            "consensusSource": self.consensus_source,
            "processingTime": self.processing_time_seconds,
            "stageTimings": dict(self.stage_timings),
            "createdAt": self.created_at,
        }


@dataclass
class PipelineSettings:
    """Per-stage retry budget and language hint."""

    max_attempts: int = 3
    base_delay: float = 1.0
    language_code: str = "pt-BR"


class _StageTimer:
    """Context manager that records stage durations and tags failures.

    A failing stage is recorded under "_<stage>_failed" and the escaping
    exception gets a .stage attribute unless it already has one.
    """

    def __init__(self, stage_name: str, timings: dict[str, float]) -> None:
        self._stage_name = stage_name
        self._timings = timings
        self._start: float = 0.0

    def __enter__(self) -> _StageTimer:
        self._start = time.monotonic()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        elapsed = time.monotonic() - self._start
        if exc_type is not None:
            self._timings[f"_{self._stage_name}_failed"] = elapsed
            if exc_val is not None and getattr(exc_val, "stage", None) is None:
                try:
                    exc_val.stage = self._stage_name
                except AttributeError:
                    pass
        else:
            self._timings[self._stage_name] = elapsed


async def run_pipeline(
    file_name: str,
    record_id: str,
    gcs_uri: str,
    transcriber: TranscriptionEngine,
    primary: AnalysisEngine,
    secondary: AnalysisEngine | None = None,
    settings: PipelineSettings | None = None,
) -> AnalysisResult:
    """Run every analysis stage for one file.

    Args:
        file_name: Object name of the audio file.
        record_id: Id of the associated business record.
        gcs_uri: Storage URI passed to the transcription engine.
        transcriber: Speech-to-text engine.
        primary: Required scoring engine.
        secondary: Optional reviewing engine; None skips the stage.
        settings: Retry budget and language; defaults when omitted.

    Returns:
        AnalysisResult with consensus score and timings.

    Raises:
        Exception: The last error of a required stage, with .stage set.
    """
    settings = settings or PipelineSettings()
    wall_start = time.monotonic()
    stage_timings: dict[str, float] = {}

    logger.info(
        "Starting analysis pipeline for %s", file_name,
        extra={"file_name": file_name},
    )

    # Stage 1: Transcription (required)
    with _StageTimer("transcription", stage_timings):
        transcript = await execute_with_backoff(
            lambda: _transcribe(transcriber, gcs_uri, settings.language_code, file_name),
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            label="transcription",
        )
    logger.info(
        "Transcription complete: %d characters", len(transcript.text),
        extra={"file_name": file_name, "stage": "transcription"},
    )

    # Stage 2: Primary analysis (required)
    with _StageTimer("primary_analysis", stage_timings):
        primary_result = await execute_with_backoff(
            lambda: primary.analyze(transcript.text, transcript.word_timings),
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay,
            label="primary_analysis",
        )

    # Stage 3: Secondary analysis (best-effort)
    secondary_result: SemanticAnalysis | None = None
    if secondary is not None:
        try:
            with _StageTimer("secondary_analysis", stage_timings):
                secondary_result = await execute_with_backoff(
                    lambda: secondary.analyze(
                        transcript.text, transcript.word_timings, prior=primary_result
                    ),
                    max_attempts=settings.max_attempts,
                    base_delay=settings.base_delay,
                    label="secondary_analysis",
                )
        except Exception as exc:
            logger.warning(
                "Secondary analysis failed for %s, continuing with primary only: %s",
                file_name,
                exc,
                extra={"file_name": file_name, "stage": "secondary_analysis"},
            )

    # Stage 4: Merge (local, not retried)
    with _StageTimer("merge", stage_timings):
        consensus = derive_consensus(primary_result, secondary_result)

    processing_time = time.monotonic() - wall_start
    logger.info(
        "Pipeline complete for %s in %.2fs (consensus=%s, source=%s)",
        file_name,
        processing_time,
        consensus.score,
        consensus.source,
        extra={"file_name": file_name, "duration_seconds": processing_time},
    )

    return AnalysisResult(
        file_name=file_name,
        record_id=record_id,
        gcs_uri=gcs_uri,
        transcript=transcript,
        primary=primary_result,
        secondary=secondary_result,
        consensus_score=consensus.score,
        consensus_source=consensus.source,
        processing_time_seconds=processing_time,
        stage_timings=stage_timings,
    )


async def _transcribe(
    transcriber: TranscriptionEngine, gcs_uri: str, language_code: str, file_name: str
) -> Transcript:
    """Transcribe and reject empty text so the retry executor sees it."""
    transcript = await transcriber.transcribe(gcs_uri, language_code)
    if not transcript.text or not transcript.text.strip():
        raise TranscriptionError(
            "Empty or invalid transcription",
            file_name=file_name,
            provider=transcriber.provider_name,
        )
    return transcript


def determine_error_stage(exc: BaseException, stage_timings: dict[str, float] | None = None) -> str:
    """Name the stage an error came from.

    Prefers the .stage attribute set by the stage timer, then the first
    failed sentinel in stage_timings.
    """
    stage = getattr(exc, "stage", None)
    if stage:
        return stage
    for name in STAGES:
        if stage_timings and f"_{name}_failed" in stage_timings:
            return name
    return "unknown"
