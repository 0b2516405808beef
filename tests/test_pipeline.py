"""Tests for quality_worker.pipeline module."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from quality_worker.analysis.interface import SemanticAnalysis
from quality_worker.pipeline import (
    AnalysisResult,
    PipelineSettings,
    determine_error_stage,
    run_pipeline,
)
from quality_worker.transcription.interface import Transcript, WordTiming
from quality_worker.utils.errors import AnalysisError, TranscriptionError

FAST = PipelineSettings(max_attempts=3, base_delay=0.0, language_code="pt-BR")


def _make_transcript(text: str = "Bom dia, em que posso ajudar?") -> Transcript:
    return Transcript(
        text=text,
        word_timings=[
            WordTiming(word="Bom", start_time=0.0, end_time=0.3),
            WordTiming(word="dia", start_time=0.3, end_time=0.6),
        ],
        confidence=0.93,
    )


def _engine(provider: str, **analyze_kwargs) -> MagicMock:
    engine = MagicMock()
    engine.provider_name = provider
    engine.analyze = AsyncMock(**analyze_kwargs)
    return engine


@pytest.fixture
def transcriber():
    engine = MagicMock()
    engine.provider_name = "google-speech"
    engine.transcribe = AsyncMock(return_value=_make_transcript())
    return engine


@pytest.fixture
def primary():
    return _engine("gemini", return_value=SemanticAnalysis(provider="gemini", total_score=80))


@pytest.fixture
def secondary():
    return _engine(
        "openai",
        return_value=SemanticAnalysis(provider="openai", total_score=60, agrees_with_prior=False),
    )


async def _run(transcriber, primary, secondary=None) -> AnalysisResult:
    return await run_pipeline(
        file_name="call-1.mp3",
        record_id="rec-1",
        gcs_uri="gs://bucket/call-1.mp3",
        transcriber=transcriber,
        primary=primary,
        secondary=secondary,
        settings=FAST,
    )


class TestRunPipeline:
    """Tests for the stage sequence."""

    async def test_full_pipeline_reconciles_scores(self, transcriber, primary, secondary) -> None:
        result = await _run(transcriber, primary, secondary)

        assert result.file_name == "call-1.mp3"
        assert result.record_id == "rec-1"
        assert result.consensus_score == 70
        assert result.consensus_source == "reconciled"
        assert result.secondary is not None
        transcriber.transcribe.assert_awaited_once_with("gs://bucket/call-1.mp3", "pt-BR")

    async def test_primary_receives_transcript_and_timings(self, transcriber, primary) -> None:
        await _run(transcriber, primary)

        args = primary.analyze.await_args.args
        assert args[0] == "Bom dia, em que posso ajudar?"
        assert [t.word for t in args[1]] == ["Bom", "dia"]

    async def test_secondary_receives_primary_as_prior(self, transcriber, primary, secondary) -> None:
        await _run(transcriber, primary, secondary)

        prior = secondary.analyze.await_args.kwargs["prior"]
        assert prior.provider == "gemini"
        assert prior.total_score == 80

    async def test_no_secondary_engine_uses_primary_score(self, transcriber, primary) -> None:
        result = await _run(transcriber, primary)

        assert result.secondary is None
        assert result.consensus_score == 80
        assert result.consensus_source == "primary_only"
        assert "secondary_analysis" not in result.stage_timings

    async def test_failing_secondary_is_tolerated(self, transcriber, primary) -> None:
        failing = _engine("openai", side_effect=AnalysisError("OpenAI request failed: timeout"))

        result = await _run(transcriber, primary, failing)

        assert failing.analyze.await_count == 3
        assert result.secondary is None
        assert result.consensus_score == 80
        assert result.consensus_source == "primary_only"
        assert "_secondary_analysis_failed" in result.stage_timings

    async def test_records_stage_timings(self, transcriber, primary, secondary) -> None:
        result = await _run(transcriber, primary, secondary)

        for stage in ("transcription", "primary_analysis", "secondary_analysis", "merge"):
            assert stage in result.stage_timings
        assert result.processing_time_seconds >= 0

    async def test_transient_transcription_failure_retried(self, transcriber, primary) -> None:
        transcriber.transcribe.side_effect = [
            TranscriptionError("Speech-to-Text request failed: timeout"),
            _make_transcript(),
        ]

        result = await _run(transcriber, primary)

        assert transcriber.transcribe.await_count == 2
        assert result.transcript.text.startswith("Bom dia")

    async def test_empty_transcription_fails_after_retries(self, transcriber, primary) -> None:
        transcriber.transcribe.return_value = _make_transcript(text="   ")

        with pytest.raises(TranscriptionError, match="Empty or invalid transcription") as exc_info:
            await _run(transcriber, primary)

        assert transcriber.transcribe.await_count == 3
        assert exc_info.value.stage == "transcription"
        assert exc_info.value._retry_count == 2  # type: ignore[attr-defined]
        primary.analyze.assert_not_awaited()

    async def test_primary_failure_propagates_with_stage(self, transcriber) -> None:
        failing = _engine("gemini", side_effect=RuntimeError("connection reset"))

        with pytest.raises(RuntimeError, match="connection reset") as exc_info:
            await _run(transcriber, failing)

        assert exc_info.value.stage == "primary_analysis"  # type: ignore[attr-defined]
        assert failing.analyze.await_count == 3


class TestAnalysisResult:
    """Tests for AnalysisResult serialization."""

    def test_to_document(self) -> None:
        result = AnalysisResult(
            file_name="call-1.mp3",
            record_id="rec-1",
            gcs_uri="gs://bucket/call-1.mp3",
            transcript=_make_transcript(),
            primary=SemanticAnalysis(provider="gemini", total_score=80),
            secondary=None,
            consensus_score=80,
            consensus_source="primary_only",
            processing_time_seconds=12.5,
            stage_timings={"transcription": 10.0},
        )

        doc = result.to_document()

        assert doc["nomeArquivo"] == "call-1.mp3"
        assert doc["recordId"] == "rec-1"
        assert doc["transcription"] == "Bom dia, em que posso ajudar?"
        assert doc["timestamps"][0] == {"word": "Bom", "startTime": 0.0, "endTime": 0.3}
        assert doc["transcriptionConfidence"] == 0.93
        assert doc["primaryAnalysis"]["total_score"] == 80
        assert doc["secondaryAnalysis"] is None
        assert doc["consensusScore"] == 80
        assert doc["processingTime"] == 12.5
        assert doc["stageTimings"] == {"transcription": 10.0}


class TestDetermineErrorStage:
    """Tests for determine_error_stage()."""

    def test_prefers_stage_attribute(self) -> None:
        assert determine_error_stage(AnalysisError("x", stage="primary_analysis")) == "primary_analysis"

    def test_falls_back_to_failed_sentinel(self) -> None:
        timings = {"transcription": 1.0, "_primary_analysis_failed": 0.5}
        assert determine_error_stage(RuntimeError("x"), timings) == "primary_analysis"

    def test_unknown_without_hints(self) -> None:
        assert determine_error_stage(RuntimeError("x")) == "unknown"
