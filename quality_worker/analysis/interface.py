"""Abstract semantic analysis interface.

Defines the AnalysisEngine ABC, the SemanticAnalysis data model, and the
shared response parser. Concrete engines (Gemini, OpenAI) subclass
AnalysisEngine and only differ in how they obtain the raw response text.
"""

from __future__ import annotations

import json
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from quality_worker.transcription.interface import WordTiming
from quality_worker.utils.errors import AnalysisError

SCORE_MIN = -160.0
SCORE_MAX = 100.0

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")


@dataclass
class SemanticAnalysis:
    """Structured output of one semantic scoring pass."""

    provider: str
    total_score: float
    score_breakdown: dict[str, Any] = field(default_factory=dict)
    flagged_phrases: list[str] = field(default_factory=list)
    narrative: str = ""
    confidence: float = 0.0
    recommendations: list[str] = field(default_factory=list)
    # Only set by passes that reviewed a prior analysis
    agrees_with_prior: bool | None = None
    differences: list[str] = field(default_factory=list)


class AnalysisEngine(ABC):
    """Abstract base class for semantic analysis engines."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier (e.g., 'gemini')."""

    @abstractmethod
    async def analyze(
        self,
        transcript_text: str,
        word_timings: list[WordTiming] | None = None,
        prior: SemanticAnalysis | None = None,
    ) -> SemanticAnalysis:
        """Score a transcript.

        Args:
            transcript_text: Full transcript text.
            word_timings: Optional per-word offsets.
            prior: Result of an earlier pass to validate or complement.

        Returns:
            SemanticAnalysis with score and qualitative fields.
        """


def parse_analysis_response(
    text: str, provider: str, stage: str | None = None
) -> SemanticAnalysis:
    """Extract and validate the JSON object from a model response.

    Args:
        text: Raw response text, possibly with prose around the JSON.
        provider: Provider name recorded on the result and on errors.
        stage: Pipeline stage name recorded on errors.

    Returns:
        Parsed SemanticAnalysis.

    Raises:
        AnalysisError: If no JSON object is present, it does not parse,
            or the total score is missing or out of range.
    """
    match = _JSON_OBJECT.search(text or "")
    if not match:
        raise AnalysisError(
            f"Invalid {provider} response: no JSON object found",
            provider=provider,
            stage=stage,
        )
    try:
        payload = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise AnalysisError(
            f"Invalid {provider} response: {exc}", provider=provider, stage=stage
        ) from exc

    raw_score = payload.get("total_score")
    try:
        total_score = float(raw_score)
    except (TypeError, ValueError) as exc:
        raise AnalysisError(
            f"Invalid {provider} response: total_score={raw_score!r}",
            provider=provider,
            stage=stage,
        ) from exc
    if not SCORE_MIN <= total_score <= SCORE_MAX:
        raise AnalysisError(
            f"Invalid {provider} response: total_score {total_score} outside "
            f"[{SCORE_MIN:g}, {SCORE_MAX:g}]",
            provider=provider,
            stage=stage,
        )

    raw_confidence = payload.get("confidence") or 0.0
    try:
        confidence = float(raw_confidence)
    except (TypeError, ValueError) as exc:
        raise AnalysisError(
            f"Invalid {provider} response: confidence={raw_confidence!r}",
            provider=provider,
            stage=stage,
        ) from exc

    validation = payload.get("validation") or {}
    agrees = validation.get("agrees") if isinstance(validation, dict) else None

    return SemanticAnalysis(
        provider=provider,
        total_score=total_score,
        score_breakdown=payload.get("score_breakdown") or {},
        flagged_phrases=list(payload.get("flagged_phrases") or []),
        narrative=payload.get("narrative") or "",
        confidence=confidence,
        recommendations=list(payload.get("recommendations") or []),
        agrees_with_prior=agrees if isinstance(agrees, bool) else None,
        differences=list(validation.get("differences") or [])
        if isinstance(validation, dict)
        else [],
    )
