"""Gemini semantic analysis engine (primary pass)."""

from __future__ import annotations

import logging
from typing import Any

from quality_worker.analysis.interface import (
    AnalysisEngine,
    SemanticAnalysis,
    parse_analysis_response,
)
from quality_worker.analysis.prompts import SYSTEM_PROMPT, build_primary_prompt
from quality_worker.transcription.interface import WordTiming
from quality_worker.utils.errors import AnalysisError, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"


class GeminiEngine(AnalysisEngine):
    """Scores transcripts with Gemini through the google-genai SDK.

    Args:
        api_key: Gemini API key. Required unless client is given.
        model: Model name.
        client: Optional pre-configured genai.Client.
    """

    @property
    def provider_name(self) -> str:
        return "gemini"

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        client: Any = None,
    ) -> None:
        self._model = model
        if client is not None:
            self._client = client
            return
        if not api_key:
            raise ConfigurationError("GEMINI_API_KEY is required")

        from google import genai

        self._client = genai.Client(api_key=api_key)

    async def analyze(
        self,
        transcript_text: str,
        word_timings: list[WordTiming] | None = None,
        prior: SemanticAnalysis | None = None,
    ) -> SemanticAnalysis:
        """Run the primary scoring pass.

        Raises:
            AnalysisError: If the API call fails or the response is invalid.
        """
        from google.genai import types

        prompt = build_primary_prompt(transcript_text, word_timings)
        try:
            response = await self._client.aio.models.generate_content(
                model=self._model,
                contents=prompt,
                config=types.GenerateContentConfig(
                    system_instruction=SYSTEM_PROMPT,
                    temperature=0.3,
                    response_mime_type="application/json",
                ),
            )
        except Exception as exc:
            raise AnalysisError(
                f"Gemini request failed: {exc}",
                provider=self.provider_name,
                stage="primary_analysis",
            ) from exc

        analysis = parse_analysis_response(
            response.text or "", self.provider_name, stage="primary_analysis"
        )
        logger.info(
            "Gemini analysis complete, score=%s", analysis.total_score,
            extra={"stage": "primary_analysis"},
        )
        return analysis
