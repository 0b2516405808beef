"""OpenAI semantic analysis engine (secondary pass).

Reviews the primary result when one is supplied and reports whether it
agrees. Uses chat completions in JSON mode.
"""

from __future__ import annotations

import logging
from typing import Any

from quality_worker.analysis.interface import (
    AnalysisEngine,
    SemanticAnalysis,
    parse_analysis_response,
)
from quality_worker.analysis.prompts import SYSTEM_PROMPT, build_review_prompt
from quality_worker.transcription.interface import WordTiming
from quality_worker.utils.errors import AnalysisError, ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-5-mini"


class OpenAIEngine(AnalysisEngine):
    """Scores transcripts with an OpenAI chat model.

    Args:
        api_key: OpenAI API key. Required unless client is given.
        model: Chat model name.
        client: Optional pre-configured openai.AsyncOpenAI.
    """

    @property
    def provider_name(self) -> str:
        return "openai"

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
            raise ConfigurationError("OPENAI_API_KEY is required")

        from openai import AsyncOpenAI

        self._client = AsyncOpenAI(api_key=api_key)

    async def analyze(
        self,
        transcript_text: str,
        word_timings: list[WordTiming] | None = None,
        prior: SemanticAnalysis | None = None,
    ) -> SemanticAnalysis:
        """Run the secondary scoring pass.

        Raises:
            AnalysisError: If the API call fails or the response is invalid.
        """
        try:
            response = await self._client.chat.completions.create(
                model=self._model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": build_review_prompt(transcript_text, prior)},
                ],
                response_format={"type": "json_object"},
            )
        except Exception as exc:
            raise AnalysisError(
                f"OpenAI request failed: {exc}",
                provider=self.provider_name,
                stage="secondary_analysis",
            ) from exc

        if not response.choices:
            raise AnalysisError(
                "Invalid openai response: no choices returned",
                provider=self.provider_name,
                stage="secondary_analysis",
            )
        content = response.choices[0].message.content or ""
        analysis = parse_analysis_response(
            content, self.provider_name, stage="secondary_analysis"
        )
        logger.info(
            "OpenAI analysis complete, score=%s agrees=%s",
            analysis.total_score,
            analysis.agrees_with_prior,
            extra={"stage": "secondary_analysis"},
        )
        return analysis
