"""Prompt templates for the semantic analysis engines."""

from __future__ import annotations

import json

from quality_worker.analysis.interface import SemanticAnalysis
from quality_worker.transcription.interface import WordTiming

SYSTEM_PROMPT = (
    "You are a customer service quality analyst. Review call transcripts "
    "objectively and follow the scoring criteria exactly."
)

CRITERIA = """\
Evaluate each criterion as true or false:
- proper_greeting: greeted the customer properly (+10)
- active_listening: listened actively and asked relevant questions (+15)
- clear_and_objective: communicated clearly and objectively (+10)
- issue_resolved: resolved the issue following procedure (+25)
- subject_mastery: showed knowledge of the subject (+15)
- empathy: showed empathy and courtesy (+15)
- survey_offered: directed the customer to the satisfaction survey (+10)
- incorrect_procedure: passed on incorrect information (-60)
- abrupt_ending: ended the contact abruptly or dropped the call (-100)

The total score ranges from -160 to 100.

Flag any mention of formal complaints or legal action (consumer protection
agencies, the central bank, lawsuits, lawyers, reports). Return an empty
list when there are none; never invent phrases."""

RESPONSE_SHAPE = """\
Return only a JSON object:
{
  "narrative": "detailed assessment",
  "score_breakdown": {"<criterion>": boolean, ...},
  "total_score": number,
  "flagged_phrases": ["..."],
  "recommendations": ["..."],
  "confidence": number,
  "validation": %s
}"""


def _format_timings(word_timings: list[WordTiming] | None, limit: int = 400) -> str:
    if not word_timings:
        return ""
    lines = [
        f"{t.start_time:.1f}-{t.end_time:.1f} {t.word}" for t in word_timings[:limit]
    ]
    return "\nWORD TIMINGS (seconds):\n" + "\n".join(lines) + "\n"


def build_primary_prompt(
    transcript_text: str, word_timings: list[WordTiming] | None = None
) -> str:
    """Build the prompt for the first scoring pass."""
    return (
        "Analyse the following service call transcript.\n\n"
        f"{CRITERIA}\n\nTRANSCRIPT:\n{transcript_text}\n"
        f"{_format_timings(word_timings)}\n"
        + RESPONSE_SHAPE % "null"
    )


def build_review_prompt(
    transcript_text: str, prior: SemanticAnalysis | None = None
) -> str:
    """Build the prompt for a second pass that may review a prior result."""
    prompt = (
        "Provide a complementary analysis of the following service call "
        f"transcript using the same criteria.\n\n{CRITERIA}\n\n"
        f"TRANSCRIPT:\n{transcript_text}\n"
    )
    if prior is None:
        return prompt + "\n" + RESPONSE_SHAPE % "null"

    prompt += (
        f"\nPRIOR ANALYSIS ({prior.provider}):\n"
        f"Score: {prior.total_score:g}\n"
        f"Criteria: {json.dumps(prior.score_breakdown, ensure_ascii=False)}\n"
        f"Flagged phrases: {', '.join(prior.flagged_phrases) or 'none'}\n"
        f"Assessment: {prior.narrative or 'not available'}\n\n"
        "Validate or complement this analysis. Explain any significant "
        "differences.\n\n"
    )
    return prompt + RESPONSE_SHAPE % '{"agrees": boolean, "differences": ["..."]}'
