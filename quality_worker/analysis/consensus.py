"""Consensus score derivation from one or two analysis passes."""

from __future__ import annotations

from dataclasses import dataclass

from quality_worker.analysis.interface import SCORE_MAX, SCORE_MIN, SemanticAnalysis

PRIMARY_ONLY = "primary_only"
VALIDATED = "validated"
RECONCILED = "reconciled"


@dataclass(frozen=True)
class Consensus:
    score: float
    source: str


def derive_consensus(
    primary: SemanticAnalysis, secondary: SemanticAnalysis | None
) -> Consensus:
    """Reduce the analysis passes to a single score.

    Without a secondary pass the primary score is used verbatim. When the
    secondary pass explicitly agrees, the primary score stands validated.
    Otherwise both scores are averaged and clamped to the score range.
    """
    if secondary is None:
        return Consensus(score=primary.total_score, source=PRIMARY_ONLY)
    if secondary.agrees_with_prior is True:
        return Consensus(score=primary.total_score, source=VALIDATED)

    mean = (primary.total_score + secondary.total_score) / 2
    return Consensus(
        score=round(min(SCORE_MAX, max(SCORE_MIN, mean)), 2), source=RECONCILED
    )
