"""Semantic analysis modules."""

from quality_worker.analysis.interface import AnalysisEngine, SemanticAnalysis
from quality_worker.analysis.registry import get_analysis_engine

__all__ = ["AnalysisEngine", "SemanticAnalysis", "get_analysis_engine"]
