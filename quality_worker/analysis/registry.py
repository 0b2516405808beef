"""Analysis engine registry with configuration-driven provider selection."""

from quality_worker.analysis.gemini import GeminiEngine
from quality_worker.analysis.interface import AnalysisEngine
from quality_worker.analysis.openai_gpt import OpenAIEngine
from quality_worker.utils.errors import ConfigurationError

ANALYSIS_ENGINES: dict[str, type[AnalysisEngine]] = {
    "gemini": GeminiEngine,
    "openai": OpenAIEngine,
}


def get_analysis_engine(provider: str, **kwargs: object) -> AnalysisEngine:
    """Create an analysis engine instance by provider name.

    Args:
        provider: Provider name ("gemini" or "openai").
        **kwargs: Engine-specific configuration passed to the constructor.

    Returns:
        An initialized AnalysisEngine instance.

    Raises:
        ConfigurationError: If the provider name is not registered.
    """
    engine_cls = ANALYSIS_ENGINES.get(provider)
    if not engine_cls:
        available = ", ".join(sorted(ANALYSIS_ENGINES.keys()))
        raise ConfigurationError(
            f"Unknown analysis provider: '{provider}'. Available: {available}"
        )
    return engine_cls(**kwargs)
