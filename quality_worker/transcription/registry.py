"""Transcription engine registry with configuration-driven provider selection.

Maps provider name strings to engine classes. Use get_transcription_engine()
to instantiate an engine by name with engine-specific configuration.
"""

from quality_worker.transcription.google_speech import GoogleSpeechEngine
from quality_worker.transcription.interface import TranscriptionEngine
from quality_worker.utils.errors import ConfigurationError

TRANSCRIPTION_ENGINES: dict[str, type[TranscriptionEngine]] = {
    "google-speech": GoogleSpeechEngine,
}


def get_transcription_engine(provider: str, **kwargs: object) -> TranscriptionEngine:
    """Create a transcription engine instance by provider name.

    Args:
        provider: Provider name (e.g., "google-speech").
        **kwargs: Engine-specific configuration passed to the constructor.

    Returns:
        An initialized TranscriptionEngine instance.

    Raises:
        ConfigurationError: If the provider name is not registered.
    """
    engine_cls = TRANSCRIPTION_ENGINES.get(provider)
    if not engine_cls:
        available = ", ".join(sorted(TRANSCRIPTION_ENGINES.keys()))
        raise ConfigurationError(
            f"Unknown transcription provider: '{provider}'. Available: {available}"
        )
    return engine_cls(**kwargs)
