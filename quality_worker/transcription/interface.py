"""Abstract transcription engine interface.

Defines the TranscriptionEngine ABC and transcript data models. Concrete
implementations (e.g., Google Cloud Speech) subclass TranscriptionEngine.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass
class WordTiming:
    """A single recognised word with offsets in seconds."""

    word: str
    start_time: float
    end_time: float


@dataclass
class Transcript:
    """Full transcription of one audio file."""

    text: str
    word_timings: list[WordTiming] = field(default_factory=list)
    confidence: float = 0.0


class TranscriptionEngine(ABC):
    """Abstract base class for speech-to-text engines.

    Subclasses must implement provider_name and transcribe().
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider identifier (e.g., 'google-speech')."""

    @abstractmethod
    async def transcribe(self, audio_ref: str, language_hint: str) -> Transcript:
        """Transcribe a remote audio object.

        Args:
            audio_ref: Storage URI of the audio (e.g., gs://bucket/file.mp3).
            language_hint: BCP-47 language code such as 'pt-BR'.

        Returns:
            Transcript with text, word timings and overall confidence.
        """
