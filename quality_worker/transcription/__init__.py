"""Speech-to-text modules."""

from quality_worker.transcription.interface import (
    Transcript,
    TranscriptionEngine,
    WordTiming,
)
from quality_worker.transcription.registry import get_transcription_engine

__all__ = ["Transcript", "TranscriptionEngine", "WordTiming", "get_transcription_engine"]
