"""Google Cloud Speech-to-Text transcription engine.

Runs long-running recognition against audio stored in GCS with word time
offsets enabled. The SDK client is synchronous, so the blocking wait runs in
a worker thread to keep the event loop free for other messages.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from quality_worker.transcription.interface import (
    Transcript,
    TranscriptionEngine,
    WordTiming,
)
from quality_worker.utils.errors import TranscriptionError

logger = logging.getLogger(__name__)

RECOGNITION_MODEL = "latest_long"
OPERATION_TIMEOUT_SECONDS = 1800

# extension -> (encoding name, sample rate)
_ENCODINGS: dict[str, tuple[str, int]] = {
    "mp3": ("MP3", 44100),
    "wav": ("LINEAR16", 16000),
}
_FALLBACK_ENCODING = ("WEBM_OPUS", 16000)


def detect_audio_encoding(file_name: str) -> tuple[str, int]:
    """Infer the recognition encoding and sample rate from a file name.

    Args:
        file_name: Object name or URI ending in an extension.

    Returns:
        Tuple of (encoding name, sample rate in Hz). Unknown extensions
        fall back to WEBM_OPUS at 16 kHz.
    """
    extension = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    encoding = _ENCODINGS.get(extension)
    if encoding is None:
        logger.warning(
            "Unrecognised audio extension '%s', using %s",
            extension,
            _FALLBACK_ENCODING[0],
        )
        return _FALLBACK_ENCODING
    return encoding


def _offset_seconds(offset: Any) -> float:
    """Convert a duration-like offset to float seconds."""
    if offset is None:
        return 0.0
    if hasattr(offset, "total_seconds"):
        return float(offset.total_seconds())
    return float(getattr(offset, "seconds", 0)) + getattr(offset, "nanos", 0) / 1e9


class GoogleSpeechEngine(TranscriptionEngine):
    """Speech-to-Text v1 engine using long-running recognition.

    Args:
        client: Optional pre-configured SpeechClient. If None, one is
            created via google.cloud.speech.
        project_id: GCP project used when creating the default client.
    """

    @property
    def provider_name(self) -> str:
        return "google-speech"

    def __init__(self, client: Any = None, project_id: str | None = None) -> None:
        if client is not None:
            self._client = client
        else:
            from google.cloud import speech

            client_options = {"quota_project_id": project_id} if project_id else None
            self._client = speech.SpeechClient(client_options=client_options)

    async def transcribe(self, audio_ref: str, language_hint: str) -> Transcript:
        """Transcribe a GCS object via long-running recognition.

        Raises:
            TranscriptionError: If the API call or operation fails.
        """
        encoding, sample_rate = detect_audio_encoding(audio_ref)
        logger.info(
            "Transcribing %s (encoding=%s, sample_rate=%d)",
            audio_ref,
            encoding,
            sample_rate,
        )
        try:
            response = await asyncio.to_thread(
                self._recognize, audio_ref, language_hint, encoding, sample_rate
            )
        except TranscriptionError:
            raise
        except Exception as exc:
            raise TranscriptionError(
                f"Speech-to-Text request failed: {exc}",
                provider=self.provider_name,
            ) from exc

        return self._convert_response(response)

    def _recognize(
        self, audio_ref: str, language_hint: str, encoding: str, sample_rate: int
    ) -> Any:
        from google.cloud import speech

        config = speech.RecognitionConfig(
            encoding=getattr(speech.RecognitionConfig.AudioEncoding, encoding),
            sample_rate_hertz=sample_rate,
            language_code=language_hint,
            enable_automatic_punctuation=True,
            enable_word_time_offsets=True,
            model=RECOGNITION_MODEL,
            use_enhanced=True,
        )
        audio = speech.RecognitionAudio(uri=audio_ref)
        operation = self._client.long_running_recognize(config=config, audio=audio)
        return operation.result(timeout=OPERATION_TIMEOUT_SECONDS)

    @staticmethod
    def _convert_response(response: Any) -> Transcript:
        """Flatten recognition results into a single Transcript."""
        parts: list[str] = []
        timings: list[WordTiming] = []
        confidence = 0.0

        for index, result in enumerate(getattr(response, "results", None) or []):
            if not result.alternatives:
                continue
            alternative = result.alternatives[0]
            parts.append(alternative.transcript)
            if index == 0:
                confidence = float(alternative.confidence or 0.0)
            for word in alternative.words:
                timings.append(
                    WordTiming(
                        word=word.word,
                        start_time=_offset_seconds(word.start_time),
                        end_time=_offset_seconds(word.end_time),
                    )
                )

        return Transcript(
            text=" ".join(part.strip() for part in parts).strip(),
            word_timings=timings,
            confidence=confidence,
        )
