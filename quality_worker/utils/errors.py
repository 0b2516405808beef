"""Custom exception hierarchy for the audio quality worker.

All exceptions inherit from WorkerError, enabling targeted handling at the
message boundary while preserving the file and stage that failed. The
message text matters: the error classifier reads it to decide between
retrying and dropping a message.
"""


class WorkerError(Exception):
    """Base exception for all worker errors."""

    def __init__(self, message: str, file_name: str | None = None) -> None:
        self.file_name = file_name
        super().__init__(message)

    def __str__(self) -> str:
        if self.file_name:
            return f"[file={self.file_name}] {super().__str__()}"
        return super().__str__()


class StageError(WorkerError):
    """Raised when an external analysis stage fails."""

    def __init__(
        self,
        message: str,
        file_name: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.stage = stage
        super().__init__(message, file_name)


class TranscriptionError(StageError):
    """Raised when speech-to-text fails or yields no usable text."""

    def __init__(
        self,
        message: str,
        file_name: str | None = None,
        provider: str | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(message, file_name, stage="transcription")


class AnalysisError(StageError):
    """Raised when a semantic analysis call fails or returns bad data."""

    def __init__(
        self,
        message: str,
        file_name: str | None = None,
        provider: str | None = None,
        stage: str | None = None,
    ) -> None:
        self.provider = provider
        super().__init__(message, file_name, stage=stage)


class TerminalError(WorkerError):
    """Failure that redelivery can never fix."""


class AssociationError(TerminalError):
    """Raised when no business record is associated with a file."""


class MessageValidationError(TerminalError):
    """Raised when a queue payload cannot be parsed into an event."""

    def __init__(
        self,
        message: str,
        file_name: str | None = None,
        message_id: str | None = None,
    ) -> None:
        self.message_id = message_id
        super().__init__(message, file_name)


class DuplicateResultError(WorkerError):
    """Raised when an analysis result already exists for a file."""


class TransportError(WorkerError):
    """Raised when a connectivity-bound collaborator call fails."""

    def __init__(
        self,
        message: str,
        file_name: str | None = None,
        operation: str | None = None,
    ) -> None:
        self.operation = operation
        super().__init__(message, file_name)


class StorageError(TransportError):
    """Raised when persistent store operations fail."""


class QueueError(TransportError):
    """Raised when the message queue cannot be reached."""


class ConfigurationError(WorkerError):
    """Raised when required settings are missing or malformed."""
