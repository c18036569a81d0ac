"""
Domain Exceptions
Error taxonomy shared by the session runtime, the evaluation pipeline and the API layer.
"""

from typing import Optional


class InterviewRoomError(Exception):
    """Base class for all interview room errors."""
    pass


# ----------------------------------------------------------------------------
# Capture errors (fatal to starting or finishing a session attempt)
# ----------------------------------------------------------------------------

class DeviceError(InterviewRoomError):
    """Camera or microphone unavailable (permission denied, no device)."""
    pass


class RecorderError(InterviewRoomError):
    """The media recorder could not be started or stopped."""
    pass


class EmptyRecordingError(RecorderError):
    """The recorder stopped without delivering any data."""
    pass


class RecordingTooSmallError(RecorderError):
    """The combined recording is below the minimum plausible size."""

    def __init__(self, size: int, minimum: int):
        self.size = size
        self.minimum = minimum
        super().__init__(
            f"Recording size too small ({size} bytes, minimum {minimum}); possible device or browser issue"
        )


# ----------------------------------------------------------------------------
# Evaluation errors (surfaced to the operator, never retried automatically)
# ----------------------------------------------------------------------------

class EvaluationError(InterviewRoomError):
    """Base class for failures of the post-session evaluation pipeline."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class TranscriptionError(EvaluationError):
    """Speech-to-text request failed."""

    def __init__(self, status_code: Optional[int] = None, message: Optional[str] = None):
        super().__init__(
            message or f"Transcription API request failed with status {status_code}",
            status_code=status_code,
        )


class EvaluationAPIError(EvaluationError):
    """Rubric scoring request failed."""

    def __init__(self, status_code: Optional[int] = None, message: Optional[str] = None):
        super().__init__(
            message or f"Evaluation API request failed with status {status_code}",
            status_code=status_code,
        )


# ----------------------------------------------------------------------------
# Storage errors
# ----------------------------------------------------------------------------

class StorageError(InterviewRoomError):
    """Durable store read or write failed."""
    pass


class UnsupportedQueryError(StorageError):
    """The store cannot serve the requested query shape (e.g. missing composite index)."""
    pass


# ----------------------------------------------------------------------------
# Session and room errors
# ----------------------------------------------------------------------------

class SessionStateError(InterviewRoomError):
    """A command is not valid in the session's current state."""
    pass


class InvalidRoomError(InterviewRoomError):
    """Room configuration cannot host a session."""
    pass


class RoomNotFoundError(InterviewRoomError):
    """No room matches the given id or share id."""
    pass


class AlreadyJoinedError(InterviewRoomError):
    """The candidate already has a participant record for this room."""
    pass


class ParticipantNotFoundError(InterviewRoomError):
    """No participant record (or no stored evaluation) for the given id."""
    pass


class RoomAccessError(InterviewRoomError):
    """The caller does not own the room."""
    pass
