"""
Abstract Base Transcription Service Module
Defines the interface for speech-to-text services used by the evaluation pipeline.
"""

from abc import ABC, abstractmethod


class TranscriptionService(ABC):
    """
    Abstract base class for transcription services.
    Implementations: HTTPTranscriptionService
    """

    @abstractmethod
    async def transcribe(self, data: bytes, filename: str, mime_type: str) -> str:
        """
        Transcribe one complete recording.

        Args:
            data: Media bytes (webm/mp4 container)
            filename: File name sent with the upload (extension matters to most APIs)
            mime_type: Media type of ``data``

        Returns:
            Transcript text

        Raises:
            TranscriptionError: On any non-success response or transport failure
        """
        pass

    async def close(self):
        """Release HTTP connections."""
        pass
