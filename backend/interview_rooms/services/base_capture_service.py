"""
Abstract Base Capture Service Module
Defines the interface for media capture backends (browser over WebSocket, in-process fakes, etc.)
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, List

from interview_rooms.core.constants import IDEAL_FRAME_RATE, IDEAL_VIDEO_HEIGHT, IDEAL_VIDEO_WIDTH

DataCallback = Callable[[bytes], None]


def default_constraints() -> Dict[str, Any]:
    """Camera (ideal 1280x720 @30fps) plus microphone."""
    return {
        "video": {
            "width": {"ideal": IDEAL_VIDEO_WIDTH},
            "height": {"ideal": IDEAL_VIDEO_HEIGHT},
            "frameRate": {"ideal": IDEAL_FRAME_RATE},
        },
        "audio": True,
    }


class MediaStream(ABC):
    """A live camera + microphone stream owned by one capture manager."""

    @property
    @abstractmethod
    def tracks(self) -> List[str]:
        """Kinds of the live tracks (e.g. ["video", "audio"])."""
        pass

    @abstractmethod
    async def stop(self):
        """Stop every track. Must be safe to call more than once."""
        pass


class MediaRecorder(ABC):
    """
    Abstract base class for one continuous recorder.
    Implementations: WebSocketRecorder
    """

    @property
    @abstractmethod
    def state(self) -> str:
        """'inactive', 'recording' or 'stopped'."""
        pass

    @abstractmethod
    async def start(self, timeslice_ms: int):
        """
        Begin recording.

        Args:
            timeslice_ms: Interval at which buffered data is delivered as a chunk

        Raises:
            RecorderError: If the device refuses to start
        """
        pass

    @abstractmethod
    async def request_data(self):
        """Ask the device to deliver whatever it has buffered right now."""
        pass

    @abstractmethod
    async def stop(self):
        """
        Halt recording. Every chunk of this recording has been delivered
        to the data callback by the time this returns.

        Raises:
            RecorderError: If the device does not confirm the stop
        """
        pass


class CaptureBackend(ABC):
    """
    Abstract base class for capture device backends.
    Implementations: WebSocketCaptureBackend
    """

    @abstractmethod
    async def open_stream(self, constraints: Dict[str, Any]) -> MediaStream:
        """
        Acquire camera and microphone.

        Raises:
            DeviceError: Permission denied or no device present
        """
        pass

    @abstractmethod
    def is_type_supported(self, mime_type: str) -> bool:
        pass

    @abstractmethod
    def create_recorder(
        self,
        stream: MediaStream,
        mime_type: str,
        video_bits_per_second: int,
        on_data: DataCallback
    ) -> MediaRecorder:
        """
        Create (but do not start) a recorder for ``stream``.

        Args:
            stream: Stream returned by open_stream()
            mime_type: Negotiated container/codec
            video_bits_per_second: Target video bitrate
            on_data: Called with every non-empty chunk, in order

        Returns:
            MediaRecorder instance
        """
        pass
