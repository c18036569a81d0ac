"""
Capture Manager Module
Owns the candidate's media stream and the single continuous recorder of a session.
"""

import logging
import os
import tempfile
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from interview_rooms.core.constants import (
    MIME_TYPE_PREFERENCES,
    RECORDING_MIN_BYTES,
    RECORDING_TIMESLICE_MS,
    RECORDING_VIDEO_BITS_PER_SECOND,
)
from interview_rooms.core.exceptions import (
    DeviceError,
    EmptyRecordingError,
    RecorderError,
    RecordingTooSmallError,
)
from interview_rooms.services.base_capture_service import (
    CaptureBackend,
    MediaRecorder,
    MediaStream,
    default_constraints,
)
from interview_rooms.utils.metrics import recording_size_bytes

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Recording:
    """The combined recording of a whole session."""
    data: bytes
    mime_type: str
    chunk_count: int

    @property
    def size(self) -> int:
        return len(self.data)

    @property
    def extension(self) -> str:
        return "mp4" if "mp4" in self.mime_type else "webm"

    @property
    def filename(self) -> str:
        return f"interview-recording.{self.extension}"


class CaptureManager:
    """
    Scoped owner of one media stream and one recorder.

    Usage:
        capture = CaptureManager(backend)
        try:
            await capture.acquire()
            await capture.start_recording()
            ...
            recording = await capture.stop()
        finally:
            await capture.release()
    """

    def __init__(
        self,
        backend: CaptureBackend,
        timeslice_ms: int = RECORDING_TIMESLICE_MS,
        video_bits_per_second: int = RECORDING_VIDEO_BITS_PER_SECOND,
        min_recording_bytes: int = RECORDING_MIN_BYTES,
        mime_preferences: Sequence[str] = MIME_TYPE_PREFERENCES
    ):
        self.backend = backend
        self.timeslice_ms = timeslice_ms
        self.video_bits_per_second = video_bits_per_second
        self.min_recording_bytes = min_recording_bytes
        self.mime_preferences = tuple(mime_preferences)

        self.stream: Optional[MediaStream] = None
        self.mime_type: Optional[str] = None
        self._recorder: Optional[MediaRecorder] = None
        self._chunks: List[bytes] = []
        self._playback_files: List[str] = []

    @property
    def chunks(self) -> Tuple[bytes, ...]:
        return tuple(self._chunks)

    @property
    def recorded_bytes(self) -> int:
        return sum(len(c) for c in self._chunks)

    @property
    def is_recording(self) -> bool:
        return self._recorder is not None and self._recorder.state == "recording"

    async def acquire(self, constraints: Optional[Dict[str, Any]] = None) -> MediaStream:
        """
        Request camera and microphone.

        Returns:
            The live stream (also kept on ``self.stream`` for preview binding)

        Raises:
            DeviceError: Permission denied, no device, or the backend failed
        """
        if self.stream is not None:
            return self.stream

        try:
            self.stream = await self.backend.open_stream(constraints or default_constraints())
        except DeviceError:
            raise
        except Exception as e:
            raise DeviceError(f"Could not access camera or microphone: {e}") from e

        logger.info(f"Media stream acquired (tracks={self.stream.tracks})")
        return self.stream

    def select_mime_type(self) -> str:
        """First entry of the preference list the backend can record."""
        for mime_type in self.mime_preferences:
            if self.backend.is_type_supported(mime_type):
                return mime_type
        raise RecorderError(f"No supported recording format among {list(self.mime_preferences)}")

    def _on_data(self, chunk: bytes) -> None:
        if chunk:
            self._chunks.append(chunk)

    async def start_recording(self) -> str:
        """
        Start the session's only recorder.

        Returns:
            The negotiated media type

        Raises:
            RecorderError: No stream, already started, no supported format,
                or the device refused to start
        """
        if self.stream is None:
            raise RecorderError("Cannot start recording without a media stream")
        if self._recorder is not None:
            raise RecorderError("Recording already started for this session")

        mime_type = self.select_mime_type()
        self._chunks = []
        recorder = self.backend.create_recorder(
            self.stream, mime_type, self.video_bits_per_second, self._on_data
        )
        try:
            await recorder.start(self.timeslice_ms)
        except RecorderError:
            raise
        except Exception as e:
            raise RecorderError(f"Failed to start recording: {e}") from e

        self._recorder = recorder
        self.mime_type = mime_type
        logger.info(f"Recording started (mime_type={mime_type}, timeslice={self.timeslice_ms}ms)")
        return mime_type

    async def stop(self) -> Recording:
        """
        Flush, halt and combine the recording.

        Raises:
            RecorderError: Never started, or the device failed to stop
            EmptyRecordingError: No chunk was ever delivered
            RecordingTooSmallError: Combined size below the minimum
        """
        recorder = self._recorder
        if recorder is None:
            raise RecorderError("Recording was never started")

        if recorder.state == "recording":
            await recorder.request_data()
            await recorder.stop()

        if not self._chunks:
            raise EmptyRecordingError("No recording data available")

        recording = Recording(
            data=b"".join(self._chunks),
            mime_type=self.mime_type,
            chunk_count=len(self._chunks),
        )
        recording_size_bytes.observe(recording.size)
        logger.info(f"Recording stopped: {recording.chunk_count} chunks, {recording.size} bytes")

        if recording.size < self.min_recording_bytes:
            raise RecordingTooSmallError(recording.size, self.min_recording_bytes)
        return recording

    async def abort(self) -> None:
        """Best-effort stop of a running recorder; errors are logged and dropped."""
        if not self.is_recording:
            return
        try:
            await self._recorder.stop()
        except Exception as e:
            logger.warning(f"Error stopping recorder during abort: {e}")

    def create_playback_file(self, recording: Recording) -> str:
        """Write the recording to a temporary file that release() deletes."""
        tmp = tempfile.NamedTemporaryFile(
            delete=False, prefix="interview-", suffix=f".{recording.extension}"
        )
        with tmp:
            tmp.write(recording.data)
        self._playback_files.append(tmp.name)
        return tmp.name

    async def release(self) -> None:
        """Stop all device tracks and delete playback files. Idempotent."""
        stream, self.stream = self.stream, None
        if stream is not None:
            try:
                await stream.stop()
                logger.info("Media stream released")
            except Exception as e:
                logger.warning(f"Error stopping media tracks: {e}")

        paths, self._playback_files = self._playback_files, []
        for path in paths:
            try:
                os.unlink(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not delete playback file {path}: {e}")
