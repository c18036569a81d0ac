"""
WebSocket Capture Backend Module
Uses the candidate's browser as a remote camera/microphone and MediaRecorder.

The server sends JSON control messages; the browser answers with JSON
acknowledgements and streams recorder chunks as binary frames. WebSocket
ordering guarantees every chunk of a recording arrives before the
``recorder_stopped`` acknowledgement that ends it.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple

from interview_rooms.core.constants import MIME_TYPE_PREFERENCES
from interview_rooms.core.exceptions import DeviceError, RecorderError
from interview_rooms.services.base_capture_service import (
    CaptureBackend,
    DataCallback,
    MediaRecorder,
    MediaStream,
)
from interview_rooms.utils.metrics import websocket_messages_total

logger = logging.getLogger(__name__)

SendFunc = Callable[[Dict[str, Any]], None]


class SessionChannel:
    """
    Outbound side of the interview WebSocket.

    send() only queues; one sender task writes to the socket, so timer ticks and
    runtime events never wait on the network.
    """

    def __init__(self, fastapi_websocket, session_id: str):
        self.fastapi_ws = fastapi_websocket
        self.session_id = session_id
        self._queue: asyncio.Queue = asyncio.Queue()
        self._sender_task: Optional[asyncio.Task] = None
        self.is_open = True

    async def start_sender(self):
        """Start the async message sender task."""
        self._sender_task = asyncio.create_task(self._send_queued_messages())

    async def _send_queued_messages(self):
        while True:
            message = await self._queue.get()
            if message is None:
                break
            try:
                await self.fastapi_ws.send_json(message)
                websocket_messages_total.labels(endpoint="interview", direction="sent").inc()
            except Exception as e:
                logger.warning(f"Session {self.session_id}: socket send failed ({e}); sender stopped")
                self.is_open = False
                break

    def send(self, message: Dict[str, Any]):
        if not self.is_open:
            logger.debug(f"Session {self.session_id}: dropping {message.get('type')} (socket closed)")
            return
        self._queue.put_nowait(message)

    async def close(self, timeout: float = 1.0):
        """Drain what is queued (bounded by ``timeout``) and stop the sender."""
        if self._sender_task is None:
            return
        self._queue.put_nowait(None)
        try:
            await asyncio.wait_for(self._sender_task, timeout)
        except asyncio.TimeoutError:
            self._sender_task.cancel()
        self.is_open = False


class WebSocketMediaStream(MediaStream):
    def __init__(self, send: SendFunc, tracks: Sequence[str]):
        self._send = send
        self._tracks = list(tracks)
        self._stopped = False

    @property
    def tracks(self) -> List[str]:
        return [] if self._stopped else list(self._tracks)

    async def stop(self):
        if self._stopped:
            return
        self._stopped = True
        self._send({"type": "release_media"})


class WebSocketRecorder(MediaRecorder):
    """Remote MediaRecorder driven by request/acknowledgement pairs."""

    def __init__(
        self,
        send: SendFunc,
        mime_type: str,
        video_bits_per_second: int,
        on_data: DataCallback,
        response_timeout: float
    ):
        self._send = send
        self.mime_type = mime_type
        self.video_bits_per_second = video_bits_per_second
        self._on_data = on_data
        self.response_timeout = response_timeout
        self._state = "inactive"
        self._pending: Dict[str, asyncio.Future] = {}
        self._failure: Optional[RecorderError] = None

    @property
    def state(self) -> str:
        return self._state

    async def _request(self, message: Dict[str, Any], ack_type: str) -> Dict[str, Any]:
        if self._failure is not None:
            raise self._failure
        if ack_type in self._pending:
            raise RecorderError(f"Already waiting for {ack_type}")

        future = asyncio.get_running_loop().create_future()
        self._pending[ack_type] = future
        self._send(message)
        try:
            return await asyncio.wait_for(future, self.response_timeout)
        finally:
            self._pending.pop(ack_type, None)

    def deliver(self, chunk: bytes):
        if self._state == "stopped":
            logger.warning(f"Dropping {len(chunk)} byte chunk received after recorder stop")
            return
        self._on_data(chunk)

    def acknowledge(self, message: Dict[str, Any]):
        msg_type = message.get("type")
        if msg_type == "recorder_error":
            self.fail(RecorderError(message.get("error") or "Recorder failed on the client"))
            return

        future = self._pending.get(msg_type)
        if future is not None and not future.done():
            future.set_result(message)
        else:
            logger.debug(f"Unexpected recorder acknowledgement: {msg_type}")

    def fail(self, error: RecorderError):
        """Fail every pending request and every later one."""
        logger.error(f"Recorder failure: {error}")
        self._failure = error
        for future in self._pending.values():
            if not future.done():
                future.set_exception(error)

    async def start(self, timeslice_ms: int):
        if self._state != "inactive":
            raise RecorderError(f"Recorder cannot start from state {self._state}")
        try:
            await self._request(
                {
                    "type": "start_recording",
                    "mime_type": self.mime_type,
                    "timeslice_ms": timeslice_ms,
                    "video_bits_per_second": self.video_bits_per_second,
                },
                "recorder_started",
            )
        except asyncio.TimeoutError:
            raise RecorderError("Recorder did not confirm start")
        self._state = "recording"

    async def request_data(self):
        if self._state != "recording":
            return
        try:
            await self._request({"type": "request_data"}, "data_flushed")
        except asyncio.TimeoutError:
            # Flushing is best effort; stop() still collects whatever arrives
            logger.warning(f"No flush acknowledgement within {self.response_timeout}s")

    async def stop(self):
        if self._state != "recording":
            return
        try:
            await self._request({"type": "stop_recording"}, "recorder_stopped")
        except asyncio.TimeoutError:
            raise RecorderError("Recorder did not confirm stop")
        self._state = "stopped"


class WebSocketCaptureBackend(CaptureBackend):
    """
    Capture backend fed by the interview WebSocket.

    The endpoint routes binary frames to feed() and recorder/device
    acknowledgements to handle_control().
    """

    def __init__(
        self,
        send: SendFunc,
        response_timeout: float = 5.0,
        acquire_timeout: float = 60.0,
        offered_mime_types: Sequence[str] = MIME_TYPE_PREFERENCES
    ):
        self._send = send
        self.response_timeout = response_timeout
        self.acquire_timeout = acquire_timeout
        self.offered_mime_types = tuple(offered_mime_types)
        self._supported: Tuple[str, ...] = ()
        self._media_reply: Optional[asyncio.Future] = None
        self._recorder: Optional[WebSocketRecorder] = None
        self._disconnected = False

    async def open_stream(self, constraints: Dict[str, Any]) -> MediaStream:
        if self._disconnected:
            raise DeviceError("Client disconnected")

        self._media_reply = asyncio.get_running_loop().create_future()
        self._send({
            "type": "acquire_media",
            "constraints": constraints,
            "mime_types": list(self.offered_mime_types),
        })
        try:
            reply = await asyncio.wait_for(self._media_reply, self.acquire_timeout)
        except asyncio.TimeoutError:
            raise DeviceError("Timed out waiting for camera and microphone access")
        finally:
            self._media_reply = None

        if reply.get("type") == "media_error":
            raise DeviceError(reply.get("error") or "Camera or microphone unavailable")

        self._supported = tuple(reply.get("supported_mime_types") or ())
        return WebSocketMediaStream(self._send, reply.get("tracks") or ["video", "audio"])

    def is_type_supported(self, mime_type: str) -> bool:
        return mime_type in self._supported

    def create_recorder(
        self,
        stream: MediaStream,
        mime_type: str,
        video_bits_per_second: int,
        on_data: DataCallback
    ) -> MediaRecorder:
        self._recorder = WebSocketRecorder(
            self._send, mime_type, video_bits_per_second, on_data, self.response_timeout
        )
        return self._recorder

    def feed(self, chunk: bytes):
        if self._recorder is None:
            logger.warning(f"Dropping {len(chunk)} byte chunk received before recording started")
            return
        self._recorder.deliver(chunk)

    def handle_control(self, message: Dict[str, Any]) -> bool:
        """
        Route a device/recorder acknowledgement.

        Returns:
            True if the message was consumed, False if it is not a capture message
        """
        msg_type = message.get("type")

        if msg_type in ("media_ready", "media_error"):
            if self._media_reply is not None and not self._media_reply.done():
                self._media_reply.set_result(message)
            else:
                logger.warning(f"Unsolicited {msg_type} message ignored")
            return True

        if msg_type in ("recorder_started", "data_flushed", "recorder_stopped", "recorder_error"):
            if self._recorder is None:
                logger.warning(f"{msg_type} received without a recorder")
            else:
                self._recorder.acknowledge(message)
            return True

        return False

    def disconnect(self):
        """The socket is gone: fail every outstanding and future device request."""
        self._disconnected = True
        if self._media_reply is not None and not self._media_reply.done():
            self._media_reply.set_exception(DeviceError("Client disconnected"))
        if self._recorder is not None and self._recorder.state != "stopped":
            self._recorder.fail(RecorderError("Client disconnected"))
