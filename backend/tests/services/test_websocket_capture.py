import asyncio

import pytest

from interview_rooms.core.exceptions import DeviceError, RecorderError
from interview_rooms.services.capture_manager import CaptureManager
from interview_rooms.services.websocket_capture import SessionChannel, WebSocketCaptureBackend


class Outbox:
    """Collects outbound messages and lets a test wait for a given type."""

    def __init__(self):
        self.messages = []
        self._changed = asyncio.Event()

    def send(self, message):
        self.messages.append(message)
        self._changed.set()

    def types(self):
        return [m["type"] for m in self.messages]

    async def wait_for(self, msg_type, timeout=1.0):
        async def _wait():
            while True:
                for message in self.messages:
                    if message["type"] == msg_type:
                        return message
                self._changed.clear()
                await self._changed.wait()
        return await asyncio.wait_for(_wait(), timeout)


async def open_stream(backend, outbox, supported=("video/webm",)):
    task = asyncio.create_task(backend.open_stream({"audio": True}))
    await outbox.wait_for("acquire_media")
    backend.handle_control({"type": "media_ready", "supported_mime_types": list(supported)})
    return await task


async def test_acquire_media_negotiates_supported_types():
    outbox = Outbox()
    backend = WebSocketCaptureBackend(outbox.send)

    stream = await open_stream(backend, outbox, supported=["video/webm;codecs=vp8,opus"])

    request = outbox.messages[0]
    assert request["constraints"] == {"audio": True}
    assert request["mime_types"][0] == "video/webm;codecs=vp9,opus"
    assert stream.tracks == ["video", "audio"]
    assert backend.is_type_supported("video/webm;codecs=vp8,opus")
    assert not backend.is_type_supported("video/webm;codecs=vp9,opus")


async def test_media_error_becomes_device_error():
    outbox = Outbox()
    backend = WebSocketCaptureBackend(outbox.send)

    task = asyncio.create_task(backend.open_stream({}))
    await outbox.wait_for("acquire_media")
    backend.handle_control({"type": "media_error", "error": "NotAllowedError: Permission denied"})

    with pytest.raises(DeviceError, match="Permission denied"):
        await task


async def test_acquire_times_out_as_device_error():
    backend = WebSocketCaptureBackend(Outbox().send, acquire_timeout=0.01)
    with pytest.raises(DeviceError, match="Timed out"):
        await backend.open_stream({})


async def test_full_recording_handshake_through_capture_manager():
    outbox = Outbox()
    backend = WebSocketCaptureBackend(outbox.send, response_timeout=1.0)
    capture = CaptureManager(backend, min_recording_bytes=1000)

    acquire = asyncio.create_task(capture.acquire())
    await outbox.wait_for("acquire_media")
    backend.handle_control({"type": "media_ready", "supported_mime_types": ["video/webm", "video/mp4"]})
    await acquire

    start = asyncio.create_task(capture.start_recording())
    start_msg = await outbox.wait_for("start_recording")
    assert start_msg["mime_type"] == "video/webm"
    assert start_msg["timeslice_ms"] == 1000
    assert start_msg["video_bits_per_second"] == 2_500_000
    backend.handle_control({"type": "recorder_started"})
    await start

    backend.feed(b"a" * 800)
    stop = asyncio.create_task(capture.stop())
    await outbox.wait_for("request_data")
    backend.feed(b"b" * 300)
    backend.handle_control({"type": "data_flushed"})
    await outbox.wait_for("stop_recording")
    backend.feed(b"c" * 100)
    backend.handle_control({"type": "recorder_stopped"})
    recording = await stop

    assert recording.data == b"a" * 800 + b"b" * 300 + b"c" * 100
    assert recording.chunk_count == 3

    # Late chunks after the stop acknowledgement are dropped
    backend.feed(b"d" * 100)
    assert len(capture.chunks) == 3

    await capture.release()
    assert outbox.types()[-1] == "release_media"


async def test_missing_flush_ack_is_tolerated_but_missing_stop_ack_fails():
    outbox = Outbox()
    backend = WebSocketCaptureBackend(outbox.send, response_timeout=0.01)
    stream = await open_stream(backend, outbox)
    recorder = backend.create_recorder(stream, "video/webm", 2_500_000, lambda chunk: None)
    recorder.response_timeout = 1.0
    start = asyncio.create_task(recorder.start(1000))
    await outbox.wait_for("start_recording")
    backend.handle_control({"type": "recorder_started"})
    await start
    recorder.response_timeout = 0.01

    await recorder.request_data()
    with pytest.raises(RecorderError, match="did not confirm stop"):
        await recorder.stop()


async def test_recorder_error_fails_pending_stop():
    outbox = Outbox()
    backend = WebSocketCaptureBackend(outbox.send, response_timeout=1.0)
    stream = await open_stream(backend, outbox)
    recorder = backend.create_recorder(stream, "video/webm", 2_500_000, lambda chunk: None)
    start = asyncio.create_task(recorder.start(1000))
    await outbox.wait_for("start_recording")
    backend.handle_control({"type": "recorder_started"})
    await start

    stop = asyncio.create_task(recorder.stop())
    await outbox.wait_for("stop_recording")
    backend.handle_control({"type": "recorder_error", "error": "InvalidStateError"})

    with pytest.raises(RecorderError, match="InvalidStateError"):
        await stop


async def test_disconnect_fails_outstanding_requests():
    outbox = Outbox()
    backend = WebSocketCaptureBackend(outbox.send)

    task = asyncio.create_task(backend.open_stream({}))
    await outbox.wait_for("acquire_media")
    backend.disconnect()

    with pytest.raises(DeviceError, match="disconnected"):
        await task
    with pytest.raises(DeviceError):
        await backend.open_stream({})


def test_non_capture_messages_are_not_consumed():
    backend = WebSocketCaptureBackend(Outbox().send)
    assert backend.handle_control({"type": "start"}) is False
    assert backend.handle_control({"type": "media_ready", "supported_mime_types": []}) is True


class FakeSocket:
    def __init__(self, fail_after=None):
        self.sent = []
        self.fail_after = fail_after

    async def send_json(self, message):
        if self.fail_after is not None and len(self.sent) >= self.fail_after:
            raise RuntimeError("socket closed")
        self.sent.append(message)


async def test_session_channel_sends_in_order():
    socket = FakeSocket()
    channel = SessionChannel(socket, "s1")
    await channel.start_sender()

    for i in range(3):
        channel.send({"type": "tick", "time_left": i})
    await channel.close()

    assert [m["time_left"] for m in socket.sent] == [0, 1, 2]
    channel.send({"type": "tick"})
    assert len(socket.sent) == 3


async def test_session_channel_stops_on_send_failure():
    socket = FakeSocket(fail_after=1)
    channel = SessionChannel(socket, "s1")
    await channel.start_sender()

    channel.send({"type": "question"})
    channel.send({"type": "tick"})
    await channel.close()

    assert socket.sent == [{"type": "question"}]
    assert channel.is_open is False
