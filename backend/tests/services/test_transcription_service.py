import httpx
import pytest

from interview_rooms.core.exceptions import TranscriptionError
from interview_rooms.services.transcription_service import HTTPTranscriptionService


def make_service(handler, **kwargs):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return HTTPTranscriptionService(api_key="sk-test", base_url="https://stt.example/v1/", client=client, **kwargs)


async def test_uploads_multipart_and_returns_text():
    seen = {}

    def handler(request: httpx.Request):
        seen["url"] = str(request.url)
        seen["auth"] = request.headers["authorization"]
        seen["content_type"] = request.headers["content-type"]
        seen["body"] = request.content
        return httpx.Response(200, json={"text": "Hello, I am Jane."})

    service = make_service(handler, model="whisper-1")
    text = await service.transcribe(b"\x1a\x45\xdf\xa3webm", "interview-recording.webm", "video/webm")

    assert text == "Hello, I am Jane."
    assert seen["url"] == "https://stt.example/v1/audio/transcriptions"
    assert seen["auth"] == "Bearer sk-test"
    assert seen["content_type"].startswith("multipart/form-data")
    assert b'name="file"; filename="interview-recording.webm"' in seen["body"]
    assert b"Content-Type: video/webm" in seen["body"]
    assert b'name="model"' in seen["body"] and b"whisper-1" in seen["body"]


async def test_non_2xx_raises_with_status():
    service = make_service(lambda request: httpx.Response(500, text="upstream exploded"))

    with pytest.raises(TranscriptionError) as exc_info:
        await service.transcribe(b"data", "f.webm", "video/webm")

    assert exc_info.value.status_code == 500
    assert "500" in str(exc_info.value)


async def test_transport_failure_raises_transcription_error():
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    service = make_service(handler)
    with pytest.raises(TranscriptionError, match="connection refused"):
        await service.transcribe(b"data", "f.webm", "video/webm")


async def test_invalid_json_raises():
    service = make_service(lambda request: httpx.Response(200, text="not json"))
    with pytest.raises(TranscriptionError, match="invalid JSON"):
        await service.transcribe(b"data", "f.webm", "video/webm")


@pytest.mark.parametrize("body", [["Hello"], "Hello", 42])
async def test_json_that_is_not_an_object_raises(body):
    service = make_service(lambda request: httpx.Response(200, json=body))

    with pytest.raises(TranscriptionError, match="expected an object") as exc_info:
        await service.transcribe(b"data", "f.webm", "video/webm")

    assert exc_info.value.status_code == 200


async def test_injected_client_is_left_open():
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(200, json={"text": ""})))
    service = HTTPTranscriptionService(api_key="k", client=client)

    await service.close()

    assert not client.is_closed
    await client.aclose()
