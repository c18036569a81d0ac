"""
HTTP Transcription Service Module
Batch speech-to-text against an OpenAI-compatible ``/audio/transcriptions`` endpoint.
"""

import logging
from typing import Optional

import httpx

from interview_rooms.core.exceptions import TranscriptionError
from interview_rooms.services.base_transcription_service import TranscriptionService
from interview_rooms.utils.metrics import track_transcription

logger = logging.getLogger(__name__)


class HTTPTranscriptionService(TranscriptionService):
    """
    Uploads a whole recording as multipart form data (``file`` + ``model``)
    and reads ``{"text": ...}`` back.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com/v1",
        model: str = "whisper-1",
        timeout: float = 120.0,
        client: Optional[httpx.AsyncClient] = None
    ):
        """
        Args:
            api_key: Bearer token for the transcription API
            base_url: API root, ``/audio/transcriptions`` is appended
            model: Speech-to-text model identifier
            timeout: Request timeout in seconds (uploads can be large)
            client: Pre-built client (tests pass one with a MockTransport)
        """
        self.model = model
        self.url = f"{base_url.rstrip('/')}/audio/transcriptions"
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}

    async def transcribe(self, data: bytes, filename: str, mime_type: str) -> str:
        logger.info(f"Transcribing {len(data)} bytes ({mime_type}) with {self.model}")

        with track_transcription():
            try:
                response = await self.client.post(
                    self.url,
                    headers=self._headers,
                    files={"file": (filename, data, mime_type)},
                    data={"model": self.model},
                )
            except httpx.HTTPError as e:
                logger.error(f"Transcription request failed: {e}")
                raise TranscriptionError(message=f"Transcription request failed: {e}") from e

            if response.status_code < 200 or response.status_code >= 300:
                logger.error(
                    f"Transcription API returned {response.status_code}: {response.text[:200]}"
                )
                raise TranscriptionError(response.status_code)

            try:
                payload = response.json()
            except ValueError as e:
                raise TranscriptionError(
                    response.status_code, message=f"Transcription API returned invalid JSON: {e}"
                ) from e

            if not isinstance(payload, dict):
                raise TranscriptionError(
                    response.status_code,
                    message=f"Transcription API returned {type(payload).__name__}, expected an object"
                )
            text = payload.get("text", "")

        logger.info(f"Transcription complete ({len(text)} characters)")
        return text

    async def close(self):
        if self._owns_client:
            await self.client.aclose()
