"""
Application Configuration Module
Handles environment variable loading and application settings.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from interview_rooms.core import constants


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    gemini_api_key: str
    gemini_model: str = "gemini-2.5-flash"

    # Rubric evaluation parameters
    evaluation_max_output_tokens: int = 1000
    evaluation_temperature: float = 0.7

    # Speech-to-text (OpenAI-compatible /audio/transcriptions endpoint)
    transcription_api_key: str = ""
    transcription_base_url: str = "https://api.openai.com/v1"
    transcription_model: str = "whisper-1"
    transcription_timeout_seconds: float = 120.0
    transcript_max_chars: int = constants.TRANSCRIPT_MAX_CHARS

    # Recording
    recording_timeslice_ms: int = constants.RECORDING_TIMESLICE_MS
    recording_video_bits_per_second: int = constants.RECORDING_VIDEO_BITS_PER_SECOND
    recording_min_bytes: int = constants.RECORDING_MIN_BYTES
    recorder_response_timeout_seconds: float = 5.0  # Wait for flush/stop acknowledgements
    device_acquire_timeout_seconds: float = 60.0  # Candidate has to answer the permission prompt

    # Countdown resolution (seconds per tick)
    timer_tick_seconds: float = constants.TIMER_TICK_SECONDS

    # Storage: "memory" or "mongo"
    storage_backend: str = "memory"
    mongodb_uri: str = "mongodb://localhost:27017"
    mongodb_db_name: str = "interview_rooms"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )
