"""
Services module for the interview rooms backend.
"""

from interview_rooms.services.capture_manager import CaptureManager, Recording
from interview_rooms.services.evaluation_pipeline import EvaluationPipeline
from interview_rooms.services.evaluation_service import EvaluationService, create_evaluation_service
from interview_rooms.services.room_service import RoomService
from interview_rooms.services.session_timer import SessionTimer
from interview_rooms.services.transcription_service import HTTPTranscriptionService
from interview_rooms.services.websocket_capture import SessionChannel, WebSocketCaptureBackend

__all__ = [
    # Capture
    "CaptureManager",
    "Recording",
    "SessionChannel",
    "WebSocketCaptureBackend",
    "SessionTimer",
    # Evaluation
    "EvaluationPipeline",
    "EvaluationService",
    "create_evaluation_service",
    "HTTPTranscriptionService",
    # Rooms
    "RoomService",
]
