"""
FastAPI Main Application
Backend server for timed video interview rooms.

The session runtime runs here; the candidate's browser is a remote camera,
microphone and recorder driven over the interview WebSocket.
"""

import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager
from typing import Dict, List, Optional, Set

from fastapi import Depends, FastAPI, Header, HTTPException, WebSocket, WebSocketDisconnect, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, Response
from pydantic import ValidationError

from interview_rooms.config import Settings
from interview_rooms.core.exceptions import (
    AlreadyJoinedError,
    InterviewRoomError,
    InvalidRoomError,
    ParticipantNotFoundError,
    RoomAccessError,
    RoomNotFoundError,
    SessionStateError,
)
from interview_rooms.core.models import (
    CandidateEvaluationResponse,
    CandidateIdentity,
    CandidateSummary,
    ErrorResponse,
    JoinRoomRequest,
    JoinRoomResponse,
    Room,
    RoomCreate,
    RoomUpdate,
    SessionStatusResponse,
    new_id,
)
from interview_rooms.core.session import InterviewSessionRuntime
from interview_rooms.db.document_store import DocumentStore, InMemoryDocumentStore
from interview_rooms.db.mongo import MongoDocumentStore
from interview_rooms.db.repositories import ParticipantRepository
from interview_rooms.services.capture_manager import CaptureManager
from interview_rooms.services.evaluation_pipeline import EvaluationPipeline
from interview_rooms.services.evaluation_service import create_evaluation_service
from interview_rooms.services.room_service import RoomService
from interview_rooms.services.session_timer import SessionTimer
from interview_rooms.services.transcription_service import HTTPTranscriptionService
from interview_rooms.services.websocket_capture import SessionChannel, WebSocketCaptureBackend
from interview_rooms.utils.logging_config import setup_logging
from interview_rooms.utils.metrics import websocket_connections_total, websocket_messages_total

# Configure logging (clean format by default, JSON for production via env var)
setup_logging(
    level=os.getenv("LOG_LEVEL", "INFO"),
    json_format=os.getenv("LOG_FORMAT", "").lower() == "json",  # Only JSON if explicitly set
    timer_logging_enabled=os.getenv("TIMER_LOGGING_ENABLED", "false").lower() == "true"
)
logger = logging.getLogger(__name__)


# Global state
settings: Optional[Settings] = None
store: Optional[DocumentStore] = None
room_service: Optional[RoomService] = None
evaluation_pipeline: Optional[EvaluationPipeline] = None
sessions: Dict[str, InterviewSessionRuntime] = {}
pending_evaluations: Set[asyncio.Task] = set()


def create_document_store(settings: Settings) -> DocumentStore:
    backend = settings.storage_backend.lower()
    if backend == "memory":
        return InMemoryDocumentStore()
    if backend == "mongo":
        return MongoDocumentStore(uri=settings.mongodb_uri, db_name=settings.mongodb_db_name)
    raise ValueError(f"Unknown STORAGE_BACKEND '{settings.storage_backend}' (valid: memory, mongo)")


def build_evaluation_pipeline(settings: Settings, store: DocumentStore) -> EvaluationPipeline:
    """Wire transcription, rubric scoring and participant persistence."""
    transcriber = HTTPTranscriptionService(
        api_key=settings.transcription_api_key,
        base_url=settings.transcription_base_url,
        model=settings.transcription_model,
        timeout=settings.transcription_timeout_seconds
    )
    evaluator = create_evaluation_service(
        gemini_api_key=settings.gemini_api_key,
        model_name=settings.gemini_model,
        max_output_tokens=settings.evaluation_max_output_tokens,
        temperature=settings.evaluation_temperature
    )
    return EvaluationPipeline(
        transcriber,
        evaluator,
        ParticipantRepository(store),
        transcript_max_chars=settings.transcript_max_chars
    )


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    global settings, store, room_service, evaluation_pipeline
    settings = Settings()
    logger.info("Settings loaded successfully")

    store = create_document_store(settings)
    logger.info(f"✓ Document store initialized (backend={settings.storage_backend})")

    room_service = RoomService(store)
    evaluation_pipeline = build_evaluation_pipeline(settings, store)
    logger.info("✓ Evaluation pipeline initialized")
    logger.info(f"  - Transcription model: {settings.transcription_model}")
    logger.info(f"  - Evaluation model: {settings.gemini_model}")

    yield

    # Shutdown
    logger.info("Shutting down application...")
    try:
        for runtime in list(sessions.values()):
            await runtime.close()
        sessions.clear()

        if pending_evaluations:
            logger.info(f"Waiting for {len(pending_evaluations)} evaluation(s) to finish")
            await asyncio.wait(list(pending_evaluations), timeout=60)

        if evaluation_pipeline is not None:
            await evaluation_pipeline.transcriber.close()
        if store is not None:
            await store.close()

        evaluation_pipeline = None
        room_service = None
        store = None
        settings = None
        logger.info("Application shutdown complete")
    except Exception as e:
        logger.error(f"Error during shutdown: {str(e)}")


# Initialize FastAPI app
app = FastAPI(
    title="Interview Rooms API",
    description="Timed video interview sessions with automated rubric evaluation",
    version="1.0.0",
    lifespan=lifespan
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ============================================================================
# DEPENDENCIES
# ============================================================================

def get_room_service() -> RoomService:
    if room_service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service not initialized"
        )
    return room_service


async def get_owner_id(x_user_id: Optional[str] = Header(None)) -> str:
    """Room owners are identified by the upstream auth layer through X-User-Id."""
    if not x_user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required"
        )
    return x_user_id


async def get_owned_room(
    room_id: str,
    owner_id: str = Depends(get_owner_id),
    service: RoomService = Depends(get_room_service)
) -> Room:
    return await service.get_owned_room(room_id, owner_id)


# ============================================================================
# SERVICE ENDPOINTS
# ============================================================================

@app.get("/")
async def root():
    """Root endpoint - simple API info."""
    return {
        "message": "Interview Rooms API",
        "status": "operational",
        "version": "1.0.0"
    }


@app.get("/health")
async def health_check():
    """
    Detailed health check endpoint.

    Returns:
        Health status with component checks
    """
    health_status = {
        "status": "healthy",
        "version": "1.0.0",
        "timestamp": time.time(),
        "components": {
            "document_store": store is not None,
            "room_service": room_service is not None,
            "evaluation_pipeline": evaluation_pipeline is not None,
        },
        "metrics": {
            "active_sessions": len(sessions),
            "pending_evaluations": len(pending_evaluations)
        }
    }

    if not all(health_status["components"].values()):
        health_status["status"] = "degraded"
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content=health_status
        )

    return health_status


@app.get("/metrics")
async def metrics():
    """
    Prometheus-compatible metrics endpoint.

    Returns:
        Text-formatted Prometheus metrics
    """
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST
    )


# ============================================================================
# ROOM OWNER ENDPOINTS
# ============================================================================

@app.post("/rooms", response_model=Room, status_code=status.HTTP_201_CREATED)
async def create_room(
    request: RoomCreate,
    owner_id: str = Depends(get_owner_id),
    service: RoomService = Depends(get_room_service)
):
    return await service.create_room(owner_id, request)


@app.get("/rooms", response_model=List[Room])
async def list_rooms(
    owner_id: str = Depends(get_owner_id),
    service: RoomService = Depends(get_room_service)
):
    """Rooms created by the caller, newest first."""
    return await service.list_owned_rooms(owner_id)


@app.get("/rooms/{room_id}", response_model=Room)
async def get_room(room: Room = Depends(get_owned_room)):
    return room


@app.put("/rooms/{room_id}", response_model=Room)
async def update_room(
    room_id: str,
    request: RoomUpdate,
    owner_id: str = Depends(get_owner_id),
    service: RoomService = Depends(get_room_service)
):
    """Replace a room's questions, criteria and timing. Open sessions keep their snapshot."""
    return await service.update_room(room_id, owner_id, request)


@app.delete("/rooms/{room_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_room(
    room_id: str,
    owner_id: str = Depends(get_owner_id),
    service: RoomService = Depends(get_room_service)
):
    await service.delete_room(room_id, owner_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/rooms/{room_id}/candidates", response_model=List[CandidateSummary])
async def list_candidates(
    room: Room = Depends(get_owned_room),
    service: RoomService = Depends(get_room_service)
):
    """Candidate roster with display scores, most recent join first."""
    return await service.list_candidates(room.id)


@app.get(
    "/rooms/{room_id}/candidates/{participant_id}",
    response_model=CandidateEvaluationResponse
)
async def get_candidate_evaluation(
    participant_id: str,
    room: Room = Depends(get_owned_room),
    service: RoomService = Depends(get_room_service)
):
    return await service.get_candidate_evaluation(room.id, participant_id)


# ============================================================================
# CANDIDATE ENDPOINTS
# ============================================================================

@app.post(
    "/join/{share_id}",
    response_model=JoinRoomResponse,
    status_code=status.HTTP_201_CREATED
)
async def join_room(
    share_id: str,
    request: JoinRoomRequest,
    service: RoomService = Depends(get_room_service)
):
    """
    Join a room through its share link.

    Returns:
        Room id and participant id; the candidate then opens the interview WebSocket
    """
    logger.info(f"Join request for share id {share_id}")
    return await service.join_room(share_id, request.full_name, request.email)


@app.get("/sessions/{session_id}", response_model=SessionStatusResponse)
async def get_session_status(session_id: str):
    runtime = sessions.get(session_id)
    if runtime is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found"
        )
    return runtime.status()


@app.get("/sessions/{session_id}/recording")
async def download_recording(session_id: str):
    """Serve the combined recording while the session is still open."""
    runtime = sessions.get(session_id)
    if runtime is None or runtime.playback_path is None or runtime.recording is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No recording available for session {session_id}"
        )
    return FileResponse(
        runtime.playback_path,
        media_type=runtime.recording.mime_type,
        filename=runtime.recording.filename
    )


@app.websocket("/ws/interview/{room_id}")
async def websocket_interview(websocket: WebSocket, room_id: str, email: str = "", full_name: str = ""):
    """
    WebSocket endpoint for one interview session.

    Flow:
    1. Validate the room and the candidate identity, accept the connection
    2. Ask the browser for camera + microphone (acquire_media)
    3. Run start / next / complete commands against the session runtime
    4. Collect binary recorder chunks until the recorder confirms its stop
    5. On disconnect: cancel pending commands, close the runtime, keep the
       evaluation running in the background

    Message Format (Backend -> Frontend):
        {"type": "session" | "acquire_media" | "start_recording" | "request_data" |
                 "stop_recording" | "release_media" | "question" | "tick" |
                 "completing" | "completed" | "error", ...}

    Message Format (Frontend -> Backend):
        Binary recorder chunks, or JSON:
        {"type": "media_ready", "supported_mime_types": [...]} | {"type": "media_error", "error": "..."} |
        {"type": "recorder_started"} | {"type": "data_flushed"} | {"type": "recorder_stopped"} |
        {"type": "recorder_error", "error": "..."} | {"type": "start"} | {"type": "next"} | {"type": "complete"}
    """
    logger.info(f"WebSocket interview request for room {room_id}")

    if room_service is None or evaluation_pipeline is None:
        await websocket.close(code=4503, reason="Service not available")
        return

    try:
        identity = CandidateIdentity(email=email, full_name=full_name)
    except ValidationError:
        websocket_connections_total.labels(endpoint="interview", status="rejected").inc()
        await websocket.close(code=4400, reason="A valid email is required")
        return

    try:
        room = await room_service.get_room(room_id)
        room.ensure_ready()
    except (RoomNotFoundError, InvalidRoomError) as e:
        websocket_connections_total.labels(endpoint="interview", status="rejected").inc()
        await websocket.close(code=4004, reason=str(e))
        return

    await websocket.accept()
    websocket_connections_total.labels(endpoint="interview", status="connected").inc()

    session_id = new_id()
    channel = SessionChannel(websocket, session_id)
    await channel.start_sender()

    backend = WebSocketCaptureBackend(
        channel.send,
        response_timeout=settings.recorder_response_timeout_seconds,
        acquire_timeout=settings.device_acquire_timeout_seconds
    )
    capture = CaptureManager(
        backend,
        timeslice_ms=settings.recording_timeslice_ms,
        video_bits_per_second=settings.recording_video_bits_per_second,
        min_recording_bytes=settings.recording_min_bytes
    )
    runtime = InterviewSessionRuntime(
        room,
        identity,
        capture,
        SessionTimer(settings.timer_tick_seconds),
        evaluation_pipeline,
        on_event=channel.send,
        session_id=session_id
    )
    sessions[session_id] = runtime
    logger.info(f"Session {session_id} opened for {identity.email} in room {room.id}")

    command_tasks: Set[asyncio.Task] = set()

    async def run_command(name: str, command):
        try:
            await command()
        except InterviewRoomError as e:
            logger.warning(f"Session {session_id}: {name} failed: {e}")
            channel.send({
                "type": "error",
                "session_id": session_id,
                "command": name,
                "error": str(e),
                "error_type": type(e).__name__,
            })
        except Exception as e:
            logger.error(f"Session {session_id}: unexpected error in {name}: {e}", exc_info=True)
            channel.send({
                "type": "error",
                "session_id": session_id,
                "command": name,
                "error": "Internal error",
            })

    def spawn(name: str, command):
        task = asyncio.create_task(run_command(name, command))
        command_tasks.add(task)
        task.add_done_callback(command_tasks.discard)

    channel.send({
        "type": "session",
        "session_id": session_id,
        "room": {
            "id": room.id,
            "name": room.name,
            "question_count": room.question_count,
            "time_limit_per_question": room.time_limit_per_question,
        },
    })
    spawn("prepare", runtime.prepare)

    commands = {
        "start": runtime.start,
        "next": runtime.next_question,
        "complete": runtime.complete,
    }

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break
            websocket_messages_total.labels(endpoint="interview", direction="received").inc()

            if message.get("bytes") is not None:
                backend.feed(message["bytes"])
                continue

            text = message.get("text")
            if text is None:
                continue

            try:
                control_msg = json.loads(text)
            except json.JSONDecodeError as e:
                logger.error(f"Session {session_id}: failed to parse control message: {e}")
                continue

            if backend.handle_control(control_msg):
                continue

            msg_type = control_msg.get("type")
            if msg_type in commands:
                spawn(msg_type, commands[msg_type])
            else:
                logger.warning(f"Session {session_id}: unknown control message type: {msg_type}")

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for session {session_id}")

    finally:
        backend.disconnect()
        for task in list(command_tasks):
            task.cancel()
        if command_tasks:
            await asyncio.gather(*command_tasks, return_exceptions=True)

        await runtime.close()
        sessions.pop(session_id, None)

        evaluation_task = runtime.evaluation_task
        if evaluation_task is not None and not evaluation_task.done():
            pending_evaluations.add(evaluation_task)
            evaluation_task.add_done_callback(pending_evaluations.discard)

        await channel.close()
        websocket_connections_total.labels(endpoint="interview", status="disconnected").inc()
        logger.info(f"Session {session_id} closed (state={runtime.state.value})")


# ============================================================================
# ERROR HANDLERS
# ============================================================================

_ERROR_STATUS = (
    (RoomNotFoundError, status.HTTP_404_NOT_FOUND),
    (ParticipantNotFoundError, status.HTTP_404_NOT_FOUND),
    (RoomAccessError, status.HTTP_403_FORBIDDEN),
    (AlreadyJoinedError, status.HTTP_409_CONFLICT),
    (SessionStateError, status.HTTP_409_CONFLICT),
    (InvalidRoomError, status.HTTP_400_BAD_REQUEST),
)


@app.exception_handler(InterviewRoomError)
async def interview_room_exception_handler(request, exc):
    """Map domain errors to HTTP status codes."""
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            status_code = code
            break
    if status_code >= 500:
        logger.error(f"Unhandled domain error: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=str(exc), detail=type(exc).__name__).model_dump()
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request, exc):
    """Custom exception handler for HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=str(exc.detail), detail=str(exc.detail)).model_dump()
    )


@app.exception_handler(Exception)
async def general_exception_handler(request, exc):
    """Custom exception handler for unexpected exceptions."""
    logger.error(f"Unhandled exception: {str(exc)}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=ErrorResponse(error="Internal server error", detail=str(exc)).model_dump()
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
