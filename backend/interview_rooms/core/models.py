"""
Data Models Module
Pydantic models for rooms, participants, evaluation results and API request/response schemas.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from interview_rooms.core.exceptions import InvalidRoomError


def new_id() -> str:
    return uuid.uuid4().hex


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def normalize_email(email: str) -> str:
    """Emails are matched exactly after trimming and lower-casing."""
    return email.strip().lower()


def _validate_email(value: str) -> str:
    value = normalize_email(value)
    if not value or "@" not in value:
        raise ValueError("A valid email address is required")
    return value


# ============================================================================
# ROOM DEFINITION
# ============================================================================

class Question(BaseModel):
    """A single timed interview question. List order defines presentation order."""
    id: str = Field(default_factory=new_id)
    text: str = Field(..., min_length=1, description="Question shown to the candidate")


class Criterion(BaseModel):
    """A scoring rubric entry. max_score weights the evaluation prompt, it is not a hard cap."""
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_id)
    name: str = Field(..., min_length=1)
    description: str = ""
    max_score: float = Field(..., gt=0, alias="maxScore")


class Room(BaseModel):
    """Reusable interview definition: questions, criteria and timing."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    description: Optional[str] = None
    created_by: str = Field(..., description="Owner id")
    created_at: datetime = Field(default_factory=utc_now)
    questions: List[Question] = Field(default_factory=list)
    criteria: List[Criterion] = Field(default_factory=list)
    time_limit_per_question: int = Field(..., gt=0, description="Seconds per question")
    is_active: bool = True
    share_id: Optional[str] = Field(None, description="Opaque join token")

    @property
    def question_count(self) -> int:
        return len(self.questions)

    @property
    def last_question_index(self) -> int:
        return len(self.questions) - 1

    def ensure_ready(self) -> None:
        """Raise InvalidRoomError unless a session may start in this room."""
        if not self.questions:
            raise InvalidRoomError(f"Room {self.id} has no questions")
        if not self.criteria:
            raise InvalidRoomError(f"Room {self.id} has no evaluation criteria")
        if self.time_limit_per_question <= 0:
            raise InvalidRoomError(f"Room {self.id} has no positive time limit")


class RoomCreate(BaseModel):
    """Request model for creating a room."""
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    questions: List[Question] = Field(..., min_length=1)
    criteria: List[Criterion] = Field(..., min_length=1)
    time_limit_per_question: int = Field(..., gt=0)
    is_active: bool = True


class RoomUpdate(RoomCreate):
    """Request model for editing a room. Every editable field is replaced; id, owner and share id are kept."""
    pass


# ============================================================================
# CANDIDATES
# ============================================================================

class CandidateIdentity(BaseModel):
    """Who is taking the session. Passed explicitly to the runtime and the pipeline."""
    model_config = ConfigDict(frozen=True)

    email: str
    full_name: str = ""

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return _validate_email(value)


class InterviewStatus(str, Enum):
    JOINED = "joined"
    EVALUATED = "evaluated"


class Participant(BaseModel):
    """One candidate's join + evaluation record for one room."""
    model_config = ConfigDict(extra="ignore")

    id: str
    room_id: str
    user_id: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    joined_at: Optional[datetime] = None
    interview_status: Optional[str] = None
    evaluation_data: Optional[Dict[str, Any]] = None
    minimal_evaluation_data: Optional[Dict[str, Any]] = None
    comments: Optional[str] = None
    is_fallback: bool = False

    @property
    def evaluation_text(self) -> Optional[str]:
        for payload in (self.evaluation_data, self.minimal_evaluation_data):
            if payload and payload.get("evaluation"):
                return payload["evaluation"]
        return None


# ============================================================================
# EVALUATION
# ============================================================================

class EvaluationReport(BaseModel):
    """Raw output of the rubric scoring step."""
    text: str
    model: str = "unknown"
    completion_id: str = "unknown"
    finish_reason: str = "unknown"
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0
    created: int = Field(..., description="Unix timestamp of the completion")


class EvaluationResult(BaseModel):
    """Persisted evaluation payload (write-once per session)."""
    transcript: str
    evaluation: str
    model: str
    created: int
    id: str = Field(..., description="Completion id")
    finish_reason: str = "unknown"
    completion_tokens: int = 0
    prompt_tokens: int = 0
    total_tokens: int = 0
    timestamp: str = Field(..., description="ISO-8601 time the result was shaped")


# ============================================================================
# SESSION RUNTIME
# ============================================================================

class SessionState(str, Enum):
    NOT_STARTED = "not_started"
    RUNNING = "running"
    COMPLETING = "completing"
    COMPLETED = "completed"
    FAILED = "failed"


class SessionStatusResponse(BaseModel):
    """Snapshot of an interview session runtime."""
    session_id: str
    room_id: str
    state: SessionState
    current_question_index: int
    question_count: int
    time_left: int
    has_started: bool
    is_completed: bool
    is_submitting: bool
    is_evaluating: bool
    recording_bytes: Optional[int] = None
    recording_available: bool = False


# ============================================================================
# API SCHEMAS
# ============================================================================

class JoinRoomRequest(BaseModel):
    full_name: str = Field(..., min_length=1)
    email: str

    @field_validator("email")
    @classmethod
    def _normalize(cls, value: str) -> str:
        return _validate_email(value)


class JoinRoomResponse(BaseModel):
    room_id: str
    room_name: str
    participant_id: str
    message: str = "Room joined successfully"


class CandidateSummary(BaseModel):
    """Roster row for a room owner."""
    id: str
    full_name: str
    email: Optional[str] = None
    joined_at: Optional[datetime] = None
    interview_status: str
    score: float
    comments: str = "No comments"


class CandidateEvaluationResponse(BaseModel):
    participant_id: str
    full_name: str
    score: float
    evaluation: str
    transcript: Optional[str] = None
    is_fallback: bool = False


class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
