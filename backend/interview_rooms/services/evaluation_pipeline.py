"""
Evaluation Pipeline Module
Transcribe -> score -> shape -> persist, run once per completed session.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from interview_rooms.core.constants import TRANSCRIPT_MAX_CHARS
from interview_rooms.core.exceptions import StorageError, TranscriptionError, EvaluationAPIError
from interview_rooms.core.models import (
    CandidateIdentity,
    EvaluationReport,
    EvaluationResult,
    InterviewStatus,
    Participant,
    Room,
    utc_now,
)
from interview_rooms.db.repositories import ParticipantRepository
from interview_rooms.services.base_transcription_service import TranscriptionService
from interview_rooms.services.capture_manager import Recording
from interview_rooms.services.evaluation_service import EvaluationService
from interview_rooms.utils.metrics import evaluation_writes_total, evaluations_total
from interview_rooms.utils.timing import TimingSummary, time_operation_in_summary

logger = logging.getLogger(__name__)


def shape_result(transcript: str, report: EvaluationReport, max_chars: int = TRANSCRIPT_MAX_CHARS) -> EvaluationResult:
    """Build the persisted payload: bounded transcript plus report metadata."""
    return EvaluationResult(
        transcript=transcript[:max_chars],
        evaluation=report.text,
        model=report.model,
        created=report.created,
        id=report.completion_id,
        finish_reason=report.finish_reason,
        completion_tokens=report.completion_tokens,
        prompt_tokens=report.prompt_tokens,
        total_tokens=report.total_tokens,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


class EvaluationPipeline:
    """
    Post-session pipeline.

    The candidate identity is an explicit argument; the participant record is
    matched on (room_id, email) and is read before it is written, so sequential
    runs for one candidate update a single record.
    """

    def __init__(
        self,
        transcriber: TranscriptionService,
        evaluator: EvaluationService,
        participants: ParticipantRepository,
        transcript_max_chars: int = TRANSCRIPT_MAX_CHARS
    ):
        self.transcriber = transcriber
        self.evaluator = evaluator
        self.participants = participants
        self.transcript_max_chars = transcript_max_chars

    async def evaluate(
        self,
        recording: Recording,
        room: Room,
        identity: CandidateIdentity,
        session_id: Optional[str] = None
    ) -> EvaluationResult:
        """
        Run the whole pipeline for one recording.

        Raises:
            TranscriptionError: Speech-to-text failed (nothing persisted)
            EvaluationAPIError: Scoring failed (nothing persisted)
            StorageError: Both the full and the fallback write failed
        """
        summary = TimingSummary(session_id)
        logger.info(f"Evaluating session {session_id} for room {room.id} ({recording.size} bytes)")

        try:
            try:
                with time_operation_in_summary(summary, "Transcription", {"bytes": recording.size}) as step:
                    transcript = await self.transcriber.transcribe(
                        recording.data, recording.filename, recording.mime_type
                    )
                    step.metadata["chars"] = len(transcript)
            except TranscriptionError:
                evaluations_total.labels(status="transcription_error").inc()
                raise

            try:
                with time_operation_in_summary(summary, "Rubric evaluation", {"criteria": len(room.criteria)}):
                    report = await self.evaluator.evaluate(transcript, room.criteria, room.questions)
            except EvaluationAPIError:
                evaluations_total.labels(status="evaluation_error").inc()
                raise

            result = shape_result(transcript, report, self.transcript_max_chars)

            try:
                with time_operation_in_summary(summary, "Persistence"):
                    await self.persist(room, identity, result)
            except StorageError:
                evaluations_total.labels(status="storage_error").inc()
                raise
        finally:
            summary.log_summary()

        evaluations_total.labels(status="success").inc()
        return result

    async def persist(self, room: Room, identity: CandidateIdentity, result: EvaluationResult) -> str:
        """
        Update the candidate's participant record, or create one.

        On a storage failure one reduced write (report text + timestamp) is
        attempted before giving up.

        Returns:
            Participant id written
        """
        existing: Optional[Participant] = None
        try:
            existing = await self.participants.find_by_room_and_email(room.id, identity.email)
            now = utc_now()
            changes: Dict[str, Any] = {
                "evaluation_data": result.model_dump(),
                "interview_status": InterviewStatus.EVALUATED.value,
                "updated_at": now,
            }
            if existing is not None:
                await self.participants.update(existing.id, changes)
                evaluation_writes_total.labels(mode="update").inc()
                logger.info(f"Updated participant {existing.id} with evaluation")
                return existing.id

            participant_id = await self.participants.add({
                "room_id": room.id,
                "email": identity.email,
                "full_name": identity.full_name,
                "joined_at": now,
                "created_at": now,
                **changes,
            })
            evaluation_writes_total.labels(mode="create").inc()
            logger.info(f"Created participant {participant_id} with evaluation")
            return participant_id

        except StorageError as e:
            logger.error(f"Failed to store evaluation for {identity.email} in room {room.id}: {e}")
            return await self._persist_fallback(room, identity, result, existing)

    async def _persist_fallback(
        self,
        room: Room,
        identity: CandidateIdentity,
        result: EvaluationResult,
        existing: Optional[Participant]
    ) -> str:
        minimal = {
            "minimal_evaluation_data": {
                "evaluation": result.evaluation,
                "timestamp": result.timestamp,
            },
            "is_fallback": True,
        }
        try:
            if existing is not None:
                await self.participants.update(existing.id, minimal)
                participant_id = existing.id
            else:
                participant_id = await self.participants.add({
                    "room_id": room.id,
                    "email": identity.email,
                    "full_name": identity.full_name,
                    "joined_at": utc_now(),
                    **minimal,
                })
        except StorageError as e:
            evaluation_writes_total.labels(mode="failed").inc()
            logger.error(f"Fallback evaluation write failed for {identity.email}: {e}")
            raise StorageError(f"Could not store evaluation, even in minimal form: {e}") from e

        evaluation_writes_total.labels(mode="fallback").inc()
        logger.warning(f"Stored minimal evaluation for participant {participant_id}")
        return participant_id
