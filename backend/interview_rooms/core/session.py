r"""
Interview Session Runtime
State machine coordinating capture, the per-question countdown and the
post-session evaluation for one candidate in one room.

    not_started -> running(0) -> running(1) ... running(last) -> completing -> completed
                                                                           \-> failed
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional

from interview_rooms.core.exceptions import (
    EvaluationError,
    RecorderError,
    SessionStateError,
    StorageError,
)
from interview_rooms.core.models import (
    CandidateIdentity,
    EvaluationResult,
    Room,
    SessionState,
    SessionStatusResponse,
    new_id,
)
from interview_rooms.services.capture_manager import CaptureManager, Recording
from interview_rooms.services.evaluation_pipeline import EvaluationPipeline
from interview_rooms.services.session_timer import SessionTimer
from interview_rooms.utils.logging_config import log_session_event
from interview_rooms.utils.metrics import (
    active_sessions,
    question_advances_total,
    record_session_finished,
    sessions_started_total,
)

logger = logging.getLogger(__name__)

EventSink = Callable[[Dict[str, Any]], None]


class InterviewSessionRuntime:
    """
    One candidate's pass through a room.

    ``current_question_index`` is the only record of the active question; timer
    callbacks read it when they fire. Completion is guarded by state, so a timer
    expiry racing a manual "complete" runs the stop/evaluate path once.
    """

    def __init__(
        self,
        room: Room,
        identity: CandidateIdentity,
        capture: CaptureManager,
        timer: SessionTimer,
        pipeline: EvaluationPipeline,
        on_event: Optional[EventSink] = None,
        session_id: Optional[str] = None
    ):
        # Snapshot: edits to the room during the session do not reach us
        self.room = room.model_copy(deep=True)
        self.identity = identity
        self.capture = capture
        self.timer = timer
        self.pipeline = pipeline
        self.session_id = session_id or new_id()
        self._on_event = on_event

        self.state = SessionState.NOT_STARTED
        self.current_question_index = 0
        self.time_left = self.room.time_limit_per_question
        self.is_submitting = False
        self.is_evaluating = False
        self.recording: Optional[Recording] = None
        self.playback_path: Optional[str] = None
        self.evaluation_result: Optional[EvaluationResult] = None
        self.evaluation_error: Optional[Exception] = None

        self._prepare_lock = asyncio.Lock()
        self._started_at: Optional[float] = None
        self._finished = asyncio.Event()
        self._evaluation_task: Optional[asyncio.Task] = None
        self._closed = False

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def has_started(self) -> bool:
        return self.state != SessionState.NOT_STARTED

    @property
    def is_completed(self) -> bool:
        return self.state == SessionState.COMPLETED

    @property
    def evaluation_task(self) -> Optional[asyncio.Task]:
        return self._evaluation_task

    def status(self) -> SessionStatusResponse:
        return SessionStatusResponse(
            session_id=self.session_id,
            room_id=self.room.id,
            state=self.state,
            current_question_index=self.current_question_index,
            question_count=self.room.question_count,
            time_left=self.time_left,
            has_started=self.has_started,
            is_completed=self.is_completed,
            is_submitting=self.is_submitting,
            is_evaluating=self.is_evaluating,
            recording_bytes=self.recording.size if self.recording else None,
            recording_available=self.playback_path is not None,
        )

    def _emit(self, event_type: str, **payload):
        if self._on_event is None:
            return
        try:
            self._on_event({"type": event_type, "session_id": self.session_id, **payload})
        except Exception as e:
            logger.warning(f"Session {self.session_id}: event sink failed for {event_type}: {e}")

    def _emit_question(self):
        question = self.room.questions[self.current_question_index]
        self._emit(
            "question",
            index=self.current_question_index,
            total=self.room.question_count,
            question=question.model_dump(),
            time_left=self.time_left,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    async def prepare(self) -> None:
        """
        Acquire camera and microphone for preview.

        Raises:
            DeviceError: Device unavailable; the session stays not_started
        """
        async with self._prepare_lock:
            if self.capture.stream is None:
                await self.capture.acquire()
                log_session_event(logger, self.session_id, "device_acquired", room_id=self.room.id)

    async def start(self) -> None:
        """
        not_started -> running(0): start the recorder and the first countdown.

        Raises:
            InvalidRoomError: Room has no questions/criteria or no time limit
            SessionStateError: Already started
            DeviceError / RecorderError: Capture could not start; state unchanged
        """
        self.room.ensure_ready()
        async with self._prepare_lock:
            if self.state != SessionState.NOT_STARTED:
                raise SessionStateError(f"Session already {self.state.value}")
            if self.capture.stream is None:
                await self.capture.acquire()
            await self.capture.start_recording()

            self.current_question_index = 0
            self.time_left = self.room.time_limit_per_question
            self.state = SessionState.RUNNING
            self._started_at = time.time()

        self._start_countdown()
        sessions_started_total.inc()
        active_sessions.inc()
        log_session_event(
            logger,
            self.session_id,
            "started",
            room_id=self.room.id,
            question_count=self.room.question_count,
            mime_type=self.capture.mime_type,
        )
        self._emit_question()

    async def next_question(self) -> None:
        """Manual advance. On the last question this completes the session."""
        self._require_running("advance")
        await self._advance("manual")

    async def complete(self) -> None:
        """
        Manual finish from the last question.

        A no-op once completing/completed/failed.

        Raises:
            SessionStateError: Not started, or questions remain
        """
        if self.state in (SessionState.COMPLETING, SessionState.COMPLETED, SessionState.FAILED):
            logger.debug(f"Session {self.session_id}: complete ignored in state {self.state.value}")
            return
        self._require_running("complete")
        if self.current_question_index < self.room.last_question_index:
            raise SessionStateError(
                f"Cannot complete on question {self.current_question_index + 1} "
                f"of {self.room.question_count}"
            )
        await self._complete("manual")

    def _require_running(self, action: str):
        if self.state == SessionState.NOT_STARTED:
            raise SessionStateError(f"Cannot {action}: session has not started")

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _start_countdown(self):
        self.time_left = self.room.time_limit_per_question
        self.timer.restart(self.room.time_limit_per_question, self._on_tick, self._on_expire)

    def _on_tick(self, remaining: int):
        self.time_left = remaining
        self._emit("tick", index=self.current_question_index, time_left=remaining)

    async def _on_expire(self):
        # No caller to raise to: report through the event sink
        try:
            await self._advance("timer")
        except Exception as e:
            logger.error(f"Session {self.session_id}: timer expiry handling failed: {e}")
            self._emit("error", error=str(e), error_type=type(e).__name__)

    async def _advance(self, trigger: str):
        if self.state != SessionState.RUNNING:
            logger.debug(f"Session {self.session_id}: {trigger} advance ignored in state {self.state.value}")
            return

        if self.current_question_index >= self.room.last_question_index:
            await self._complete(trigger)
            return

        self.current_question_index += 1
        question_advances_total.labels(trigger=trigger).inc()
        self._start_countdown()
        log_session_event(
            logger,
            self.session_id,
            "question_advanced",
            question_index=self.current_question_index,
            trigger=trigger,
        )
        self._emit_question()

    async def _complete(self, trigger: str):
        if self.state != SessionState.RUNNING:
            return

        self.state = SessionState.COMPLETING
        self.is_submitting = True
        self.timer.cancel()
        log_session_event(logger, self.session_id, "completing", trigger=trigger)
        self._emit("completing", trigger=trigger)

        try:
            recording = await self.capture.stop()
        except RecorderError as e:
            self._fail(str(e))
            raise
        except asyncio.CancelledError:
            self._fail("cancelled while stopping the recorder")
            raise

        self.recording = recording
        if not self._closed:
            try:
                self.playback_path = self.capture.create_playback_file(recording)
            except OSError as e:
                logger.warning(f"Session {self.session_id}: could not write playback file: {e}")

        self.state = SessionState.COMPLETED
        self.is_submitting = False
        self.is_evaluating = True
        self._evaluation_task = asyncio.create_task(self._run_evaluation(recording))
        self._finish("completed")
        log_session_event(logger, self.session_id, "completed", recording_bytes=recording.size)
        self._emit("completed", recording_bytes=recording.size, mime_type=recording.mime_type)

    def _fail(self, reason: str):
        self.state = SessionState.FAILED
        self.is_submitting = False
        self._finish("failed")
        log_session_event(logger, self.session_id, "failed", error=reason)

    def _finish(self, outcome: str):
        active_sessions.dec()
        duration = time.time() - self._started_at if self._started_at else None
        record_session_finished(outcome, duration_seconds=duration)
        self._finished.set()

    async def _run_evaluation(self, recording: Recording):
        """Evaluation failures are for the operator; the candidate has already finished."""
        try:
            self.evaluation_result = await self.pipeline.evaluate(
                recording, self.room, self.identity, session_id=self.session_id
            )
            log_session_event(logger, self.session_id, "evaluated", room_id=self.room.id)
        except (EvaluationError, StorageError) as e:
            self.evaluation_error = e
            logger.error(f"Session {self.session_id}: evaluation failed: {e}")
        except Exception as e:
            self.evaluation_error = e
            logger.error(f"Session {self.session_id}: unexpected evaluation failure: {e}", exc_info=True)
        finally:
            self.is_evaluating = False

    # ------------------------------------------------------------------
    # Waiting and teardown
    # ------------------------------------------------------------------

    async def wait_until_finished(self) -> SessionState:
        """Block until the session is completed or failed."""
        await self._finished.wait()
        return self.state

    async def wait_for_evaluation(self) -> Optional[EvaluationResult]:
        await self._finished.wait()
        if self._evaluation_task is not None:
            await self._evaluation_task
        return self.evaluation_result

    async def close(self) -> None:
        """
        Exit path for every outcome: cancel the countdown, stop the recorder if it
        is still running (errors dropped), release the device and playback files.
        Does not cancel a running evaluation.
        """
        if self._closed:
            return
        self._closed = True

        self.timer.cancel()
        if self.state == SessionState.RUNNING:
            self.state = SessionState.FAILED
            self._finish("abandoned")
            log_session_event(logger, self.session_id, "abandoned", question_index=self.current_question_index)
        if self.state != SessionState.COMPLETING:
            await self.capture.abort()
        await self.capture.release()
        log_session_event(logger, self.session_id, "closed", state=self.state.value)
