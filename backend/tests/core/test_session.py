import asyncio
import os

import pytest

from interview_rooms.core.exceptions import (
    DeviceError,
    InvalidRoomError,
    RecordingTooSmallError,
    SessionStateError,
)
from interview_rooms.core.models import SessionState
from interview_rooms.core.session import InterviewSessionRuntime
from interview_rooms.services.capture_manager import CaptureManager
from interview_rooms.services.session_timer import SessionTimer

from tests.conftest import make_room
from tests.fakes import FakeCaptureBackend, denied_backend


class CountingTimer(SessionTimer):
    def __init__(self, tick_interval):
        super().__init__(tick_interval)
        self.durations = []

    def start(self, duration, on_tick=None, on_expire=None):
        self.durations.append(duration)
        super().start(duration, on_tick, on_expire)


def make_runtime(room, identity, pipeline, backend=None, tick_interval=60.0, min_bytes=1000):
    events = []
    backend = backend or FakeCaptureBackend()
    runtime = InterviewSessionRuntime(
        room,
        identity,
        CaptureManager(backend, min_recording_bytes=min_bytes),
        CountingTimer(tick_interval),
        pipeline,
        on_event=events.append,
        session_id="session-1",
    )
    return runtime, backend, events


def of_type(events, event_type):
    return [e for e in events if e["type"] == event_type]


async def test_start_enters_first_question_with_one_timer_and_one_recorder(room, identity, pipeline):
    runtime, backend, events = make_runtime(room, identity, pipeline)

    await runtime.prepare()
    await runtime.start()

    assert runtime.state == SessionState.RUNNING
    assert runtime.current_question_index == 0
    assert runtime.time_left == 300
    assert runtime.timer.durations == [300]
    assert runtime.timer.is_running
    assert len(backend.recorders) == 1
    assert of_type(events, "question")[0]["index"] == 0
    assert runtime.status().has_started is True

    await runtime.close()


async def test_start_acquires_device_when_not_prepared(room, identity, pipeline):
    runtime, backend, _ = make_runtime(room, identity, pipeline)
    await runtime.start()
    assert backend.open_calls == 1
    await runtime.close()


async def test_device_error_leaves_session_not_started(room, identity, pipeline):
    runtime, backend, _ = make_runtime(room, identity, pipeline, backend=denied_backend())

    with pytest.raises(DeviceError):
        await runtime.start()

    assert runtime.state == SessionState.NOT_STARTED
    assert not runtime.timer.is_running
    assert backend.recorders == []


async def test_room_without_questions_cannot_start(identity, pipeline):
    runtime, backend, _ = make_runtime(make_room(question_count=0), identity, pipeline)

    with pytest.raises(InvalidRoomError):
        await runtime.start()
    assert backend.recorders == []


async def test_start_twice_is_rejected(room, identity, pipeline):
    runtime, _, _ = make_runtime(room, identity, pipeline)
    await runtime.start()
    with pytest.raises(SessionStateError):
        await runtime.start()
    await runtime.close()


async def test_timer_expiry_advances_then_completes(identity, pipeline, evaluator):
    """Two questions, 300 s each: expiry moves to question 2 with a fresh 300 s, second expiry completes."""
    room = make_room(question_count=2, time_limit=300)
    runtime, backend, events = make_runtime(room, identity, pipeline, tick_interval=0)

    await runtime.start()
    state = await asyncio.wait_for(runtime.wait_until_finished(), timeout=5)
    await runtime.wait_for_evaluation()

    questions = of_type(events, "question")
    assert [q["index"] for q in questions] == [0, 1]
    assert questions[1]["time_left"] == 300
    assert [t["time_left"] for t in of_type(events, "tick")][299] == 0
    assert len(of_type(events, "completing")) == 1
    assert of_type(events, "completing")[0]["trigger"] == "timer"
    assert state == SessionState.COMPLETED
    assert backend.recorder.stop_calls == 1
    assert len(evaluator.calls) == 1

    await runtime.close()


@pytest.mark.parametrize("question_count", [1, 3, 5])
async def test_question_count_minus_one_timer_restarts(identity, pipeline, question_count):
    room = make_room(question_count=question_count, time_limit=2)
    runtime, backend, events = make_runtime(room, identity, pipeline, tick_interval=0)

    await runtime.start()
    await asyncio.wait_for(runtime.wait_until_finished(), timeout=5)

    # One countdown for the first question, one restart per later question
    assert len(runtime.timer.durations) - 1 == question_count - 1
    assert len(of_type(events, "question")) == question_count
    assert backend.recorder.stop_calls == 1
    await runtime.close()


async def test_manual_next_and_complete(room, identity, pipeline, store):
    runtime, backend, events = make_runtime(room, identity, pipeline)
    await runtime.start()

    with pytest.raises(SessionStateError, match="Cannot complete"):
        await runtime.complete()

    await runtime.next_question()
    assert runtime.current_question_index == 1
    assert runtime.time_left == 300
    assert runtime.timer.durations == [300, 300]

    await runtime.complete()
    result = await runtime.wait_for_evaluation()

    assert runtime.state == SessionState.COMPLETED
    assert runtime.status().recording_available is True
    assert of_type(events, "completing")[0]["trigger"] == "manual"
    assert of_type(events, "completed")[0]["recording_bytes"] == 2000
    assert result.evaluation.startswith("## Overall Score")
    assert not runtime.timer.is_running

    await runtime.close()


async def test_next_on_last_question_completes(identity, pipeline):
    runtime, backend, _ = make_runtime(make_room(question_count=1), identity, pipeline)
    await runtime.start()

    await runtime.next_question()

    assert runtime.state == SessionState.COMPLETED
    await runtime.close()


async def test_commands_before_start_are_rejected(room, identity, pipeline):
    runtime, _, _ = make_runtime(room, identity, pipeline)
    with pytest.raises(SessionStateError):
        await runtime.next_question()
    with pytest.raises(SessionStateError):
        await runtime.complete()


async def test_completion_race_stops_recorder_and_persists_once(identity, pipeline, evaluator, store):
    gate = asyncio.Event()
    backend = FakeCaptureBackend(stop_gate=gate)
    room = make_room(question_count=1, time_limit=1)
    runtime, backend, events = make_runtime(room, identity, pipeline, backend=backend, tick_interval=0)

    await runtime.start()
    while runtime.state != SessionState.COMPLETING:
        await asyncio.sleep(0)

    # Manual clicks while the timer-driven completion is still stopping the recorder
    await asyncio.gather(runtime.complete(), runtime.next_question(), runtime.complete())
    gate.set()
    await runtime.wait_for_evaluation()
    await runtime.complete()

    assert backend.recorder.stop_calls == 1
    assert len(of_type(events, "completing")) == 1
    assert len(of_type(events, "completed")) == 1
    assert len(evaluator.calls) == 1
    assert len(await store.find("room_participants", {})) == 1
    await runtime.close()


async def test_tiny_recording_fails_session_without_evaluation(identity, pipeline, transcriber, evaluator, store):
    backend = FakeCaptureBackend(flush_chunks=[b"x" * 500], final_chunks=[])
    runtime, backend, events = make_runtime(make_room(question_count=1), identity, pipeline, backend=backend)
    await runtime.start()

    with pytest.raises(RecordingTooSmallError):
        await runtime.complete()

    assert runtime.state == SessionState.FAILED
    assert runtime.evaluation_task is None
    assert transcriber.calls == []
    assert evaluator.calls == []
    assert await store.find("room_participants", {}) == []

    # Terminal: further triggers do nothing
    await runtime.complete()
    await runtime.next_question()
    assert backend.recorder.stop_calls == 1
    await runtime.close()


async def test_tiny_recording_on_timer_expiry_is_reported_as_event(identity, pipeline, evaluator):
    backend = FakeCaptureBackend(flush_chunks=[b"x" * 500], final_chunks=[])
    runtime, _, events = make_runtime(make_room(question_count=1, time_limit=1), identity, pipeline,
                                      backend=backend, tick_interval=0)
    await runtime.start()

    state = await asyncio.wait_for(runtime.wait_until_finished(), timeout=5)

    assert state == SessionState.FAILED
    errors = of_type(events, "error")
    assert errors[0]["error_type"] == "RecordingTooSmallError"
    assert evaluator.calls == []
    await runtime.close()


async def test_evaluation_failure_does_not_undo_completion(identity, transcriber, evaluator, participants):
    from interview_rooms.services.evaluation_pipeline import EvaluationPipeline
    from tests.fakes import FakeTranscriber

    failing = EvaluationPipeline(FakeTranscriber(status_code=500), evaluator, participants)
    runtime, _, events = make_runtime(make_room(question_count=1), identity, failing)
    await runtime.start()
    await runtime.complete()

    result = await runtime.wait_for_evaluation()

    assert result is None
    assert runtime.state == SessionState.COMPLETED
    assert runtime.evaluation_error.status_code == 500
    assert runtime.is_evaluating is False
    assert of_type(events, "error") == []
    await runtime.close()


async def test_close_mid_session_cleans_up_everything(room, identity, pipeline, evaluator):
    runtime, backend, _ = make_runtime(room, identity, pipeline)
    await runtime.start()

    await runtime.close()
    await runtime.close()

    assert not runtime.timer.is_running
    assert backend.recorder.stop_calls == 1
    assert backend.streams[0].stop_calls == 1
    assert runtime.state == SessionState.FAILED
    assert evaluator.calls == []


async def test_close_after_completion_deletes_playback_file(identity, pipeline):
    runtime, backend, _ = make_runtime(make_room(question_count=1), identity, pipeline)
    await runtime.start()
    await runtime.complete()
    path = runtime.playback_path
    assert os.path.exists(path)

    await runtime.close()

    assert not os.path.exists(path)
    assert backend.recorder.stop_calls == 1


async def test_room_is_snapshotted_at_construction(room, identity, pipeline):
    runtime, _, events = make_runtime(room, identity, pipeline)
    room.questions[0].text = "Edited after the session was created"

    await runtime.start()

    assert of_type(events, "question")[0]["question"]["text"] == "Question number 1?"
    await runtime.close()
