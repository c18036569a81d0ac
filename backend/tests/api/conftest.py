import pytest
from fastapi.testclient import TestClient

from interview_rooms import main
from interview_rooms.db.repositories import ParticipantRepository
from interview_rooms.services.evaluation_pipeline import EvaluationPipeline

from tests.fakes import FakeEvaluator, FakeTranscriber

OWNER = {"X-User-Id": "owner-1"}

ROOM_PAYLOAD = {
    "name": "Backend Engineer",
    "description": "Screening round",
    "questions": [{"text": "Tell us about yourself."}, {"text": "Describe a hard bug you fixed."}],
    "criteria": [
        {"name": "Communication", "description": "Clarity", "maxScore": 40},
        {"name": "Problem solving", "description": "Approach", "maxScore": 60},
    ],
    "time_limit_per_question": 300,
}


@pytest.fixture()
def fakes():
    return {"transcriber": FakeTranscriber(), "evaluator": FakeEvaluator()}


@pytest.fixture()
def client(monkeypatch, fakes):
    # Keep countdowns from expiring during a test
    monkeypatch.setenv("TIMER_TICK_SECONDS", "3600")
    monkeypatch.setenv("RECORDER_RESPONSE_TIMEOUT_SECONDS", "5")
    monkeypatch.setenv("STORAGE_BACKEND", "memory")

    def build_pipeline(settings, store):
        return EvaluationPipeline(fakes["transcriber"], fakes["evaluator"], ParticipantRepository(store))

    monkeypatch.setattr(main, "build_evaluation_pipeline", build_pipeline)

    with TestClient(main.app) as test_client:
        yield test_client


@pytest.fixture()
def created_room(client):
    response = client.post("/rooms", json=ROOM_PAYLOAD, headers=OWNER)
    assert response.status_code == 201
    return response.json()
