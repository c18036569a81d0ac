import os

import pytest

# Settings() needs these before the app module is imported
os.environ.setdefault("GEMINI_API_KEY", "test-gemini-key")
os.environ["STORAGE_BACKEND"] = "memory"

from interview_rooms.core.models import CandidateIdentity, Criterion, Question, Room  # noqa: E402
from interview_rooms.db.document_store import InMemoryDocumentStore  # noqa: E402
from interview_rooms.db.repositories import ParticipantRepository  # noqa: E402
from interview_rooms.services.evaluation_pipeline import EvaluationPipeline  # noqa: E402

from tests.fakes import FakeEvaluator, FakeTranscriber  # noqa: E402


def make_room(question_count: int = 2, time_limit: int = 300, **overrides) -> Room:
    data = {
        "id": "room-1",
        "name": "Backend Engineer",
        "description": "Screening round",
        "created_by": "owner-1",
        "questions": [Question(id=f"q{i}", text=f"Question number {i + 1}?") for i in range(question_count)],
        "criteria": [
            Criterion(id="c1", name="Communication", description="Clarity and structure", max_score=50),
            Criterion(id="c2", name="Technical depth", description="Accuracy and detail", max_score=50),
        ],
        "time_limit_per_question": time_limit,
        "share_id": "share-abc",
    }
    data.update(overrides)
    return Room(**data)


@pytest.fixture()
def room():
    return make_room()


@pytest.fixture()
def identity():
    return CandidateIdentity(email="Jane.Doe@Example.com ", full_name="Jane Doe")


@pytest.fixture()
def store():
    return InMemoryDocumentStore()


@pytest.fixture()
def participants(store):
    return ParticipantRepository(store)


@pytest.fixture()
def transcriber():
    return FakeTranscriber()


@pytest.fixture()
def evaluator():
    return FakeEvaluator()


@pytest.fixture()
def pipeline(transcriber, evaluator, participants):
    return EvaluationPipeline(transcriber, evaluator, participants)
