import pytest

from interview_rooms.core.exceptions import (
    AlreadyJoinedError,
    InvalidRoomError,
    ParticipantNotFoundError,
    RoomAccessError,
    RoomNotFoundError,
)
from interview_rooms.core.models import Criterion, Question, RoomCreate, RoomUpdate
from interview_rooms.services.capture_manager import Recording
from interview_rooms.services.room_service import RoomService, participant_status

from tests.fakes import SAMPLE_REPORT


@pytest.fixture()
def service(store):
    return RoomService(store)


def room_request(**overrides):
    data = dict(
        name="Data Engineer",
        questions=[Question(text="Describe a pipeline you built.")],
        criteria=[Criterion(name="Depth", description="Technical detail", max_score=100)],
        time_limit_per_question=120,
    )
    data.update(overrides)
    return RoomCreate(**data)


async def test_create_room_assigns_owner_and_share_token(service):
    room = await service.create_room("owner-9", room_request())

    assert room.created_by == "owner-9"
    assert len(room.share_id) == 32
    assert (await service.get_room(room.id)).name == "Data Engineer"
    assert [r.id for r in await service.list_owned_rooms("owner-9")] == [room.id]
    assert await service.list_owned_rooms("someone-else") == []


async def test_update_room_replaces_editable_fields(service):
    room = await service.create_room("owner-1", room_request())

    updated = await service.update_room(room.id, "owner-1", RoomUpdate(
        name="Staff Data Engineer",
        questions=[Question(text="First?"), Question(text="Second?")],
        criteria=[Criterion(name="Depth", max_score=100)],
        time_limit_per_question=60,
        is_active=False,
    ))

    assert updated.id == room.id
    assert updated.share_id == room.share_id
    assert updated.created_by == "owner-1"
    assert updated.question_count == 2
    assert updated.time_limit_per_question == 60
    assert updated.is_active is False
    assert (await service.get_room(room.id)).name == "Staff Data Engineer"


async def test_update_and_delete_require_the_owner(service):
    room = await service.create_room("owner-1", room_request())

    with pytest.raises(RoomAccessError):
        await service.update_room(room.id, "owner-2", RoomUpdate(**room_request(name="Taken").model_dump()))
    with pytest.raises(RoomAccessError):
        await service.delete_room(room.id, "owner-2")

    assert (await service.get_room(room.id)).name == "Data Engineer"


async def test_delete_room_keeps_participants(service, store):
    room = await service.create_room("owner-1", room_request())
    await service.join_room(room.share_id, "Jane", "jane@example.com")

    await service.delete_room(room.id, "owner-1")

    with pytest.raises(RoomNotFoundError):
        await service.get_room(room.id)
    with pytest.raises(RoomNotFoundError):
        await service.delete_room(room.id, "owner-1")
    assert await service.list_owned_rooms("owner-1") == []
    assert len(await store.find("room_participants", {"room_id": room.id})) == 1


async def test_unknown_room_raises(service):
    with pytest.raises(RoomNotFoundError):
        await service.get_room("missing")


async def test_join_creates_profile_and_participant(service, store):
    room = await service.create_room("owner-1", room_request())

    response = await service.join_room(room.share_id, "Jane Doe", " Jane@Example.com")

    assert response.room_id == room.id
    assert response.message == "Room joined successfully"
    profiles = await store.find("profiles", {})
    assert [p["email"] for p in profiles] == ["jane@example.com"]
    participant = (await store.find("room_participants", {}))[0]
    assert participant["user_id"] == profiles[0]["id"]
    assert participant["interview_status"] == "joined"


async def test_second_join_is_rejected(service, store):
    room = await service.create_room("owner-1", room_request())
    await service.join_room(room.share_id, "Jane", "jane@example.com")

    with pytest.raises(AlreadyJoinedError, match="already given the interview"):
        await service.join_room(room.share_id, "Jane again", "JANE@example.com")

    assert len(await store.find("room_participants", {})) == 1
    assert len(await store.find("profiles", {})) == 1


async def test_join_after_unjoined_evaluation_is_rejected(service, store, pipeline, identity):
    room = await service.create_room("owner-1", room_request())
    recording = Recording(data=b"v" * 2048, mime_type="video/webm", chunk_count=2)
    await pipeline.evaluate(recording, room, identity)

    with pytest.raises(AlreadyJoinedError, match="already given the interview"):
        await service.join_room(room.share_id, "Jane Doe", identity.email)

    docs = await store.find("room_participants", {"room_id": room.id})
    assert len(docs) == 1
    assert docs[0]["email"] == "jane.doe@example.com"
    assert "evaluation_data" in docs[0]
    assert [c.email for c in await service.list_candidates(room.id)] == ["jane.doe@example.com"]


async def test_existing_profile_is_reused_across_rooms(service, store):
    first = await service.create_room("owner-1", room_request())
    second = await service.create_room("owner-1", room_request(name="Second"))

    await service.join_room(first.share_id, "Jane", "jane@example.com")
    await service.join_room(second.share_id, "Jane", "jane@example.com")

    assert len(await store.find("profiles", {})) == 1
    assert len(await store.find("room_participants", {})) == 2


async def test_join_rejects_bad_links_and_inactive_rooms(service):
    with pytest.raises(RoomNotFoundError, match="Invalid room link"):
        await service.join_room("nope", "Jane", "jane@example.com")

    closed = await service.create_room("owner-1", room_request(is_active=False))
    with pytest.raises(InvalidRoomError):
        await service.join_room(closed.share_id, "Jane", "jane@example.com")


async def test_candidate_roster_and_evaluation(service, participants):
    room = await service.create_room("owner-1", room_request())
    await service.join_room(room.share_id, "Waiting Wendy", "wendy@example.com")
    evaluated_id = await participants.add({
        "room_id": room.id,
        "email": "eve@example.com",
        "evaluation_data": {"evaluation": SAMPLE_REPORT, "transcript": "Hello"},
        "interview_status": "evaluated",
    })

    roster = {c.email: c for c in await service.list_candidates(room.id)}

    assert roster["wendy@example.com"].interview_status == "joined"
    assert roster["wendy@example.com"].score == 0.0
    assert roster["eve@example.com"].full_name == "Unknown"
    assert roster["eve@example.com"].interview_status == "completed"
    assert roster["eve@example.com"].score == 7.5
    assert roster["eve@example.com"].comments == "No comments"

    detail = await service.get_candidate_evaluation(room.id, evaluated_id)
    assert detail.evaluation == SAMPLE_REPORT
    assert detail.transcript == "Hello"
    assert detail.score == 7.5

    wendy = roster["wendy@example.com"]
    with pytest.raises(ParticipantNotFoundError):
        await service.get_candidate_evaluation(room.id, wendy.id)
    with pytest.raises(ParticipantNotFoundError):
        await service.get_candidate_evaluation("another-room", evaluated_id)


async def test_fallback_record_is_readable(service, participants):
    room = await service.create_room("owner-1", room_request())
    pid = await participants.add({
        "room_id": room.id,
        "minimal_evaluation_data": {"evaluation": "Overall Score: 4/10", "timestamp": "2025-01-01T00:00:00+00:00"},
        "is_fallback": True,
    })

    detail = await service.get_candidate_evaluation(room.id, pid)

    assert detail.is_fallback is True
    assert detail.score == 4.0
    assert detail.transcript is None


def test_status_defaults_to_completed_for_legacy_rows():
    from interview_rooms.core.models import Participant

    assert participant_status(Participant(id="p", room_id="r")) == "completed"
    assert participant_status(Participant(id="p", room_id="r", interview_status="joined")) == "joined"
