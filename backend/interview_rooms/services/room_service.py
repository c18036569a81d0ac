"""
Room Service Module
Room management, the candidate join flow and the owner's candidate roster.
"""

import logging
import uuid
from typing import List

from interview_rooms.core.exceptions import (
    AlreadyJoinedError,
    InvalidRoomError,
    ParticipantNotFoundError,
    RoomAccessError,
    RoomNotFoundError,
)
from interview_rooms.core.models import (
    CandidateEvaluationResponse,
    CandidateSummary,
    InterviewStatus,
    JoinRoomResponse,
    Participant,
    Room,
    RoomCreate,
    RoomUpdate,
    normalize_email,
    utc_now,
)
from interview_rooms.db.document_store import DocumentStore
from interview_rooms.db.repositories import ParticipantRepository, ProfileRepository, RoomRepository
from interview_rooms.utils.score_extraction import score_from_payload

logger = logging.getLogger(__name__)

ALREADY_JOINED_MESSAGE = "You have already given the interview"


def participant_status(participant: Participant) -> str:
    if participant.evaluation_text:
        return "completed"
    return participant.interview_status or "completed"


def participant_score(participant: Participant) -> float:
    payload = participant.evaluation_data or participant.minimal_evaluation_data
    return score_from_payload(payload, fallback_text=participant.evaluation_text)


class RoomService:
    def __init__(self, store: DocumentStore):
        self.rooms = RoomRepository(store)
        self.profiles = ProfileRepository(store)
        self.participants = ParticipantRepository(store)

    async def create_room(self, owner_id: str, request: RoomCreate) -> Room:
        data = request.model_dump()
        data.update({
            "created_by": owner_id,
            "created_at": utc_now(),
            "share_id": uuid.uuid4().hex,
        })
        room = await self.rooms.add(data)
        logger.info(f"Room {room.id} created by {owner_id} ({room.question_count} questions)")
        return room

    async def get_room(self, room_id: str) -> Room:
        room = await self.rooms.get(room_id)
        if room is None:
            raise RoomNotFoundError(f"Room {room_id} not found")
        return room

    async def list_owned_rooms(self, owner_id: str) -> List[Room]:
        return await self.rooms.list_by_owner(owner_id)

    async def get_owned_room(self, room_id: str, owner_id: str) -> Room:
        room = await self.get_room(room_id)
        if room.created_by != owner_id:
            raise RoomAccessError("You do not have access to this room")
        return room

    async def update_room(self, room_id: str, owner_id: str, request: RoomUpdate) -> Room:
        """
        Replace the editable fields of an owned room.

        Sessions already running keep the room they snapshotted at start.
        """
        room = await self.get_owned_room(room_id, owner_id)
        await self.rooms.update(room.id, request.model_dump())
        logger.info(f"Room {room.id} updated by {owner_id} ({len(request.questions)} questions)")
        return await self.get_room(room.id)

    async def delete_room(self, room_id: str, owner_id: str) -> None:
        """Delete an owned room. Participant records are left in place."""
        room = await self.get_owned_room(room_id, owner_id)
        await self.rooms.delete(room.id)
        logger.info(f"Room {room.id} deleted by {owner_id}")

    async def join_room(self, share_id: str, full_name: str, email: str) -> JoinRoomResponse:
        """
        Register a candidate for the room behind ``share_id``.

        Finds or creates the candidate's profile by email and adds one
        participant record. A profile that already joined is rejected.

        Raises:
            RoomNotFoundError: Unknown share id
            InvalidRoomError: The room is not accepting candidates
            AlreadyJoinedError: This candidate already has a record for the room
        """
        room = await self.rooms.get_by_share_id(share_id)
        if room is None:
            raise RoomNotFoundError("Invalid room link")
        if not room.is_active:
            raise InvalidRoomError(f"Room {room.name} is not accepting candidates")

        email = normalize_email(email)
        profile = await self.profiles.find_by_email(email)
        if profile is None:
            user_id = await self.profiles.add({
                "email": email,
                "full_name": full_name,
                "created_at": utc_now(),
            })
            logger.info(f"Created profile {user_id} for {email}")
        else:
            user_id = profile["id"]

        # A session run without a prior join leaves a record with an email but no user_id
        existing = await self.participants.find_by_room_and_user(room.id, user_id)
        if existing is None:
            existing = await self.participants.find_by_room_and_email(room.id, email)
        if existing is not None:
            raise AlreadyJoinedError(ALREADY_JOINED_MESSAGE)

        participant_id = await self.participants.add({
            "room_id": room.id,
            "user_id": user_id,
            "full_name": full_name,
            "email": email,
            "joined_at": utc_now(),
            "interview_status": InterviewStatus.JOINED.value,
        })
        logger.info(f"Candidate {email} joined room {room.id} as participant {participant_id}")
        return JoinRoomResponse(room_id=room.id, room_name=room.name, participant_id=participant_id)

    async def list_candidates(self, room_id: str) -> List[CandidateSummary]:
        """Roster for a room, most recent join first."""
        participants = await self.participants.list_by_room(room_id)
        return [
            CandidateSummary(
                id=p.id,
                full_name=p.full_name or "Unknown",
                email=p.email,
                joined_at=p.joined_at,
                interview_status=participant_status(p),
                score=participant_score(p),
                comments=p.comments or "No comments",
            )
            for p in participants
        ]

    async def get_candidate_evaluation(self, room_id: str, participant_id: str) -> CandidateEvaluationResponse:
        participant = await self.participants.get(participant_id)
        if participant is None or participant.room_id != room_id:
            raise ParticipantNotFoundError(f"Candidate {participant_id} not found in room {room_id}")

        evaluation = participant.evaluation_text
        if not evaluation:
            raise ParticipantNotFoundError(f"No evaluation stored for candidate {participant_id}")

        return CandidateEvaluationResponse(
            participant_id=participant.id,
            full_name=participant.full_name or "Unknown",
            score=participant_score(participant),
            evaluation=evaluation,
            transcript=(participant.evaluation_data or {}).get("transcript"),
            is_fallback=participant.is_fallback,
        )
