"""
Typed repositories over the document store: rooms, profiles and room participants.
"""

import logging
from typing import Any, Dict, List, Optional

from interview_rooms.core.constants import (
    PARTICIPANTS_COLLECTION,
    PROFILES_COLLECTION,
    ROOMS_COLLECTION,
)
from interview_rooms.core.exceptions import UnsupportedQueryError
from interview_rooms.core.models import Participant, Room, normalize_email
from interview_rooms.db.document_store import DocumentStore, sort_documents

logger = logging.getLogger(__name__)


async def find_ordered(
    store: DocumentStore,
    collection: str,
    filters: Dict[str, Any],
    order_by: str,
    descending: bool = True
) -> List[Dict[str, Any]]:
    """
    Equality query ordered at the store.

    Stores that cannot order the query (no composite index) get an unordered
    equality query sorted in memory. That costs a full read of the matching
    documents, so it is a fallback only.
    """
    try:
        return await store.find(collection, filters, order_by=order_by, descending=descending)
    except UnsupportedQueryError as e:
        logger.warning(f"Ordered query on {collection} unsupported ({e}); sorting {order_by} in memory")
        docs = await store.find(collection, filters)
        return sort_documents(docs, order_by, descending)


class RoomRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, room_id: str) -> Optional[Room]:
        doc = await self.store.get(ROOMS_COLLECTION, room_id)
        return Room.model_validate(doc) if doc else None

    async def get_by_share_id(self, share_id: str) -> Optional[Room]:
        docs = await self.store.find(ROOMS_COLLECTION, {"share_id": share_id}, limit=1)
        return Room.model_validate(docs[0]) if docs else None

    async def list_by_owner(self, owner_id: str) -> List[Room]:
        docs = await find_ordered(self.store, ROOMS_COLLECTION, {"created_by": owner_id}, "created_at")
        return [Room.model_validate(doc) for doc in docs]

    async def add(self, data: Dict[str, Any]) -> Room:
        room_id = await self.store.add(ROOMS_COLLECTION, data)
        return Room.model_validate({**data, "id": room_id})

    async def update(self, room_id: str, changes: Dict[str, Any]) -> None:
        await self.store.update(ROOMS_COLLECTION, room_id, changes)

    async def delete(self, room_id: str) -> None:
        await self.store.delete(ROOMS_COLLECTION, room_id)


class ProfileRepository:
    """Candidate profiles, keyed by normalized email."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def find_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        docs = await self.store.find(PROFILES_COLLECTION, {"email": normalize_email(email)}, limit=1)
        return docs[0] if docs else None

    async def add(self, data: Dict[str, Any]) -> str:
        return await self.store.add(PROFILES_COLLECTION, data)


class ParticipantRepository:
    def __init__(self, store: DocumentStore):
        self.store = store

    async def get(self, participant_id: str) -> Optional[Participant]:
        doc = await self.store.get(PARTICIPANTS_COLLECTION, participant_id)
        return Participant.model_validate(doc) if doc else None

    async def find_by_room_and_email(self, room_id: str, email: str) -> Optional[Participant]:
        docs = await self.store.find(
            PARTICIPANTS_COLLECTION,
            {"room_id": room_id, "email": normalize_email(email)},
            limit=1,
        )
        return Participant.model_validate(docs[0]) if docs else None

    async def find_by_room_and_user(self, room_id: str, user_id: str) -> Optional[Participant]:
        docs = await self.store.find(
            PARTICIPANTS_COLLECTION,
            {"room_id": room_id, "user_id": user_id},
            limit=1,
        )
        return Participant.model_validate(docs[0]) if docs else None

    async def list_by_room(self, room_id: str) -> List[Participant]:
        docs = await find_ordered(self.store, PARTICIPANTS_COLLECTION, {"room_id": room_id}, "joined_at")
        return [Participant.model_validate(doc) for doc in docs]

    async def add(self, data: Dict[str, Any]) -> str:
        return await self.store.add(PARTICIPANTS_COLLECTION, data)

    async def update(self, participant_id: str, changes: Dict[str, Any]) -> None:
        await self.store.update(PARTICIPANTS_COLLECTION, participant_id, changes)
