"""
MongoDB document store.

pymongo is blocking, so every driver call runs in a worker thread.
"""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import OperationFailure, PyMongoError

from interview_rooms.core.exceptions import StorageError, UnsupportedQueryError
from interview_rooms.db.document_store import DocumentStore

logger = logging.getLogger(__name__)

# Server error codes meaning "this sort needs an index we do not have"
_SORT_LIMIT_CODES = {96, 292}


def doc_with_id(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """
    Convert MongoDB document for callers: add 'id' from '_id' and remove '_id'.
    Returns None if doc is None.
    """
    if doc is None:
        return None
    d = dict(doc)
    if "_id" in d:
        d["id"] = str(d["_id"])
        del d["_id"]
    return d


def to_object_id(id_val: Any):
    """Convert string id to ObjectId if it's a valid 24-char hex; else return as-is."""
    if id_val is None:
        return None
    s = str(id_val)
    if ObjectId.is_valid(s) and len(s) == 24:
        return ObjectId(s)
    return id_val


class MongoDocumentStore(DocumentStore):
    """DocumentStore backed by a MongoDB database."""

    def __init__(self, uri: str = None, db_name: str = "interview_rooms", client: MongoClient = None):
        """
        Args:
            uri: MongoDB connection string (ignored when ``client`` is given)
            db_name: Database name
            client: Pre-built client (tests pass a mongomock client)
        """
        self._client = client or MongoClient(uri, serverSelectionTimeoutMS=5000)
        self._db = self._client.get_database(db_name)
        logger.info(f"MongoDB document store ready (database={db_name})")

    async def _run(self, func, *args, **kwargs):
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except OperationFailure as e:
            if e.code in _SORT_LIMIT_CODES:
                raise UnsupportedQueryError(f"Query needs an index: {e}") from e
            raise StorageError(f"MongoDB operation failed: {e}") from e
        except PyMongoError as e:
            raise StorageError(f"MongoDB error: {e}") from e

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = await self._run(self._db[collection].find_one, {"_id": to_object_id(doc_id)})
        return doc_with_id(doc)

    async def find(
        self,
        collection: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        def _query():
            cursor = self._db[collection].find(dict(filters))
            if order_by:
                cursor = cursor.sort(order_by, DESCENDING if descending else ASCENDING)
            if limit is not None:
                cursor = cursor.limit(limit)
            return [doc_with_id(doc) for doc in cursor]

        return await self._run(_query)

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc = {k: v for k, v in data.items() if k != "id"}
        result = await self._run(self._db[collection].insert_one, doc)
        return str(result.inserted_id)

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        update = {k: v for k, v in changes.items() if k != "id"}
        result = await self._run(
            self._db[collection].update_one,
            {"_id": to_object_id(doc_id)},
            {"$set": update},
        )
        if result.matched_count == 0:
            raise StorageError(f"Document {collection}/{doc_id} not found")

    async def delete(self, collection: str, doc_id: str) -> None:
        result = await self._run(self._db[collection].delete_one, {"_id": to_object_id(doc_id)})
        if result.deleted_count == 0:
            raise StorageError(f"Document {collection}/{doc_id} not found")

    async def close(self) -> None:
        self._client.close()
