"""
Document Store Interface
Key-value document storage with query-by-field-equality, ordering and add/update/delete.
Implementations: InMemoryDocumentStore (here), MongoDocumentStore (db/mongo.py)
"""

import copy
import uuid
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from interview_rooms.core.exceptions import StorageError


class DocumentStore(ABC):
    """
    Abstract base class for durable document stores.

    Documents are plain dicts; every returned document carries its id under ``"id"``.
    """

    @abstractmethod
    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        """
        Fetch one document by id.

        Returns:
            The document, or None if it does not exist
        """
        pass

    @abstractmethod
    async def find(
        self,
        collection: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        """
        Query documents whose fields equal every value in ``filters``.

        Raises:
            UnsupportedQueryError: If the store cannot order this query
            StorageError: On any other store failure
        """
        pass

    @abstractmethod
    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        """
        Create a document.

        Returns:
            The new document id
        """
        pass

    @abstractmethod
    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        """
        Merge ``changes`` into an existing document.

        Raises:
            StorageError: If the document does not exist or the write fails
        """
        pass

    @abstractmethod
    async def delete(self, collection: str, doc_id: str) -> None:
        """
        Remove a document.

        Raises:
            StorageError: If the document does not exist or the delete fails
        """
        pass

    async def close(self) -> None:
        """Release connections held by the store."""
        pass


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local document store.

    No await happens between a read and the matching write inside one call, so each
    call is atomic on the event loop. Documents are deep-copied in and out.
    """

    def __init__(self):
        self._collections: Dict[str, Dict[str, Dict[str, Any]]] = {}

    def _collection(self, name: str) -> Dict[str, Dict[str, Any]]:
        return self._collections.setdefault(name, {})

    async def get(self, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
        doc = self._collection(collection).get(doc_id)
        if doc is None:
            return None
        return {**copy.deepcopy(doc), "id": doc_id}

    async def find(
        self,
        collection: str,
        filters: Dict[str, Any],
        order_by: Optional[str] = None,
        descending: bool = False,
        limit: Optional[int] = None
    ) -> List[Dict[str, Any]]:
        matches = [
            {**copy.deepcopy(doc), "id": doc_id}
            for doc_id, doc in self._collection(collection).items()
            if all(doc.get(field) == value for field, value in filters.items())
        ]
        if order_by:
            matches = sort_documents(matches, order_by, descending)
        if limit is not None:
            matches = matches[:limit]
        return matches

    async def add(self, collection: str, data: Dict[str, Any]) -> str:
        doc_id = uuid.uuid4().hex
        doc = copy.deepcopy(data)
        doc.pop("id", None)
        self._collection(collection)[doc_id] = doc
        return doc_id

    async def update(self, collection: str, doc_id: str, changes: Dict[str, Any]) -> None:
        docs = self._collection(collection)
        if doc_id not in docs:
            raise StorageError(f"Document {collection}/{doc_id} not found")
        update = copy.deepcopy(changes)
        update.pop("id", None)
        docs[doc_id].update(update)

    async def delete(self, collection: str, doc_id: str) -> None:
        docs = self._collection(collection)
        if docs.pop(doc_id, None) is None:
            raise StorageError(f"Document {collection}/{doc_id} not found")


def sort_documents(docs: List[Dict[str, Any]], order_by: str, descending: bool = False) -> List[Dict[str, Any]]:
    """Sort documents on one field; documents missing the field always go last."""
    present = [d for d in docs if d.get(order_by) is not None]
    missing = [d for d in docs if d.get(order_by) is None]
    present.sort(key=lambda d: d[order_by], reverse=descending)
    return present + missing
