"""Abstract base class for the document store.

Defines the collection-oriented interface the repository consumes.  Any
backend (MongoDB, in-memory) implements this ABC.  Filters and update
documents use the MongoDB query language subset listed below, so the
conditional single-document update is the unit of atomicity:

  filters:  equality on (dotted) paths, ``$gte``/``$gt``/``$lte``/``$lt``,
            ``$ne``, ``$in``, ``$exists``, ``$regex`` (+ ``$options``),
            top-level ``$or``.  ``{"field": None}`` matches a missing field.
  updates:  ``$set``, ``$unset``, ``$inc``.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional

Document = dict[str, Any]

USERS = "users"
LISTINGS = "listings"
PHOTO_REQUESTS = "photo_requests"
TRANSACTIONS = "transactions"
MODERATION = "moderation"


class DuplicateKeyError(Exception):
    """An insert violated a collection's unique key."""


class RecordStore(ABC):
    """Abstract document store.

    Subclasses must implement lookup, insertion and conditional update.
    """

    @abstractmethod
    async def find_one(self, collection: str, filter: Document) -> Optional[Document]:
        """Return the first document matching ``filter``, or None."""

    @abstractmethod
    async def find(
        self,
        collection: str,
        filter: Document,
        sort: Optional[list[tuple[str, int]]] = None,
        limit: int = 0,
    ) -> list[Document]:
        """Return matching documents.

        Args:
            collection: Collection name.
            filter: Query document.
            sort: ``[(field, 1 | -1), ...]`` applied in order.
            limit: Maximum number of documents (0 = no limit).
        """

    @abstractmethod
    async def insert_one(self, collection: str, document: Document) -> None:
        """Insert a document.

        Raises:
            DuplicateKeyError: if the collection's unique key is taken.
        """

    @abstractmethod
    async def update_one(
        self, collection: str, filter: Document, update: Document
    ) -> bool:
        """Atomically apply ``update`` to the first document matching ``filter``.

        Returns:
            True if a document matched (and was updated), False otherwise.
        """

    @abstractmethod
    async def update_many(
        self, collection: str, filter: Document, update: Document
    ) -> int:
        """Apply ``update`` to every matching document; return the match count."""

    async def close(self) -> None:
        """Release backend resources.  Safe to call multiple times."""
