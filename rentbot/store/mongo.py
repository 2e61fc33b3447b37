"""MongoDB RecordStore implementation.

Uses ``motor`` (async PyMongo) so store calls never block the event loop.
``ensure_collections`` applies strict JSON-schema validators and indexes
on startup; the unique indexes back the repository's uniqueness
assumptions (one user per phone, one listing per id, one transaction per
reference).
"""

from __future__ import annotations

import logging
from typing import Optional

from motor.motor_asyncio import AsyncIOMotorClient
from pymongo import ASCENDING, DESCENDING, IndexModel
from pymongo.errors import DuplicateKeyError as MongoDuplicateKeyError
from pymongo.errors import OperationFailure

from .base import (
    LISTINGS,
    MODERATION,
    PHOTO_REQUESTS,
    TRANSACTIONS,
    USERS,
    Document,
    DuplicateKeyError,
    RecordStore,
)

logger = logging.getLogger(__name__)

_NUMBER = ["int", "long", "double"]

SCHEMAS: dict[str, dict] = {
    USERS: {
        "bsonType": "object",
        "required": ["phone", "credits", "created_at", "updated_at"],
        "properties": {
            "phone": {"bsonType": "string"},
            "credits": {"bsonType": _NUMBER, "minimum": 0},
            "verified": {"bsonType": "bool"},
            "role": {"bsonType": "string"},
            "opted_out": {"bsonType": "bool"},
            "search_count_day": {"bsonType": _NUMBER, "minimum": 0},
            "photo_request_count_day": {"bsonType": _NUMBER, "minimum": 0},
            "session": {"bsonType": ["object", "null"]},
            "created_at": {"bsonType": "date"},
            "updated_at": {"bsonType": "date"},
        },
    },
    LISTINGS: {
        "bsonType": "object",
        "required": ["id", "owner_phone", "published", "created_at"],
        "properties": {
            "id": {"bsonType": "string"},
            "owner_phone": {"bsonType": "string"},
            "rent": {"bsonType": _NUMBER + ["null"], "minimum": 0},
            "deposit": {"bsonType": _NUMBER + ["null"], "minimum": 0},
            "bedrooms": {"bsonType": _NUMBER + ["string", "null"]},
            "amenities": {"bsonType": "array", "items": {"bsonType": "string"}},
            "external_images": {"bsonType": "array", "items": {"bsonType": "string"}},
            "published": {"bsonType": "bool"},
            "created_at": {"bsonType": "date"},
        },
    },
    PHOTO_REQUESTS: {
        "bsonType": "object",
        "required": ["phone", "listing_id", "status", "created_at"],
        "properties": {
            "status": {"enum": ["pending_confirmation", "completed", "canceled"]},
        },
    },
    TRANSACTIONS: {
        "bsonType": "object",
        "required": ["reference", "phone", "amount", "status", "created_at"],
        "properties": {
            "type": {"enum": ["credit_purchase", "listing_publish"]},
            "status": {"enum": ["pending", "success", "failed"]},
            "amount": {"bsonType": _NUMBER, "minimum": 0},
        },
    },
    MODERATION: {
        "bsonType": "object",
        "required": ["phone", "listing_id", "reason", "status", "created_at"],
        "properties": {
            "status": {"enum": ["open", "closed"]},
        },
    },
}

INDEXES: dict[str, list[IndexModel]] = {
    USERS: [
        IndexModel([("phone", ASCENDING)], name="users_phone_unique", unique=True),
        IndexModel([("credits", ASCENDING)], name="users_credits_idx"),
    ],
    LISTINGS: [
        IndexModel([("id", ASCENDING)], name="listings_id_unique", unique=True),
        IndexModel([("owner_phone", ASCENDING)], name="listings_owner_idx"),
        IndexModel(
            [("published", ASCENDING), ("created_at", DESCENDING)],
            name="listings_published_idx",
        ),
    ],
    PHOTO_REQUESTS: [
        IndexModel([("phone", ASCENDING), ("status", ASCENDING)], name="photo_requests_phone_status_idx"),
        IndexModel([("listing_id", ASCENDING)], name="photo_requests_listing_idx"),
    ],
    TRANSACTIONS: [
        IndexModel([("reference", ASCENDING)], name="transactions_reference_unique", unique=True),
        IndexModel([("phone", ASCENDING), ("created_at", DESCENDING)], name="transactions_phone_created_idx"),
        IndexModel([("status", ASCENDING)], name="transactions_status_idx"),
    ],
    MODERATION: [
        IndexModel([("listing_id", ASCENDING)], name="moderation_listing_idx"),
        IndexModel([("status", ASCENDING), ("created_at", DESCENDING)], name="moderation_status_created_idx"),
    ],
}


class MongoRecordStore(RecordStore):
    """RecordStore backed by a MongoDB database."""

    def __init__(self, uri: str, db_name: str = "rentbot") -> None:
        if not uri:
            raise ValueError("MongoDB URI must be provided (MONGODB_URI).")
        self._client = AsyncIOMotorClient(uri, tz_aware=True)
        self._db = self._client[db_name]

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    async def ensure_collections(self) -> None:
        """Create collections with validators and indexes (idempotent)."""
        existing = set(await self._db.list_collection_names())
        for name, schema in SCHEMAS.items():
            validator = {"$jsonSchema": schema}
            if name not in existing:
                await self._db.create_collection(
                    name,
                    validator=validator,
                    validationLevel="strict",
                    validationAction="error",
                )
            else:
                try:
                    await self._db.command(
                        "collMod",
                        name,
                        validator=validator,
                        validationLevel="strict",
                        validationAction="error",
                    )
                except OperationFailure as exc:
                    logger.warning("collMod failed for %s: %s", name, exc)

            try:
                await self._db[name].create_indexes(INDEXES[name])
            except OperationFailure as exc:
                logger.warning("create_indexes failed for %s: %s", name, exc)

    # ------------------------------------------------------------------
    # RecordStore interface
    # ------------------------------------------------------------------

    async def find_one(self, collection: str, filter: Document) -> Optional[Document]:
        return await self._db[collection].find_one(filter, projection={"_id": False})

    async def find(
        self,
        collection: str,
        filter: Document,
        sort: Optional[list[tuple[str, int]]] = None,
        limit: int = 0,
    ) -> list[Document]:
        cursor = self._db[collection].find(filter, projection={"_id": False})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=limit or None)

    async def insert_one(self, collection: str, document: Document) -> None:
        try:
            # insert_one adds _id to its argument
            await self._db[collection].insert_one(dict(document))
        except MongoDuplicateKeyError as exc:
            raise DuplicateKeyError(str(exc)) from exc

    async def update_one(
        self, collection: str, filter: Document, update: Document
    ) -> bool:
        result = await self._db[collection].update_one(filter, update)
        return result.matched_count == 1

    async def update_many(
        self, collection: str, filter: Document, update: Document
    ) -> int:
        result = await self._db[collection].update_many(filter, update)
        return result.matched_count

    async def close(self) -> None:
        self._client.close()
