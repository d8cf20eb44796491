"""MongoDB-backed document store using the motor async driver."""

from __future__ import annotations

import logging
from typing import Any

from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorCollection
from pymongo import ReturnDocument
from pymongo.errors import PyMongoError

from quiz_live.core.errors import PersistenceError

logger = logging.getLogger(__name__)

_PROJECTION = {"_id": 0}


class MongoCollection:
    """Adapter from the collection interface to a motor collection."""

    def __init__(self, collection: AsyncIOMotorCollection) -> None:
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    async def find_one(self, filter: dict[str, Any]) -> dict[str, Any] | None:
        try:
            return await self._collection.find_one(filter, _PROJECTION)
        except PyMongoError as exc:
            raise PersistenceError(f"find_one on '{self.name}' failed: {exc}") from exc

    async def find(
        self,
        filter: dict[str, Any] | None = None,
        sort: list[tuple[str, int]] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        try:
            cursor = self._collection.find(filter or {}, _PROJECTION)
            if sort:
                cursor = cursor.sort(sort)
            if limit:
                cursor = cursor.limit(limit)
            return await cursor.to_list(length=limit)
        except PyMongoError as exc:
            raise PersistenceError(f"find on '{self.name}' failed: {exc}") from exc

    async def replace(self, doc_id: str, document: dict[str, Any]) -> None:
        stored = dict(document)
        stored["id"] = doc_id
        try:
            await self._collection.replace_one({"id": doc_id}, stored, upsert=True)
        except PyMongoError as exc:
            raise PersistenceError(f"replace on '{self.name}' failed: {exc}") from exc

    async def update(
        self,
        filter: dict[str, Any],
        set_fields: dict[str, Any],
        set_on_insert: dict[str, Any] | None = None,
        upsert: bool = False,
        many: bool = False,
    ) -> int:
        update: dict[str, Any] = {"$set": set_fields}
        if set_on_insert:
            update["$setOnInsert"] = set_on_insert
        try:
            if many:
                result = await self._collection.update_many(filter, update, upsert=upsert)
            else:
                result = await self._collection.update_one(filter, update, upsert=upsert)
        except PyMongoError as exc:
            raise PersistenceError(f"update on '{self.name}' failed: {exc}") from exc
        return result.matched_count + (1 if result.upserted_id is not None else 0)

    async def increment(
        self,
        doc_id: str,
        field: str,
        amount: int | float,
        set_fields: dict[str, Any] | None = None,
        set_on_insert: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        update: dict[str, Any] = {"$inc": {field: amount}}
        if set_fields:
            update["$set"] = set_fields
        if set_on_insert:
            update["$setOnInsert"] = set_on_insert
        try:
            return await self._collection.find_one_and_update(
                {"id": doc_id},
                update,
                projection=_PROJECTION,
                upsert=True,
                return_document=ReturnDocument.AFTER,
            )
        except PyMongoError as exc:
            raise PersistenceError(f"increment on '{self.name}' failed: {exc}") from exc

    async def delete(self, filter: dict[str, Any]) -> int:
        try:
            result = await self._collection.delete_many(filter)
        except PyMongoError as exc:
            raise PersistenceError(f"delete on '{self.name}' failed: {exc}") from exc
        return result.deleted_count

    async def count(self, filter: dict[str, Any] | None = None) -> int:
        try:
            return await self._collection.count_documents(filter or {})
        except PyMongoError as exc:
            raise PersistenceError(f"count on '{self.name}' failed: {exc}") from exc


class MongoDocumentStore:
    """Document store backed by one MongoDB database."""

    def __init__(self, uri: str, database: str) -> None:
        self._client = AsyncIOMotorClient(uri, tz_aware=True)
        self._db = self._client[database]
        logger.info("Using MongoDB database '%s'", database)

    def collection(self, name: str) -> MongoCollection:
        return MongoCollection(self._db[name])

    async def ensure_indexes(self) -> None:
        try:
            for name in ("participants", "answers", "classes", "challenges"):
                await self._db[name].create_index("id", unique=True)
            await self._db.participants.create_index("classId")
            await self._db.answers.create_index([("classId", 1), ("questionId", 1)])
            await self._db.challenges.create_index("classId")
        except PyMongoError as exc:
            raise PersistenceError(f"Index creation failed: {exc}") from exc

    async def close(self) -> None:
        self._client.close()
