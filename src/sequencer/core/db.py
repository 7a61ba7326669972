"""Revisioned key/value stores backing the sequence registry.

Every record carries an integer "revision". ``swap`` writes a record only if
its stored revision still equals the expected one, which turns the registry's
read-modify-write into an optimistic transaction.
"""

import copy
import re
from abc import ABC, abstractmethod
from typing import Any

import structlog
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.errors import DuplicateKeyError, PyMongoError

from sequencer.errors import PersistenceError

logger = structlog.get_logger(__name__)

REVISION = "revision"


class SequenceStore(ABC):
    """Flat storage of JSON-like records keyed by namespaced strings."""

    async def on_start(self) -> None:
        """Prepare the backend on application startup."""

    async def on_stop(self) -> None:
        """Release backend resources on shutdown."""

    @abstractmethod
    async def get(self, key: str) -> dict[str, Any] | None:
        """Return the record stored under key (with its revision), or None."""

    @abstractmethod
    async def put(self, key: str, value: dict[str, Any]) -> None:
        """Store value unconditionally, bumping the revision."""

    @abstractmethod
    async def swap(self, key: str, value: dict[str, Any], expected_revision: int) -> bool:
        """Store value only if the record's revision equals expected_revision.

        Revision 0 means the record must not exist yet. Returns False on conflict.
        """

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove the record; returns whether it existed."""

    @abstractmethod
    async def keys(self, prefix: str) -> list[str]:
        """All stored keys starting with prefix, sorted."""


class MemorySequenceStore(SequenceStore):
    """In-process store. Atomic within one event loop, shared by nothing else."""

    def __init__(self) -> None:
        self._records: dict[str, dict[str, Any]] = {}

    async def get(self, key: str) -> dict[str, Any] | None:
        record = self._records.get(key)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, key: str, value: dict[str, Any]) -> None:
        revision = self._records.get(key, {}).get(REVISION, 0)
        self._records[key] = {**copy.deepcopy(value), REVISION: revision + 1}

    async def swap(self, key: str, value: dict[str, Any], expected_revision: int) -> bool:
        revision = self._records.get(key, {}).get(REVISION, 0)
        if revision != expected_revision:
            return False
        self._records[key] = {**copy.deepcopy(value), REVISION: expected_revision + 1}
        return True

    async def delete(self, key: str) -> bool:
        return self._records.pop(key, None) is not None

    async def keys(self, prefix: str) -> list[str]:
        return sorted(k for k in self._records if k.startswith(prefix))


class MongoSequenceStore(SequenceStore):
    """MongoDB store; one document per record with the storage key as _id.

    ``swap`` is a single filtered update (or an insert relying on the _id
    uniqueness), so concurrent writers across processes cannot both win.
    """

    def __init__(self, collection: AsyncCollection[dict[str, Any]]) -> None:
        self._collection = collection

    async def on_start(self) -> None:
        """Verify the backend is reachable."""
        try:
            await self._collection.database.command("ping")
        except PyMongoError as e:
            raise PersistenceError(f"MongoDB is not reachable: {e}") from e
        logger.debug("mongo_store_started", collection=self._collection.name)

    async def get(self, key: str) -> dict[str, Any] | None:
        try:
            doc = await self._collection.find_one({"_id": key})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to read '{key}': {e}") from e
        if doc is None:
            return None
        doc.pop("_id", None)
        return doc

    async def put(self, key: str, value: dict[str, Any]) -> None:
        fields = {k: v for k, v in value.items() if k != REVISION}
        try:
            await self._collection.update_one({"_id": key}, {"$set": fields, "$inc": {REVISION: 1}}, upsert=True)
        except PyMongoError as e:
            raise PersistenceError(f"Failed to write '{key}': {e}") from e

    async def swap(self, key: str, value: dict[str, Any], expected_revision: int) -> bool:
        fields = {k: v for k, v in value.items() if k != REVISION}
        try:
            if expected_revision == 0:
                try:
                    await self._collection.insert_one({"_id": key, **fields, REVISION: 1})
                except DuplicateKeyError:
                    return False
                return True

            result = await self._collection.update_one(
                {"_id": key, REVISION: expected_revision},
                {"$set": {**fields, REVISION: expected_revision + 1}},
            )
        except PyMongoError as e:
            raise PersistenceError(f"Failed to write '{key}': {e}") from e
        return result.matched_count == 1

    async def delete(self, key: str) -> bool:
        try:
            result = await self._collection.delete_one({"_id": key})
        except PyMongoError as e:
            raise PersistenceError(f"Failed to delete '{key}': {e}") from e
        return result.deleted_count == 1

    async def keys(self, prefix: str) -> list[str]:
        try:
            cursor = self._collection.find({"_id": {"$regex": f"^{re.escape(prefix)}"}}, {"_id": 1})
            return sorted([doc["_id"] async for doc in cursor])
        except PyMongoError as e:
            raise PersistenceError(f"Failed to list keys under '{prefix}': {e}") from e
