import asyncio
import logging
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from motor.motor_asyncio import AsyncIOMotorClient, AsyncIOMotorDatabase
from pymongo import ASCENDING, DESCENDING, ReturnDocument
from pymongo import errors as mongo_errors

from quartier.errors import (
    AuthorizationError, ConfigurationError, ConflictError, NotFoundError, TransportError
)
from quartier.realtime.backends import EventCallback, Subscription
from quartier.realtime.events import ChangeEvent, Record

logger = logging.getLogger(__name__)

# Code Mongo "Unauthorized"
UNAUTHORIZED_CODE = 13

# Index uniques : une seule candidature / un seul vote par utilisateur
UNIQUE_INDEXES = {
    "votes": ("proposal_id", "user_id"),
    "job_applications": ("job_id", "user_id"),
    "profiles": ("user_id",),
    "channel_secrets": ("channel_id",),
}


def create_client(mongo_url: str) -> AsyncIOMotorClient:
    try:
        return AsyncIOMotorClient(mongo_url, serverSelectionTimeoutMS=5000)
    except (mongo_errors.ConfigurationError, mongo_errors.InvalidURI) as e:
        raise ConfigurationError(f"MONGO_URL invalide : {e}")


def _to_record(doc: Dict[str, Any]) -> Record:
    record = dict(doc)
    record["id"] = str(record.pop("_id"))
    return record


def _object_id(identity: str) -> ObjectId:
    try:
        return ObjectId(str(identity))
    except (InvalidId, TypeError):
        raise NotFoundError(f"Identifiant invalide : {identity}")


def _to_filter(filters: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    query = dict(filters or {})
    if "id" in query:
        query["_id"] = _object_id(query.pop("id"))
    return query


@contextmanager
def _driver_errors(operation: str):
    """Traduit les erreurs pymongo dans la taxonomie du service."""
    try:
        yield
    except mongo_errors.DuplicateKeyError as e:
        raise ConflictError(f"duplicate key : {e.details.get('keyValue') if e.details else e}")
    except (mongo_errors.ConfigurationError, mongo_errors.InvalidURI) as e:
        raise ConfigurationError(str(e))
    except mongo_errors.OperationFailure as e:
        if e.code == UNAUTHORIZED_CODE:
            raise AuthorizationError(str(e))
        raise TransportError(f"{operation} : {e}")
    except mongo_errors.PyMongoError as e:
        logger.error(f"Erreur Mongo pendant {operation} : {e}")
        raise TransportError(f"{operation} : {e}")


class MongoRowStore:
    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    async def ensure_indexes(self) -> None:
        for collection, keys in UNIQUE_INDEXES.items():
            with _driver_errors(f"index {collection}"):
                await self.db[collection].create_index([(k, ASCENDING) for k in keys], unique=True)

    async def query(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                    order: Optional[str] = None) -> List[Record]:
        with _driver_errors(f"lecture {collection}"):
            cursor = self.db[collection].find(_to_filter(filters))
            if order:
                cursor = cursor.sort(order, DESCENDING)
            return [_to_record(doc) async for doc in cursor]

    async def get(self, collection: str, identity: str) -> Optional[Record]:
        with _driver_errors(f"lecture {collection}/{identity}"):
            doc = await self.db[collection].find_one({"_id": _object_id(identity)})
        return _to_record(doc) if doc else None

    async def insert(self, collection: str, payload: Record) -> Record:
        doc = {k: v for k, v in payload.items() if k != "id"}
        doc.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        with _driver_errors(f"insertion {collection}"):
            result = await self.db[collection].insert_one(doc)
        doc["_id"] = result.inserted_id
        return _to_record(doc)

    async def update(self, collection: str, identity: str, patch: Dict[str, Any]) -> Record:
        changes = {k: v for k, v in patch.items() if k != "id"}
        with _driver_errors(f"mise à jour {collection}/{identity}"):
            doc = await self.db[collection].find_one_and_update(
                {"_id": _object_id(identity)},
                {"$set": changes},
                return_document=ReturnDocument.AFTER,
            )
        if doc is None:
            raise NotFoundError(f"{collection}/{identity} introuvable")
        return _to_record(doc)

    async def increment(self, collection: str, identity: str, field: str, step: int = 1,
                        guard: Optional[Dict[str, Any]] = None) -> Optional[Record]:
        with _driver_errors(f"incrément {collection}/{identity}.{field}"):
            doc = await self.db[collection].find_one_and_update(
                {"_id": _object_id(identity), **(guard or {})},
                {"$inc": {field: step}},
                return_document=ReturnDocument.AFTER,
            )
        return _to_record(doc) if doc else None

    async def delete(self, collection: str, identity: str) -> None:
        with _driver_errors(f"suppression {collection}/{identity}"):
            await self.db[collection].delete_one({"_id": _object_id(identity)})


def _to_event(collection: str, change: Dict[str, Any]) -> Optional[ChangeEvent]:
    operation = change.get("operationType")
    if operation == "insert":
        return ChangeEvent.inserted(collection, _to_record(change["fullDocument"]))
    if operation in ("update", "replace"):
        full = change.get("fullDocument")
        if full is None:
            # supprimé entre-temps : l'événement delete suivra
            return None
        return ChangeEvent.updated(collection, _to_record(full))
    if operation == "delete":
        return ChangeEvent.deleted(collection, str(change["documentKey"]["_id"]))
    return None


class MongoChangeStream:
    """Flux de changements basé sur les change streams Mongo (replica set requis)."""

    def __init__(self, db: AsyncIOMotorDatabase):
        self.db = db

    def subscribe(self, collection: str, on_event: EventCallback) -> Subscription:
        handle = Subscription(collection=collection, callback=on_event)
        handle.task = asyncio.create_task(self._watch(handle))
        return handle

    def unsubscribe(self, handle: Subscription) -> None:
        handle.active = False
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()

    async def _watch(self, handle: Subscription) -> None:
        try:
            async with self.db[handle.collection].watch(full_document="updateLookup") as stream:
                async for change in stream:
                    if not handle.active:
                        break
                    event = _to_event(handle.collection, change)
                    if event is not None:
                        handle.callback(event)
        except asyncio.CancelledError:
            raise
        except mongo_errors.PyMongoError as e:
            logger.error(f"⚠️ Flux temps réel interrompu ({handle.collection}) : {e}")
