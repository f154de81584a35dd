"""
Store en mémoire : utilisé par les tests et en mode dégradé quand le backend
Mongo n'est pas configuré. Chaque écriture est publiée sur le flux de
changements, y compris vers l'auteur de l'écriture.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
from uuid import uuid4

from quartier.errors import ConflictError, NotFoundError
from quartier.realtime.backends import EventCallback, Subscription
from quartier.realtime.events import ChangeEvent, Record

logger = logging.getLogger(__name__)


class MemoryChangeStream:
    def __init__(self):
        self._subscriptions: Dict[str, List[Subscription]] = {}

    def subscribe(self, collection: str, on_event: EventCallback) -> Subscription:
        handle = Subscription(collection=collection, callback=on_event)
        self._subscriptions.setdefault(collection, []).append(handle)
        return handle

    def unsubscribe(self, handle: Subscription) -> None:
        handle.active = False
        subscribers = self._subscriptions.get(handle.collection, [])
        if handle in subscribers:
            subscribers.remove(handle)

    def subscriber_count(self, collection: str) -> int:
        return len(self._subscriptions.get(collection, []))

    def publish(self, event: ChangeEvent) -> None:
        for handle in list(self._subscriptions.get(event.collection, [])):
            if not handle.active:
                continue
            try:
                handle.callback(event)
            except Exception as e:
                logger.error(f"Abonné {event.collection} en erreur : {e}")


class MemoryRowStore:
    def __init__(self, changes: Optional[MemoryChangeStream] = None,
                 unique: Optional[Dict[str, Tuple[str, ...]]] = None):
        self.changes = changes or MemoryChangeStream()
        self._unique = unique or {}
        self._tables: Dict[str, Dict[str, Record]] = {}

    def _table(self, collection: str) -> Dict[str, Record]:
        return self._tables.setdefault(collection, {})

    @staticmethod
    def _matches(record: Record, filters: Optional[Dict[str, Any]]) -> bool:
        return all(record.get(k) == v for k, v in (filters or {}).items())

    async def query(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                    order: Optional[str] = None) -> List[Record]:
        rows = [dict(r) for r in self._table(collection).values() if self._matches(r, filters)]
        if order:
            rows.sort(key=lambda r: (r.get(order) is not None, r.get(order) if r.get(order) is not None else 0),
                      reverse=True)
        return rows

    async def get(self, collection: str, identity: str) -> Optional[Record]:
        record = self._table(collection).get(str(identity))
        return dict(record) if record else None

    async def insert(self, collection: str, payload: Record) -> Record:
        table = self._table(collection)
        keys = self._unique.get(collection)
        if keys:
            for existing in table.values():
                if all(existing.get(k) == payload.get(k) for k in keys):
                    raise ConflictError(
                        f'duplicate key value violates unique constraint "{collection}_{"_".join(keys)}_key"'
                    )

        record = {k: v for k, v in payload.items() if k != "id"}
        record["id"] = uuid4().hex
        record.setdefault("created_at", datetime.now(timezone.utc).isoformat())
        table[record["id"]] = record
        self.changes.publish(ChangeEvent.inserted(collection, dict(record)))
        return dict(record)

    async def update(self, collection: str, identity: str, patch: Dict[str, Any]) -> Record:
        table = self._table(collection)
        current = table.get(str(identity))
        if current is None:
            raise NotFoundError(f"{collection}/{identity} introuvable")
        record = {**current, **{k: v for k, v in patch.items() if k != "id"}}
        table[str(identity)] = record
        self.changes.publish(ChangeEvent.updated(collection, dict(record)))
        return dict(record)

    @staticmethod
    def _satisfies(record: Record, guard: Optional[Dict[str, Any]]) -> bool:
        for key, condition in (guard or {}).items():
            value = record.get(key)
            if isinstance(condition, dict):
                bound = condition.get("$lt")
                if bound is None or value is None or not value < bound:
                    return False
            elif value != condition:
                return False
        return True

    async def increment(self, collection: str, identity: str, field: str, step: int = 1,
                        guard: Optional[Dict[str, Any]] = None) -> Optional[Record]:
        # lecture, contrôle et écriture sans point de suspension entre eux
        table = self._table(collection)
        current = table.get(str(identity))
        if current is None or not self._satisfies(current, guard):
            return None
        record = {**current, field: (current.get(field) or 0) + step}
        table[str(identity)] = record
        self.changes.publish(ChangeEvent.updated(collection, dict(record)))
        return dict(record)

    async def delete(self, collection: str, identity: str) -> None:
        table = self._table(collection)
        if table.pop(str(identity), None) is not None:
            self.changes.publish(ChangeEvent.deleted(collection, str(identity)))
