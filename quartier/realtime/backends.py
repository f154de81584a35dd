"""
Interfaces des collaborateurs externes consommés par le cœur temps réel.

Le code métier ne dépend que de ces protocoles ; les implémentations vivent
dans ``quartier.db.mongo`` (production) et ``quartier.db.memory`` (tests,
mode dégradé).
"""
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol

from quartier.realtime.events import ChangeEvent, Record

EventCallback = Callable[[ChangeEvent], None]


class RowStore(Protocol):
    async def query(self, collection: str, filters: Optional[Dict[str, Any]] = None,
                    order: Optional[str] = None) -> List[Record]: ...

    async def get(self, collection: str, identity: str) -> Optional[Record]: ...

    async def insert(self, collection: str, payload: Record) -> Record: ...

    async def update(self, collection: str, identity: str, patch: Dict[str, Any]) -> Record: ...

    # Incrément atomique. ``guard`` filtre le document à la manière de Mongo
    # ({"champ": valeur} ou {"champ": {"$lt": borne}}) ; None si rien ne correspond.
    async def increment(self, collection: str, identity: str, field: str, step: int = 1,
                        guard: Optional[Dict[str, Any]] = None) -> Optional[Record]: ...

    async def delete(self, collection: str, identity: str) -> None: ...


@dataclass(eq=False)
class Subscription:
    collection: str
    callback: EventCallback
    active: bool = True
    # tâche d'écoute pour les flux distants (Mongo)
    task: Any = field(default=None, repr=False)


class ChangeStream(Protocol):
    def subscribe(self, collection: str, on_event: EventCallback) -> Subscription: ...

    def unsubscribe(self, handle: Subscription) -> None: ...


class BlobStore(Protocol):
    async def upload(self, data: bytes, path: str) -> str: ...
