"""
Collection synchronisée en temps réel.

Un ``SyncedCollection`` présente une vue locale et vivante d'une collection
du store : chargement initial (trié, filtré par scope) puis application des
événements INSERT / UPDATE / DELETE reçus du flux de changements.

- Hors-ligne : pas de chargement, ``loading`` passe à False immédiatement et
  ``records`` reste sur la liste de repli.
- Les événements reçus pendant le chargement initial sont journalisés puis
  rejoués sur le résultat du chargement (application idempotente par id).
- Un ``replace()`` appelé pendant un chargement rend ce chargement caduc.
- Après ``close()``, plus aucun callback ne modifie l'état.
"""
import asyncio
import logging
from typing import Any, Callable, List, Optional

from quartier.errors import ConfigurationError, translate_error
from quartier.realtime.backends import ChangeStream, RowStore
from quartier.realtime.events import ChangeEvent, ChangeType, Record

logger = logging.getLogger(__name__)

# Métadonnée locale d'un enregistrement spéculatif, jamais envoyée au store
SYNC_STATUS = "sync_status"

Listener = Callable[["SyncedCollection"], None]
Interceptor = Callable[[ChangeEvent], bool]


def apply_event(records: List[Record], event: ChangeEvent) -> List[Record]:
    """Applique un événement sur une liste, sans jamais dupliquer un id."""
    identity = event.record_id
    if event.type is ChangeType.DELETED:
        return [r for r in records if str(r.get("id")) != identity]

    incoming = dict(event.record or {})
    updated = []
    found = False
    for r in records:
        if str(r.get("id")) == identity:
            found = True
            if SYNC_STATUS in r and SYNC_STATUS not in incoming:
                incoming[SYNC_STATUS] = r[SYNC_STATUS]
            updated.append(incoming)
        else:
            updated.append(r)

    if found:
        return updated
    if event.type is ChangeType.INSERTED:
        # Ajout en tête (hypothèse : tri par date décroissante), sans re-tri
        return [incoming] + records
    return records


class SyncedCollection:
    def __init__(
        self,
        rows: RowStore,
        changes: ChangeStream,
        collection: str,
        scope: Optional[str] = None,
        sort_field: Optional[str] = None,
        fallback: Optional[List[Record]] = None,
        scope_field: str = "community_id",
        realtime: bool = True,
        is_online: Optional[Callable[[], bool]] = None,
        status: Any = None,
    ):
        self.collection = collection
        self.scope = scope
        self.scope_field = scope_field
        self.sort_field = sort_field
        self.loading = True
        self.error: Optional[str] = None
        self.revision = 0

        self._rows = rows
        self._changes = changes
        self._realtime = realtime
        self._is_online = is_online or (lambda: True)
        self._status = status
        self._records: List[Record] = [dict(r) for r in (fallback or [])]

        self._opened = False
        self._alive = False
        self._subscription = None
        self._fetch_task: Optional[asyncio.Task] = None
        self._generation = 0
        self._journal: Optional[List[ChangeEvent]] = None
        self._listeners: List[Listener] = []
        self._interceptors: List[Interceptor] = []

    def __repr__(self):
        return (f"<SyncedCollection(collection='{self.collection}', scope='{self.scope}', "
                f"records={len(self._records)}, alive={self._alive})>")

    @property
    def records(self) -> List[Record]:
        return list(self._records)

    @property
    def alive(self) -> bool:
        return self._alive

    # ===============================
    # CYCLE DE VIE
    # ===============================
    def open(self) -> "SyncedCollection":
        if self._opened:
            return self
        self._opened = True
        self._alive = True

        if self._realtime:
            self._subscription = self._changes.subscribe(self.collection, self._on_event)

        if not self._is_online():
            logger.info(f"[{self.collection}] Hors-ligne : chargement initial ignoré")
            self.loading = False
            self._notify()
            return self

        self._journal = []
        self._fetch_task = asyncio.create_task(self._fetch(self._generation))
        return self

    async def wait_loaded(self) -> "SyncedCollection":
        if self._fetch_task is not None:
            await self._fetch_task
        return self

    def close(self) -> None:
        if not self._alive:
            return
        self._alive = False
        if self._subscription is not None:
            self._changes.unsubscribe(self._subscription)
            self._subscription = None
        self._listeners.clear()
        self._interceptors.clear()
        logger.debug(f"[{self.collection}] Snapshot fermé")

    async def __aenter__(self) -> "SyncedCollection":
        return self.open()

    async def __aexit__(self, exc_type, exc, tb):
        self.close()

    # ===============================
    # ÉCOUTE
    # ===============================
    def on_change(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def remove():
            if listener in self._listeners:
                self._listeners.remove(listener)
        return remove

    def intercept(self, interceptor: Interceptor) -> None:
        """Enregistre un filtre consulté avant l'application d'un événement.

        L'intercepteur renvoie True s'il a consommé l'événement.
        """
        self._interceptors.append(interceptor)

    # ===============================
    # ÉCRITURES LOCALES
    # ===============================
    def replace(self, records: List[Record]) -> None:
        if self._opened and not self._alive:
            return
        # Tout chargement en cours devient caduc
        self._generation += 1
        self._set_records([dict(r) for r in records])
        self._notify()

    def find(self, identity: str) -> Optional[Record]:
        for r in self._records:
            if str(r.get("id")) == str(identity):
                return dict(r)
        return None

    def patch(self, identity: str, fields: dict) -> Optional[Record]:
        records = self.records
        for i, r in enumerate(records):
            if str(r.get("id")) == str(identity):
                records[i] = {**r, **fields}
                self.replace(records)
                return records[i]
        return None

    # ===============================
    # INTERNES
    # ===============================
    def _in_scope(self, record: Optional[Record]) -> bool:
        if self.scope is None:
            return True
        if record is None:
            return False
        return record.get(self.scope_field) == self.scope

    def _set_records(self, records: List[Record]) -> None:
        if self._opened and not self._alive:
            return
        self._records = records
        self.revision += 1

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self)
            except Exception as e:
                logger.error(f"[{self.collection}] Erreur dans un listener : {e}")

    async def _fetch(self, generation: int) -> None:
        filters = {self.scope_field: self.scope} if self.scope is not None else None
        try:
            rows = await self._rows.query(self.collection, filters=filters, order=self.sort_field)
        except ConfigurationError as e:
            if self._status is not None:
                self._status.report_configuration_error(str(e))
            if self._alive:
                self.error = translate_error(e)
        except Exception as e:
            if self._alive:
                self.error = str(e) or e.__class__.__name__
                logger.error(f"[{self.collection}] Erreur de chargement : {self.error}")
        else:
            if not self._alive:
                logger.debug(f"[{self.collection}] Chargement terminé après fermeture, ignoré")
            elif generation != self._generation:
                logger.debug(f"[{self.collection}] Chargement caduc (replace entre-temps), ignoré")
            else:
                merged = [dict(r) for r in rows if self._in_scope(r)]
                for event in self._journal or []:
                    merged = apply_event(merged, event)
                self._set_records(merged)
        finally:
            self._journal = None
            if self._alive:
                self.loading = False
                self._notify()

    def _on_event(self, event: ChangeEvent) -> None:
        if not self._alive or event.collection != self.collection:
            return

        if event.type is not ChangeType.DELETED and not self._in_scope(event.record):
            # Filtrage de scope côté client (sécurité additionnelle)
            if event.type is ChangeType.UPDATED and self.find(event.record_id) is not None:
                event = ChangeEvent.deleted(self.collection, event.record_id)
            else:
                return

        if self._journal is not None:
            self._journal.append(event)

        for interceptor in list(self._interceptors):
            if interceptor(event):
                return

        self._set_records(apply_event(self._records, event))
        self._notify()
