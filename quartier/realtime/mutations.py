"""
Flux de mutation optimiste.

``OptimisticMutation`` : création spéculative (message, annonce, alerte).
L'enregistrement apparaît tout de suite avec un id temporaire et le statut
``pending`` ; la réponse du store le remplace (``confirmed``), un échec le
marque ``failed`` sans le retirer.

``CounterMutation`` : incrément optimiste d'un compteur (votes, candidatures).
L'incrément n'est jamais recalculé depuis la réponse ; en cas d'échec il est
explicitement annulé.
"""
import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set
from uuid import uuid4

from quartier.errors import QuartierError, translate_error
from quartier.realtime.events import ChangeEvent, ChangeType, Record
from quartier.realtime.store import SYNC_STATUS, SyncedCollection

logger = logging.getLogger(__name__)

# Session d'origine d'une écriture, sert à reconnaître son propre écho
ORIGIN = "origin_session"
TEMP_PREFIX = "tmp-"


class SyncStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    # purement visuel, jamais un signal de cohérence
    READ = "read"


@dataclass
class Outcome:
    status: str
    record: Optional[Record] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == SyncStatus.CONFIRMED.value

    @classmethod
    def ignored(cls) -> "Outcome":
        return cls(status="ignored")

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "id": self.record.get("id") if self.record else None,
            "error": self.error,
        }


class OptimisticMutation:
    def __init__(
        self,
        snapshot: SyncedCollection,
        write: Callable[[Record], Awaitable[Record]],
        required: Iterable[str] = (),
        session_id: Optional[str] = None,
        at_head: bool = True,
        read_receipt_delay: Optional[float] = None,
    ):
        self.snapshot = snapshot
        self.required = tuple(required)
        self.session_id = session_id or uuid4().hex
        self._write = write
        self._at_head = at_head
        self._read_receipt_delay = read_receipt_delay
        self._payloads: Dict[str, Record] = {}
        self._inflight: Set[str] = set()
        self._echoed: Dict[str, str] = {}
        snapshot.intercept(self._on_echo)

    def is_valid(self, payload: Record) -> bool:
        for field in self.required:
            value = payload.get(field)
            if value is None or (isinstance(value, str) and not value.strip()):
                return False
        return True

    def is_inflight(self, temp_id: str) -> bool:
        return temp_id in self._inflight

    async def submit(self, payload: Record) -> Outcome:
        if not self.is_valid(payload):
            logger.debug(f"[{self.snapshot.collection}] Mutation ignorée : champs requis manquants")
            return Outcome.ignored()

        temp_id = f"{TEMP_PREFIX}{uuid4().hex}"
        payload = {**payload, ORIGIN: self.session_id}
        self._payloads[temp_id] = payload

        speculative = {**payload, "id": temp_id, SYNC_STATUS: SyncStatus.PENDING.value}
        records = self.snapshot.records
        self.snapshot.replace([speculative] + records if self._at_head else records + [speculative])
        return await self._send(temp_id)

    async def retry(self, temp_id: str) -> Outcome:
        record = self.snapshot.find(temp_id)
        if (temp_id in self._inflight or temp_id not in self._payloads or record is None
                or record.get(SYNC_STATUS) != SyncStatus.FAILED.value):
            return Outcome.ignored()
        self.snapshot.patch(temp_id, {SYNC_STATUS: SyncStatus.PENDING.value, "sync_error": None})
        return await self._send(temp_id)

    async def _send(self, temp_id: str) -> Outcome:
        # Garde anti double-soumission, par enregistrement
        self._inflight.add(temp_id)
        try:
            saved = await self._write(dict(self._payloads[temp_id]))
        except QuartierError as e:
            message = translate_error(e)
            logger.warning(f"[{self.snapshot.collection}] Échec d'écriture ({temp_id}) : {e}")
            if temp_id in self._echoed:
                # l'écho du store prouve que l'écriture a abouti
                server_id = self._echoed.pop(temp_id)
                self._payloads.pop(temp_id, None)
                confirmed = self.snapshot.patch(server_id, {SYNC_STATUS: SyncStatus.CONFIRMED.value})
                return Outcome(status=SyncStatus.CONFIRMED.value, record=confirmed)
            failed = self.snapshot.patch(temp_id, {SYNC_STATUS: SyncStatus.FAILED.value, "sync_error": message})
            return Outcome(status=SyncStatus.FAILED.value, record=failed, error=message)
        finally:
            self._inflight.discard(temp_id)

        self._payloads.pop(temp_id, None)
        self._echoed.pop(temp_id, None)
        confirmed = {**saved, SYNC_STATUS: SyncStatus.CONFIRMED.value}
        self._reconcile(temp_id, confirmed)
        self._schedule_read_receipt(str(confirmed["id"]))
        return Outcome(status=SyncStatus.CONFIRMED.value, record=confirmed)

    def _reconcile(self, temp_id: str, record: Record) -> None:
        server_id = str(record["id"])
        merged = []
        placed = False
        for r in self.snapshot.records:
            if str(r.get("id")) in (temp_id, server_id):
                if not placed:
                    merged.append(record)
                    placed = True
                continue
            merged.append(r)
        if not placed:
            merged = [record] + merged if self._at_head else merged + [record]
        self.snapshot.replace(merged)

    def _on_echo(self, event: ChangeEvent) -> bool:
        if event.type is not ChangeType.INSERTED or not event.record:
            return False
        if event.record.get(ORIGIN) != self.session_id:
            return False
        if self.snapshot.find(event.record_id) is not None:
            # déjà réconcilié : l'insertion remplace sur place
            return False

        for temp_id in list(self._inflight):
            if temp_id in self._echoed:
                continue
            payload = self._payloads.get(temp_id) or {}
            if all(event.record.get(k) == v for k, v in payload.items()):
                self._echoed[temp_id] = event.record_id
                self._reconcile(temp_id, {**event.record, SYNC_STATUS: SyncStatus.PENDING.value})
                return True
        return False

    def _schedule_read_receipt(self, identity: str) -> None:
        if self._read_receipt_delay is None:
            return
        loop = asyncio.get_running_loop()
        loop.call_later(self._read_receipt_delay, self._mark_read, identity)

    def _mark_read(self, identity: str) -> None:
        record = self.snapshot.find(identity)
        if self.snapshot.alive and record and record.get(SYNC_STATUS) == SyncStatus.CONFIRMED.value:
            self.snapshot.patch(identity, {SYNC_STATUS: SyncStatus.READ.value})


class CounterMutation:
    def __init__(self, snapshot: SyncedCollection):
        self.snapshot = snapshot
        self._busy: Set[str] = set()

    def is_busy(self, identity: str) -> bool:
        return str(identity) in self._busy

    async def apply(self, identity: str, field: str, action: Callable[[], Awaitable[Any]],
                    step: int = 1) -> Outcome:
        identity = str(identity)
        if identity in self._busy:
            return Outcome.ignored()
        record = self.snapshot.find(identity)
        if record is None:
            return Outcome.ignored()

        self._busy.add(identity)
        self._bump(identity, field, step)
        try:
            await action()
        except QuartierError as e:
            message = translate_error(e)
            logger.warning(f"[{self.snapshot.collection}] Incrément annulé sur {identity}.{field} : {e}")
            reverted = self._bump(identity, field, -step)
            return Outcome(status=SyncStatus.FAILED.value, record=reverted, error=message)
        finally:
            self._busy.discard(identity)

        return Outcome(status=SyncStatus.CONFIRMED.value, record=self.snapshot.find(identity))

    def _bump(self, identity: str, field: str, step: int) -> Optional[Record]:
        record = self.snapshot.find(identity)
        if record is None:
            return None
        return self.snapshot.patch(identity, {field: (record.get(field) or 0) + step})
