"""
Surface temps réel : une connexion WebSocket qui possède son propre snapshot.

Le snapshot est ouvert à la connexion et fermé à la déconnexion ; chaque
changement d'état est poussé au client sous forme de message ``SNAPSHOT``.
Les actions du client (``{"type": "SEND", ...}``) sont traitées en parallèle
les unes des autres ; aucune erreur ne remonte au-delà de la surface.
"""
import asyncio
import json
import logging
from typing import Awaitable, Callable, Dict, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect

from quartier.errors import QuartierError, translate_error
from quartier.realtime.events import WebSocketMessage
from quartier.realtime.store import SyncedCollection
from quartier.realtime.visibility import VisibleView

logger = logging.getLogger(__name__)

Handler = Callable[[dict], Awaitable[Optional[dict]]]

# Codes de fermeture applicatifs
CLOSE_UNAUTHORIZED = 4401
CLOSE_FORBIDDEN = 4403


class LiveSurface:
    def __init__(
        self,
        websocket: WebSocket,
        snapshot: SyncedCollection,
        view: Optional[VisibleView] = None,
        handlers: Optional[Dict[str, Handler]] = None,
        auth=None,
        token: Optional[str] = None,
    ):
        self.websocket = websocket
        self.snapshot = snapshot
        self.view = view
        self.handlers = handlers or {}
        self._auth = auth
        self._token = token
        self._changed = asyncio.Event()
        self._closed = False
        self._tasks: Set[asyncio.Task] = set()

    def state(self) -> dict:
        records = self.view.records if self.view is not None else self.snapshot.records
        return {
            "collection": self.snapshot.collection,
            "records": records,
            "loading": self.snapshot.loading,
            "error": self.snapshot.error,
        }

    async def run(self) -> None:
        self._loop = asyncio.get_running_loop()
        self.snapshot.on_change(lambda _: self._changed.set())
        self.snapshot.open()
        pump = asyncio.create_task(self._pump())
        stop_listening = None
        if self._auth is not None:
            stop_listening = self._auth.on_session_change(self._on_session_change)

        try:
            while True:
                raw = await self.websocket.receive_text()
                try:
                    data = json.loads(raw)
                except ValueError:
                    logger.warning(f"Message illisible sur {self.snapshot.collection} : {raw[:80]!r}")
                    self._spawn(self.send("ERROR", {"detail": "Message illisible"}))
                    continue
                self._dispatch(data)
        except WebSocketDisconnect:
            logger.info(f"🔌 Surface {self.snapshot.collection} déconnectée")
        finally:
            self._closed = True
            self.snapshot.close()
            pump.cancel()
            if stop_listening is not None:
                stop_listening()

    async def send(self, message_type: str, data: dict) -> None:
        if self._closed:
            return
        message = WebSocketMessage(type=message_type, data=data)
        try:
            await self.websocket.send_json(message.model_dump(mode="json"))
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(f"Envoi impossible, surface fermée : {e}")
            self._closed = True

    async def _pump(self) -> None:
        await self.send("SNAPSHOT", self.state())
        while not self._closed:
            await self._changed.wait()
            self._changed.clear()
            await self.send("SNAPSHOT", self.state())

    def _dispatch(self, data: dict) -> None:
        action = data.get("type") if isinstance(data, dict) else None
        handler = self.handlers.get(action)
        if handler is None:
            self._spawn(self.send("ERROR", {"detail": f"Action inconnue : {action}"}))
        else:
            self._spawn(self._handle(action, handler, data))

    def _spawn(self, coroutine) -> None:
        task = asyncio.create_task(coroutine)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _handle(self, action: str, handler: Handler, data: dict) -> None:
        try:
            ack = await handler(data)
        except QuartierError as e:
            await self.send("ERROR", {"action": action, "detail": translate_error(e)})
        except Exception as e:
            logger.exception(f"Erreur inattendue sur l'action {action}")
            await self.send("ERROR", {"action": action, "detail": translate_error(e)})
        else:
            if ack is not None:
                await self.send("ACK", {"action": action, **ack})

    def _on_session_change(self, event: str, session) -> None:
        if event == "SIGNED_OUT" and session is not None and session.token == self._token:
            logger.info("🔒 Session terminée, fermeture de la surface")
            # la déconnexion peut être notifiée depuis une autre boucle
            self._loop.call_soon_threadsafe(self._terminate)

    def _terminate(self) -> None:
        self._closed = True
        self.snapshot.close()
        self._changed.set()
        self._spawn(self.websocket.close(code=CLOSE_UNAUTHORIZED))
