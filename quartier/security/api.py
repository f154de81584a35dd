import asyncio
from collections import deque
from typing import Deque

from fastapi import APIRouter, Depends, WebSocket, status
import logging

from pydantic import ValidationError

from quartier.auth.dependencies import get_actor, get_websocket_user
from quartier.auth.services import auth_provider
from quartier.config import settings
from quartier.db.backend import get_backend
from quartier.realtime.mutations import OptimisticMutation
from quartier.realtime.surface import CLOSE_UNAUTHORIZED, LiveSurface
from quartier.realtime.visibility import Actor
from quartier.security import schemas, services

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/security", tags=["security"])
ws_router = APIRouter(tags=["security"])


@router.get("/alerts")
async def list_alerts(actor: Actor = Depends(get_actor)):
    return await services.list_alerts(actor)


@router.post("/sos", status_code=status.HTTP_201_CREATED)
async def trigger_sos(data: schemas.SosIn, actor: Actor = Depends(get_actor)):
    location = await services.capture_position(services.resolved(data.coords))
    return await services.create_alert(services.sos_payload(actor, location))


@router.post("/reports", status_code=status.HTTP_201_CREATED)
async def submit_report(data: schemas.ReportIn, actor: Actor = Depends(get_actor)):
    return await services.create_alert(services.report_payload(actor, data.message, data.location))


# ===========================
# SURFACE TEMPS RÉEL
# ===========================
def _parse_coords(raw):
    if raw is None:
        return None
    try:
        return schemas.Coordinates.model_validate(raw)
    except ValidationError:
        raise services.PositionError("coordonnées illisibles")


@ws_router.websocket("/ws/security")
async def security_surface(websocket: WebSocket, auth=Depends(get_websocket_user)):
    if auth is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    user, token = auth
    actor = Actor.from_user(user)

    await websocket.accept()
    snapshot = get_backend().collection(services.ALERTS, scope=actor.community_id, sort_field="created_at")
    sos_mutation = OptimisticMutation(snapshot, write=services.create_alert, required=("location",))
    report_mutation = OptimisticMutation(snapshot, write=services.create_alert, required=("message", "location"))
    # Demandes de position en attente de réponse de l'appareil
    waiting: Deque[asyncio.Future] = deque()

    async def locate():
        future = asyncio.get_running_loop().create_future()
        waiting.append(future)
        await surface.send("LOCATE", {"timeout": settings.GEOLOCATION_TIMEOUT})
        try:
            return await future
        finally:
            if future in waiting:
                waiting.remove(future)

    async def given(raw):
        return _parse_coords(raw)

    async def sos(data: dict):
        # Position jointe à l'alerte (None : GPS non supporté), sinon demandée à l'appareil
        source = given(data["coords"]) if "coords" in data else locate()
        location = await services.capture_position(source)
        outcome = await sos_mutation.submit(services.sos_payload(actor, location))
        return outcome.to_dict()

    async def position(data: dict):
        while waiting and waiting[0].done():
            waiting.popleft()
        if not waiting:
            return None
        future = waiting.popleft()
        if data.get("error"):
            future.set_exception(services.PositionError(str(data["error"])))
            return None
        try:
            future.set_result(_parse_coords(data.get("coords")))
        except services.PositionError as e:
            future.set_exception(e)
        return None

    async def report(data: dict):
        payload = services.report_payload(actor, data.get("message"), data.get("location"))
        outcome = await report_mutation.submit(payload)
        return outcome.to_dict()

    surface = LiveSurface(
        websocket,
        snapshot,
        handlers={"SOS": sos, "POSITION": position, "REPORT": report},
        auth=auth_provider,
        token=token,
    )
    await surface.run()
