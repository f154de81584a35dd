from fastapi import APIRouter, Depends, HTTPException, WebSocket, status
import logging

from quartier.auth.dependencies import get_actor, get_websocket_user
from quartier.auth.services import auth_provider
from quartier.chat import schemas, services
from quartier.config import settings
from quartier.db.backend import get_backend
from quartier.errors import InvalidInputError, NotFoundError
from quartier.realtime.mutations import OptimisticMutation, Outcome
from quartier.realtime.surface import CLOSE_FORBIDDEN, CLOSE_UNAUTHORIZED, LiveSurface
from quartier.realtime.visibility import CHANNEL_RULE, Actor, VisibleView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/chat", tags=["chat"])
ws_router = APIRouter(tags=["chat"])


async def _visible_channel(channel_id: str, actor: Actor) -> dict:
    channel = await services.get_channel(channel_id)
    if not services.can_open(channel, actor):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Accès au salon refusé")
    return channel


@router.get("/channels")
async def list_channels(actor: Actor = Depends(get_actor)):
    return await services.list_channels(actor)


@router.post("/channels", status_code=status.HTTP_201_CREATED)
async def create_channel(data: schemas.ChannelIn, actor: Actor = Depends(get_actor)):
    return await services.create_channel(actor, data)


@router.post("/dm/{user_id}")
async def open_dm(user_id: str, actor: Actor = Depends(get_actor)):
    return await services.open_dm(actor, user_id)


@router.post("/channels/{channel_id}/join")
async def join_channel(channel_id: str, data: schemas.JoinRequest, actor: Actor = Depends(get_actor)):
    return await services.join_channel(actor, channel_id, data.password)


@router.post("/channels/{channel_id}/accept")
async def accept_dm(channel_id: str, actor: Actor = Depends(get_actor)):
    return await services.decide_dm(actor, channel_id, accept=True)


@router.post("/channels/{channel_id}/reject")
async def reject_dm(channel_id: str, actor: Actor = Depends(get_actor)):
    return await services.decide_dm(actor, channel_id, accept=False)


@router.get("/channels/{channel_id}/messages")
async def channel_messages(channel_id: str, actor: Actor = Depends(get_actor)):
    await _visible_channel(channel_id, actor)
    return await services.history(channel_id)


# ===========================
# SURFACE TEMPS RÉEL
# ===========================
@ws_router.websocket("/ws/chat/{channel_id}")
async def chat_surface(websocket: WebSocket, channel_id: str, auth=Depends(get_websocket_user)):
    if auth is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    user, token = auth
    actor = Actor.from_user(user)

    try:
        channel = await services.get_channel(channel_id)
    except NotFoundError:
        channel = None
    if channel is None or not services.can_open(channel, actor):
        await websocket.close(code=CLOSE_FORBIDDEN)
        return

    await websocket.accept()
    snapshot = get_backend().collection(
        services.MESSAGES, scope=channel_id, scope_field="channel_id", sort_field="created_at"
    )
    mutation = OptimisticMutation(
        snapshot,
        write=services.send_message,
        required=("content",),
        read_receipt_delay=settings.READ_RECEIPT_DELAY,
    )

    async def send(data: dict):
        payload = services.message_payload(channel_id, actor, data)
        if not mutation.is_valid(payload):
            return Outcome.ignored().to_dict()
        current = await services.get_channel(channel_id)
        reason = services.posting_blocked(current, actor)
        if reason:
            raise InvalidInputError(reason)
        outcome = await mutation.submit(payload)
        return outcome.to_dict()

    async def retry(data: dict):
        outcome = await mutation.retry(str(data.get("id")))
        return outcome.to_dict()

    logger.info(f"💬 Surface chat ouverte : salon {channel_id}, utilisateur {actor.user_id}")
    surface = LiveSurface(
        websocket,
        snapshot,
        handlers={"SEND": send, "RETRY": retry},
        auth=auth_provider,
        token=token,
    )
    await surface.run()


@ws_router.websocket("/ws/channels")
async def channels_surface(websocket: WebSocket, auth=Depends(get_websocket_user)):
    """Liste vivante des salons : seule la vue filtrée par visibilité est poussée."""
    if auth is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    user, token = auth
    actor = Actor.from_user(user)

    await websocket.accept()
    snapshot = get_backend().collection(services.CHANNELS, scope=actor.community_id, sort_field="created_at")
    view = VisibleView(snapshot, actor, CHANNEL_RULE)
    surface = LiveSurface(websocket, snapshot, view=view, auth=auth_provider, token=token)
    await surface.run()
