from fastapi import APIRouter, Depends, WebSocket, status
import logging

from quartier.auth.dependencies import get_actor, get_websocket_user
from quartier.auth.models import User
from quartier.auth.permissions import require_admin
from quartier.auth.services import auth_provider
from quartier.db.backend import get_backend
from quartier.finances import schemas, services
from quartier.realtime.surface import CLOSE_UNAUTHORIZED, LiveSurface
from quartier.realtime.visibility import Actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/finances", tags=["finances"])
ws_router = APIRouter(tags=["finances"])


@router.get("/transactions")
async def list_transactions(actor: Actor = Depends(get_actor)):
    return await services.list_transactions(actor)


@router.post("/transactions", status_code=status.HTTP_201_CREATED)
async def create_transaction(data: schemas.TransactionIn, admin: User = Depends(require_admin)):
    return await services.create_transaction(Actor.from_user(admin), data)


@router.get("/summary", response_model=schemas.Summary)
async def summary(actor: Actor = Depends(get_actor)):
    return services.summarize(await services.list_transactions(actor))


@router.get("/campaigns")
async def list_campaigns(actor: Actor = Depends(get_actor)):
    return await services.list_campaigns(actor)


@router.post("/campaigns", status_code=status.HTTP_201_CREATED)
async def create_campaign(data: schemas.CampaignIn, admin: User = Depends(require_admin)):
    return await services.create_campaign(Actor.from_user(admin), data)


# Lecture seule : les écritures passent par l'API REST (ADMIN)
@ws_router.websocket("/ws/finances")
async def finances_surface(websocket: WebSocket, auth=Depends(get_websocket_user)):
    if auth is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    user, token = auth
    actor = Actor.from_user(user)

    await websocket.accept()
    snapshot = get_backend().collection(services.TRANSACTIONS, scope=actor.community_id, sort_field="date")
    surface = LiveSurface(websocket, snapshot, auth=auth_provider, token=token)
    await surface.run()
