from fastapi import APIRouter, Depends, WebSocket, status
import logging

from quartier.auth.dependencies import get_actor, get_websocket_user
from quartier.auth.models import User
from quartier.auth.permissions import require_admin
from quartier.auth.services import auth_provider
from quartier.db.backend import get_backend
from quartier.errors import InvalidInputError
from quartier.governance import schemas, services
from quartier.realtime.mutations import CounterMutation
from quartier.realtime.surface import CLOSE_UNAUTHORIZED, LiveSurface
from quartier.realtime.visibility import Actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/governance", tags=["governance"])
ws_router = APIRouter(tags=["governance"])


@router.get("/proposals")
async def list_proposals(actor: Actor = Depends(get_actor)):
    return await services.list_proposals(actor)


@router.post("/proposals", status_code=status.HTTP_201_CREATED)
async def create_proposal(data: schemas.ProposalIn, admin: User = Depends(require_admin)):
    return await services.create_proposal(Actor.from_user(admin), data)


@router.post("/proposals/{proposal_id}/close")
async def close_proposal(proposal_id: str, admin: User = Depends(require_admin)):
    return await services.close_proposal(Actor.from_user(admin), proposal_id)


@router.get("/my-votes")
async def my_votes(actor: Actor = Depends(get_actor)):
    return await services.my_votes(actor)


@router.post("/proposals/{proposal_id}/vote")
async def vote(proposal_id: str, data: schemas.VoteIn, actor: Actor = Depends(get_actor)):
    return await services.cast_vote(actor, proposal_id, data.choice)


# ===========================
# SURFACE TEMPS RÉEL
# ===========================
@ws_router.websocket("/ws/governance")
async def governance_surface(websocket: WebSocket, auth=Depends(get_websocket_user)):
    if auth is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    user, token = auth
    actor = Actor.from_user(user)

    await websocket.accept()
    snapshot = get_backend().collection(services.PROPOSALS, scope=actor.community_id, sort_field="created_at")
    counters = CounterMutation(snapshot)

    async def vote(data: dict):
        proposal_id = str(data.get("proposal_id"))
        choice = data.get("choice")
        field = schemas.VOTE_FIELDS.get(choice)
        if field is None:
            raise InvalidInputError("Choix de vote invalide")
        outcome = await counters.apply(
            proposal_id, field, lambda: services.cast_vote(actor, proposal_id, choice)
        )
        return outcome.to_dict()

    surface = LiveSurface(websocket, snapshot, handlers={"VOTE": vote}, auth=auth_provider, token=token)
    await surface.run()
