from fastapi import APIRouter, Depends, WebSocket, status
import logging

from quartier.auth.dependencies import get_actor, get_websocket_user
from quartier.auth.models import User
from quartier.auth.permissions import require_admin
from quartier.auth.services import auth_provider
from quartier.db.backend import get_backend
from quartier.jobs import schemas, services
from quartier.realtime.mutations import CounterMutation
from quartier.realtime.surface import CLOSE_UNAUTHORIZED, LiveSurface
from quartier.realtime.visibility import Actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/jobs", tags=["jobs"])
ws_router = APIRouter(tags=["jobs"])


@router.get("")
async def list_jobs(actor: Actor = Depends(get_actor)):
    return await services.list_jobs(actor)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_job(data: schemas.JobIn, admin: User = Depends(require_admin)):
    return await services.create_job(Actor.from_user(admin), data)


@router.put("/{job_id}/status")
async def update_job_status(job_id: str, data: schemas.JobStatusUpdate, admin: User = Depends(require_admin)):
    changes = data.model_dump(exclude_none=True)
    return await services.update_status(Actor.from_user(admin), job_id, changes)


@router.get("/my-applications")
async def my_applications(actor: Actor = Depends(get_actor)):
    return await services.my_applications(actor)


@router.post("/{job_id}/apply")
async def apply(job_id: str, actor: Actor = Depends(get_actor)):
    return await services.apply(actor, job_id)


# ===========================
# SURFACE TEMPS RÉEL
# ===========================
@ws_router.websocket("/ws/jobs")
async def jobs_surface(websocket: WebSocket, auth=Depends(get_websocket_user)):
    if auth is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    user, token = auth
    actor = Actor.from_user(user)

    await websocket.accept()
    snapshot = get_backend().collection(services.JOBS, scope=actor.community_id, sort_field="created_at")
    counters = CounterMutation(snapshot)

    async def apply_job(data: dict):
        job_id = str(data.get("job_id"))
        outcome = await counters.apply(job_id, "spots_filled", lambda: services.apply(actor, job_id))
        return outcome.to_dict()

    surface = LiveSurface(websocket, snapshot, handlers={"APPLY": apply_job}, auth=auth_provider, token=token)
    await surface.run()
