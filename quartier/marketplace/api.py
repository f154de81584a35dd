from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, WebSocket, status
import json
import logging

from quartier.auth.dependencies import get_actor, get_websocket_user
from quartier.auth.services import auth_provider
from quartier.db.backend import get_backend
from quartier.errors import QuartierError
from quartier.marketplace import services
from quartier.realtime.mutations import OptimisticMutation
from quartier.realtime.surface import CLOSE_UNAUTHORIZED, LiveSurface
from quartier.realtime.visibility import Actor

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/marketplace", tags=["marketplace"])
ws_router = APIRouter(tags=["marketplace"])


@router.get("/classifieds")
async def list_classifieds(actor: Actor = Depends(get_actor)):
    return await services.list_classifieds(actor)


@router.post("/classifieds", status_code=status.HTTP_201_CREATED)
async def create_classified(
    classified_data: str = Form(...),
    image: UploadFile = File(None),
    actor: Actor = Depends(get_actor),
):
    """
    Publie une annonce avec une image optionnelle
    - **classified_data**: annonce en JSON (type, title, description, price)
    - **image**: photo de l'objet ou du service
    """
    try:
        data = json.loads(classified_data)
        if not isinstance(data, dict):
            raise ValueError("objet JSON attendu")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"JSON invalide : {e}")

    try:
        if image is not None and image.filename:
            content = await image.read()
            data["image"] = await services.upload_image(image.filename, image.content_type, content)
        return await services.publish(services.classified_payload(actor, data))
    except (HTTPException, QuartierError):
        raise
    except Exception as e:
        logger.error(f"Erreur publication annonce : {e}")
        raise HTTPException(status_code=500, detail="Erreur interne du serveur")


@router.post("/images", status_code=status.HTTP_201_CREATED)
async def upload_image(image: UploadFile = File(...), actor: Actor = Depends(get_actor)):
    content = await image.read()
    url = await services.upload_image(image.filename, image.content_type, content)
    return {"url": url}


@router.delete("/classifieds/{classified_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_classified(classified_id: str, actor: Actor = Depends(get_actor)):
    await services.delete(actor, classified_id)


# ===========================
# SURFACE TEMPS RÉEL
# ===========================
@ws_router.websocket("/ws/marketplace")
async def marketplace_surface(websocket: WebSocket, auth=Depends(get_websocket_user)):
    if auth is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    user, token = auth
    actor = Actor.from_user(user)

    await websocket.accept()
    snapshot = get_backend().collection(services.CLASSIFIEDS, scope=actor.community_id, sort_field="created_at")
    mutation = OptimisticMutation(snapshot, write=services.publish, required=services.REQUIRED_FIELDS)

    async def publish(data: dict):
        # "type" désigne l'action, l'annonce voyage dans "ad"
        outcome = await mutation.submit(services.classified_payload(actor, data.get("ad") or {}))
        return outcome.to_dict()

    async def retry(data: dict):
        outcome = await mutation.retry(str(data.get("id")))
        return outcome.to_dict()

    async def delete(data: dict):
        await services.delete(actor, str(data.get("id")))
        return {"status": "deleted", "id": data.get("id")}

    surface = LiveSurface(
        websocket,
        snapshot,
        handlers={"PUBLISH": publish, "RETRY": retry, "DELETE": delete},
        auth=auth_provider,
        token=token,
    )
    await surface.run()
