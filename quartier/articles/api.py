from fastapi import APIRouter, Depends, File, Form, HTTPException, UploadFile, WebSocket, status
import json
import logging

from quartier.articles import schemas, services
from quartier.auth.dependencies import get_actor, get_websocket_user
from quartier.auth.models import User
from quartier.auth.permissions import require_admin
from quartier.auth.services import auth_provider
from quartier.db.backend import get_backend
from quartier.errors import QuartierError
from quartier.realtime.surface import CLOSE_UNAUTHORIZED, LiveSurface
from quartier.realtime.visibility import Actor, VisibleView

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/articles", tags=["articles"])
ws_router = APIRouter(tags=["articles"])


@router.get("")
async def list_articles(actor: Actor = Depends(get_actor)):
    return await services.list_articles(actor)


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_article(
    article_data: str = Form(...),
    image: UploadFile = File(None),
    admin: User = Depends(require_admin),
):
    """
    Publie un article du fil d'actualité (ADMIN)
    - **article_data**: article en JSON (title, category, blocks, published, scheduled_at, image)
    - **image**: image de couverture, remplace ``image`` si fournie
    """
    try:
        data = json.loads(article_data)
        if not isinstance(data, dict):
            raise ValueError("objet JSON attendu")
    except ValueError as e:
        raise HTTPException(status_code=400, detail=f"JSON invalide : {e}")

    try:
        if image is not None and image.filename:
            content = await image.read()
            data["image"] = await services.upload_image(image.filename, image.content_type, content)
        return await services.publish(services.article_payload(Actor.from_user(admin), data))
    except (HTTPException, QuartierError):
        raise
    except Exception as e:
        logger.error(f"Erreur publication article : {e}")
        raise HTTPException(status_code=500, detail="Erreur interne du serveur")


@router.post("/images", status_code=status.HTTP_201_CREATED)
async def upload_image(image: UploadFile = File(...), admin: User = Depends(require_admin)):
    content = await image.read()
    url = await services.upload_image(image.filename, image.content_type, content)
    return {"url": url}


@router.put("/{article_id}")
async def update_article(article_id: str, changes: schemas.ArticleUpdate, admin: User = Depends(require_admin)):
    return await services.update_article(Actor.from_user(admin), article_id, changes)


@router.delete("/{article_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_article(article_id: str, admin: User = Depends(require_admin)):
    await services.delete_article(Actor.from_user(admin), article_id)


# Lecture seule : la rédaction passe par l'API REST (ADMIN)
@ws_router.websocket("/ws/articles")
async def articles_surface(websocket: WebSocket, auth=Depends(get_websocket_user)):
    if auth is None:
        await websocket.close(code=CLOSE_UNAUTHORIZED)
        return
    user, token = auth
    actor = Actor.from_user(user)

    await websocket.accept()
    snapshot = get_backend().collection(services.ARTICLES, scope=actor.community_id, sort_field="date")
    view = VisibleView(snapshot, actor, services.rule_for(actor))
    surface = LiveSurface(websocket, snapshot, view=view, auth=auth_provider, token=token)
    await surface.run()
